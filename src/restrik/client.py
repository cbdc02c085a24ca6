"""HTTP client — typed CRUD calls over a long-lived httpx.Client."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from http.cookiejar import DefaultCookiePolicy
from typing import Any
from urllib.parse import urlsplit

import httpx

from . import body as jsonbody
from . import jsonpath
from .cancel import CancelToken
from .errors import ConfigError, HTTPError, NotFound, TransportError
from .models import ProviderConfig, RetryOption

logger = logging.getLogger(__name__)

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"
JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

_CREATE_METHODS = ("POST", "PUT", "PATCH")
_UPDATE_METHODS = ("PUT", "PATCH", "POST")
_DELETE_METHODS = ("DELETE", "POST", "PUT", "PATCH")
_OPERATION_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
_READ_METHODS = ("GET", "POST", "HEAD")


def overlay[V](defaults: Mapping[str, V] | None, overrides: Mapping[str, V] | None) -> dict[str, V]:
    """Per-key overlay: keys in ``overrides`` replace, absent keys inherit."""
    merged = dict(defaults or {})
    merged.update(overrides or {})
    return merged


@dataclass
class Options:
    """Per-call request options layered over the provider defaults."""

    method: str = ""
    query: dict[str, list[str]] = field(default_factory=dict)
    header: dict[str, str] = field(default_factory=dict)
    merge_patch_disabled: bool = False
    content_type: str = ""


@dataclass
class Response:
    status_code: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    url: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        """Decode the body as JSON; an empty body decodes to None."""
        try:
            return jsonbody.loads(self.body)
        except ConfigError as exc:
            raise TransportError(f"{self.url}: response is not valid JSON") from exc

    def json_or_none(self) -> Any:
        try:
            return jsonbody.loads(self.body)
        except ConfigError:
            return None

    def raise_for_status(self, action: str) -> Response:
        if not self.is_success:
            raise HTTPError(f"{action} failed", status_code=self.status_code, body=self.body)
        return self

    @classmethod
    def from_httpx(cls, resp: httpx.Response) -> Response:
        return cls(
            status_code=resp.status_code,
            headers=resp.headers,
            body=resp.content,
            url=str(resp.request.url),
        )


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring invalid Retry-After value '%s'", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


class _StaticCookiesOnly(DefaultCookiePolicy):
    """Send configured cookies but never store ones set by the server."""

    def set_ok(self, cookie, request):
        return False


def _check_method(method: str, allowed: tuple[str, ...], what: str) -> str:
    method = method.upper()
    if method not in allowed:
        raise ConfigError(f"unsupported {what} method {method!r}; expected one of {', '.join(allowed)}")
    return method


class AddressAdapter(logging.LoggerAdapter):
    """Prefix records with the address of the block being worked on."""

    def process(self, msg, kwargs):
        msg, kwargs = super().process(msg, kwargs)
        return f"[{self.extra['address']}] {msg}", kwargs


class Client:
    """Issue requests relative to a base URL with provider-level defaults.

    ``query`` and ``header`` are defaults; a call's own keys replace them
    key by key.
    """

    def __init__(
        self,
        base_url: str,
        *,
        http: httpx.Client | None = None,
        query: Mapping[str, list[str]] | None = None,
        header: Mapping[str, str] | None = None,
        retry: RetryOption | None = None,
    ) -> None:
        self._base_url = base_url
        self._http = http or httpx.Client()
        self.query = dict(query or {})
        self.header = dict(header or {})
        self.retry = retry
        self.log_context: dict[str, str] = {}

    @classmethod
    def build(cls, config: ProviderConfig, *, transport: httpx.BaseTransport | None = None) -> Client:
        """Construct a client from provider configuration."""
        query = dict(config.query)
        header = dict(config.header)
        cookies: dict[str, str] = {}
        auth: httpx.Auth | None = None

        security = config.security
        if security is not None:
            if security.http is not None:
                match security.http.type:
                    case "basic":
                        auth = httpx.BasicAuth(security.http.username, security.http.password)
                    case "token":
                        header["Authorization"] = f"{security.http.scheme} {security.http.token}"
            for key in security.apikey:
                match key.location:
                    case "header":
                        header[key.name] = key.value
                    case "query":
                        query[key.name] = [key.value]
                    case "cookie":
                        cookies[key.name] = key.value

        http = httpx.Client(
            transport=transport,
            auth=auth,
            cookies=cookies or None,
            verify=not config.tls_insecure_skip_verify,
            timeout=config.timeout_in_sec,
            follow_redirects=True,
        )
        if not config.cookie_enabled:
            http.cookies.jar.set_policy(_StaticCookiesOnly())
        return cls(config.base_url, http=http, query=query, header=header, retry=config.retry)

    @property
    def base_url(self) -> str:
        return self._base_url

    def with_base_url(self, base_url: str) -> Client:
        """A client for another base URL sharing this one's session and defaults."""
        scoped = Client(base_url, http=self._http, query=self.query, header=self.header, retry=self.retry)
        scoped.log_context = dict(self.log_context)
        return scoped

    def with_logger_context(self, address: str) -> Client:
        """A client whose request logging names ``address``."""
        scoped = self.with_base_url(self._base_url)
        scoped.log_context = {"address": address}
        return scoped

    def logger_for(self, base: logging.Logger) -> logging.Logger | logging.LoggerAdapter:
        """Wrap ``base`` so its records carry this client's logger context."""
        if not self.log_context:
            return base
        return AddressAdapter(base, self.log_context)

    def close(self) -> None:
        self._http.close()

    def url(self, path: str) -> str:
        """Resolve ``path`` against the base URL; absolute URLs pass through."""
        if urlsplit(path).scheme:
            return path
        if not path:
            return self._base_url
        return self._base_url.rstrip("/") + "/" + path.lstrip("/")

    def _encode(self, body: Any, content_type: str) -> dict[str, Any]:
        if body is None:
            return {}
        if content_type.split(";")[0].strip().lower() == FORM_CONTENT_TYPE:
            if not isinstance(body, dict):
                raise ConfigError("a form encoded body must be an object")
            return {"data": {k: jsonpath.stringify(v) for k, v in body.items()}}
        if isinstance(body, bytes):
            return {"content": body}
        return {"content": jsonbody.dumps(body).encode("utf-8")}

    def do(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        options: Options | None = None,
        cancel: CancelToken | None = None,
    ) -> Response:
        """Send one request, retrying per the retry policy."""
        options = options or Options()
        cancel = cancel or CancelToken()
        headers = overlay(self.header, options.header)
        query = overlay(self.query, options.query)

        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
        if body is not None and not content_type:
            content_type = options.content_type or JSON_CONTENT_TYPE
            headers["Content-Type"] = content_type
        payload = self._encode(body, content_type)
        params = [(k, v) for k, values in query.items() for v in values]
        url = self.url(path)

        log = self.logger_for(logger)
        attempts = 1 + (self.retry.count if self.retry else 0)
        attempt = 0
        while True:
            cancel.check()
            log.debug("%s %s", method, url)
            try:
                resp = self._http.request(method, url, params=params, headers=headers, **payload)
            except httpx.HTTPError as exc:
                if attempt + 1 < attempts:
                    self._backoff(attempt, None, cancel)
                    attempt += 1
                    continue
                raise TransportError(f"{method} {url}: {exc}") from exc
            cancel.check()
            log.debug("%s %s -> %d", method, url, resp.status_code)
            if self.retry and resp.status_code in self.retry.status_codes and attempt + 1 < attempts:
                self._backoff(attempt, resp.headers.get("Retry-After"), cancel)
                attempt += 1
                continue
            return Response.from_httpx(resp)

    def _backoff(self, attempt: int, retry_after: str | None, cancel: CancelToken) -> None:
        assert self.retry is not None
        delay = parse_retry_after(retry_after)
        if delay is None:
            delay = min(self.retry.wait_in_sec * (2**attempt), self.retry.max_wait_in_sec)
        logger.debug("Retrying in %.1fs (attempt %d)", delay, attempt + 1)
        cancel.sleep(delay)

    # -- typed calls --

    def create(
        self, path: str, body: Any, options: Options, *, cancel: CancelToken | None = None
    ) -> Response:
        method = _check_method(options.method or "POST", _CREATE_METHODS, "create")
        return self.do(method, path, body=body, options=options, cancel=cancel)

    def read(self, path: str, options: Options, *, cancel: CancelToken | None = None) -> Response:
        """GET ``path``; a 404 raises ``NotFound``."""
        resp = self.do("GET", path, options=options, cancel=cancel)
        if resp.status_code == 404:
            raise NotFound(resp.url, body=resp.body)
        return resp

    def update(
        self, path: str, body: Any, options: Options, *, cancel: CancelToken | None = None
    ) -> Response:
        method = _check_method(options.method or "PUT", _UPDATE_METHODS, "update")
        if method == "PATCH" and not options.merge_patch_disabled:
            options = replace(options, content_type=MERGE_PATCH_CONTENT_TYPE)
        return self.do(method, path, body=body, options=options, cancel=cancel)

    def delete(
        self, path: str, options: Options, *, body: Any = None, cancel: CancelToken | None = None
    ) -> Response:
        method = _check_method(options.method or "DELETE", _DELETE_METHODS, "delete")
        return self.do(method, path, body=body, options=options, cancel=cancel)

    def operation(
        self, path: str, body: Any, options: Options, *, cancel: CancelToken | None = None
    ) -> Response:
        method = _check_method(options.method or "POST", _OPERATION_METHODS, "operation")
        return self.do(method, path, body=body, options=options, cancel=cancel)

    def read_collection(
        self, path: str, options: Options, *, body: Any = None, cancel: CancelToken | None = None
    ) -> Response:
        """Read with GET, POST or HEAD; only POST carries a body."""
        method = _check_method(options.method or "GET", _READ_METHODS, "read")
        return self.do(method, path, body=body if method == "POST" else None, options=options, cancel=cancel)
