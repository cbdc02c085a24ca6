"""Long-running operation poller."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlsplit, urlunsplit

from .cancel import CancelToken
from .client import Client, Options, Response, parse_retry_after
from .errors import ConfigError, HTTPError, PollFailure
from .locator import Locator, LocatorKind, parse_locator
from .models import PollConfig, PrecheckAPI

logger = logging.getLogger(__name__)


@dataclass
class PollOptions:
    status_locator: Locator
    success: str
    pending: Sequence[str] = ()
    url_locator: Locator | None = None
    header: dict[str, str] = field(default_factory=dict)
    query: dict[str, list[str]] = field(default_factory=dict)
    default_delay: float = 10

    @classmethod
    def from_config(cls, config: PollConfig | PrecheckAPI) -> PollOptions:
        url_locator = getattr(config, "url_locator", None)
        return cls(
            status_locator=parse_locator(config.status_locator),
            success=config.status.success,
            pending=tuple(config.status.pending),
            url_locator=parse_locator(url_locator) if url_locator else None,
            header=dict(config.header),
            query=dict(config.query),
            default_delay=config.default_delay_sec,
        )


def _split_query(url: str) -> tuple[str, dict[str, list[str]]]:
    parts = urlsplit(url)
    query = parse_qs(parts.query, keep_blank_values=True)
    return urlunsplit(parts._replace(query="", fragment="")), query


class Poller:
    """Poll a URL until the located status reaches the success sentinel.

    Statuses compare exactly. An absent status reads as ``""``, so ``""``
    may be listed as pending to wait for a field to appear.
    """

    def __init__(
        self,
        url: str,
        options: PollOptions,
        *,
        initial: Response | None = None,
    ) -> None:
        self.url = url
        self.options = options
        self.query = dict(options.query)
        self.initial = initial
        self.requests = 0

    @classmethod
    def from_response(cls, response: Response, options: PollOptions) -> Poller:
        """Derive the poll URL from the response that started the operation.

        With a url locator the discovered URL's own query replaces the
        configured one; otherwise the original request URL is polled again.
        """
        if options.url_locator is not None:
            raw, found = options.url_locator.locate(response)
            if not found or not raw:
                raise ConfigError(f"no polling URL found via {options.url_locator}")
            url, query = _split_query(raw)
            poller = cls(url, options, initial=response)
            poller.query = query
            return poller
        url, _ = _split_query(response.url)
        return cls(url, options, initial=response)

    @classmethod
    def for_precheck(cls, url: str, options: PollOptions) -> Poller:
        return cls(url, options)

    def _status(self, response: Response) -> str:
        status, _ = self.options.status_locator.locate(response)
        return status

    def _delay(self, response: Response | None) -> float:
        if response is None:
            return 0
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is not None:
            return max(retry_after, self.options.default_delay)
        return self.options.default_delay

    def _same_url(self, response: Response) -> bool:
        url, _ = _split_query(response.url)
        return url == self.url

    def _check(self, status: str, response: Response) -> bool:
        """Return True on success, False while pending; raise otherwise."""
        if status == self.options.success:
            return True
        if status in self.options.pending:
            return False
        raise PollFailure(status, body=response.body)

    def wait(self, client: Client, cancel: CancelToken | None = None) -> Response:
        """Block until success and return the final response."""
        cancel = cancel or CancelToken()
        opts = self.options
        last = self.initial
        log = client.logger_for(logger)

        # The initiating response is a status source only when it came from
        # the URL being polled.
        if last is not None and opts.url_locator is None and self._same_url(last):
            status = self._status(last)
            log.debug("Initial status '%s' for %s", status, self.url)
            if self._check(status, last):
                return last

        while True:
            delay = self._delay(last)
            log.debug("Polling %s in %.1fs", self.url, delay)
            cancel.sleep(delay)

            resp = client.do("GET", self.url, options=Options(query=self.query, header=opts.header), cancel=cancel)
            self.requests += 1
            last = resp

            if resp.status_code == 404 and opts.success == "404":
                status = "404"
            else:
                if opts.status_locator.kind is not LocatorKind.CODE and not resp.is_success:
                    raise HTTPError(f"polling {self.url} failed", status_code=resp.status_code, body=resp.body)
                status = self._status(resp)
            log.debug("Poll %d of %s: status '%s'", self.requests, self.url, status)
            if self._check(status, resp):
                log.info("Polling %s succeeded after %d request(s)", self.url, self.requests)
                return resp
