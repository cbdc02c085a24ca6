"""Short-lived leases with open, renew and close phases."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import pydantic

from .body import filter_attrs, loads
from .cancel import CancelToken
from .client import Client, Options, Response, overlay
from .errors import ConfigError
from .expand import expand_body, expand_path, expand_values
from .expiry import expiry_time, validate_expiry_type
from .models import EphemeralCall, EphemeralConfig
from .private import CLOSE_KEY, RENEW_KEY, PrivateStore

logger = logging.getLogger(__name__)


@dataclass
class Lease:
    output: Any
    renew_at: datetime | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EphemeralResource:
    """Open a lease, renew it before it expires, close it when done.

    Renew and close requests are resolved at open time against the open
    response and parked in private storage; the later phases only need
    that storage.
    """

    def __init__(self, client: Client, *, now: Callable[[], datetime] | None = None) -> None:
        self.client = client
        self.now = now or _utcnow

    def validate(self, config: EphemeralConfig) -> None:
        if config.expiry_type is not None:
            validate_expiry_type(config.expiry_type)
            if not config.expiry_locator:
                raise ConfigError("expiry_locator is required with expiry_type")
        if config.renew_method is not None and config.expiry_type is None:
            raise ConfigError("renew_method requires expiry_type")
        if config.renew_body is not None and config.renew_body_raw is not None:
            raise ConfigError("renew_body and renew_body_raw are mutually exclusive")
        if config.close_body is not None and config.close_body_raw is not None:
            raise ConfigError("close_body and close_body_raw are mutually exclusive")

    def _renew_at(self, resp: Response, call: EphemeralConfig | EphemeralCall) -> datetime | None:
        if call.expiry_type is None:
            return None
        assert call.expiry_locator is not None
        return expiry_time(
            resp,
            expiry_type=call.expiry_type,
            locator=call.expiry_locator,
            unit=call.expiry_unit,
            ahead=call.expiry_ahead,
            now=self.now,
        )

    def _park(
        self,
        config: EphemeralConfig,
        *,
        method: str,
        path: str | None,
        body: Any,
        body_raw: str | None,
        query: dict[str, list[str]],
        header: dict[str, str],
        doc: Any,
        output: Any,
        with_expiry: bool,
    ) -> bytes:
        if body_raw is not None:
            body = loads(expand_body(body_raw, doc))
        call = EphemeralCall(
            method=method,
            path=expand_path(path, config.path, doc, base_url=self.client.base_url) if path else config.path,
            body=body,
            default_query=config.query,
            query=query,
            default_header=config.header,
            header=header,
            output=output,
        )
        if with_expiry:
            call.expiry_type = config.expiry_type
            call.expiry_locator = config.expiry_locator
            call.expiry_unit = config.expiry_unit
            call.expiry_ahead = config.expiry_ahead
        return call.model_dump_json().encode("utf-8")

    def open(
        self, config: EphemeralConfig, private: PrivateStore, cancel: CancelToken | None = None
    ) -> Lease:
        cancel = cancel or CancelToken()
        self.validate(config)
        logger.info("Opening lease at %s", config.path)
        options = Options(method=config.method, query=dict(config.query), header=dict(config.header))
        resp = self.client.operation(config.path, config.body, options, cancel=cancel)
        resp.raise_for_status(f"open {config.path}")

        renew_at = self._renew_at(resp, config)
        doc = resp.json()
        output = filter_attrs(doc, config.output_attrs) if config.output_attrs else doc

        if config.renew_method is not None:
            private.set(
                RENEW_KEY,
                self._park(
                    config,
                    method=config.renew_method,
                    path=config.renew_path,
                    body=config.renew_body,
                    body_raw=config.renew_body_raw,
                    query=config.renew_query,
                    header=config.renew_header,
                    doc=doc,
                    output=output,
                    with_expiry=True,
                ),
            )
        if config.close_method is not None:
            private.set(
                CLOSE_KEY,
                self._park(
                    config,
                    method=config.close_method,
                    path=config.close_path,
                    body=config.close_body,
                    body_raw=config.close_body_raw,
                    query=config.close_query,
                    header=config.close_header,
                    doc=doc,
                    output=output,
                    with_expiry=False,
                ),
            )
        return Lease(output=output, renew_at=renew_at)

    def _load(self, private: PrivateStore, key: str) -> EphemeralCall | None:
        raw = private.get(key)
        if raw is None:
            return None
        try:
            return EphemeralCall.model_validate_json(raw)
        except pydantic.ValidationError as exc:
            raise ConfigError(f"invalid {key!r} private data: {exc}") from exc

    def _send(self, call: EphemeralCall, cancel: CancelToken, what: str) -> Response:
        options = Options(
            method=call.method,
            query=expand_values(overlay(call.default_query, call.query), call.output),
            header=expand_values(overlay(call.default_header, call.header), call.output),
        )
        resp = self.client.operation(call.path, call.body, options, cancel=cancel)
        return resp.raise_for_status(f"{what} {call.path}")

    def renew(self, private: PrivateStore, cancel: CancelToken | None = None) -> datetime | None:
        """Renew the lease; returns the next renew instant, if any."""
        call = self._load(private, RENEW_KEY)
        if call is None:
            return None
        logger.info("Renewing lease at %s", call.path)
        resp = self._send(call, cancel or CancelToken(), "renew")
        return self._renew_at(resp, call)

    def close(self, private: PrivateStore, cancel: CancelToken | None = None) -> None:
        """Run the close call; private storage is cleared even if it fails."""
        try:
            call = self._load(private, CLOSE_KEY)
            if call is not None:
                logger.info("Closing lease at %s", call.path)
                self._send(call, cancel or CancelToken(), "close")
        finally:
            private.set(RENEW_KEY, None)
            private.set(CLOSE_KEY, None)

    def hold(
        self,
        config: EphemeralConfig,
        private: PrivateStore,
        duration: timedelta,
        cancel: CancelToken | None = None,
    ) -> Lease:
        """Open a lease, keep it renewed for ``duration`` and close it.

        Sleeps go through ``cancel`` so the clock driving ``self.now``
        can be simulated.
        """
        cancel = cancel or CancelToken()
        lease = self.open(config, private, cancel)
        deadline = self.now() + duration
        try:
            while True:
                current = self.now()
                if current >= deadline:
                    break
                wake = deadline if lease.renew_at is None else min(lease.renew_at, deadline)
                if wake > current:
                    cancel.sleep((wake - current).total_seconds())
                    continue
                lease.renew_at = self.renew(private, cancel)
        finally:
            self.close(private)
        return lease
