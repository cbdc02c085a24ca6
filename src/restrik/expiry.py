"""Expiry parsing for ephemeral leases."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from .client import Response
from .errors import ConfigError, RestrikError
from .locator import parse_locator

logger = logging.getLogger(__name__)

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1h30m``, ``0.4s`` or ``250ms``."""
    value = text.strip()
    sign = 1.0
    if value[:1] in ("+", "-"):
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if value == "0":
        return timedelta(0)
    if not value:
        raise ConfigError(f"invalid duration {text!r}")
    seconds = 0.0
    pos = 0
    while pos < len(value):
        match = _DURATION_PART.match(value, pos)
        if match is None:
            raise ConfigError(f"invalid duration {text!r}")
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return timedelta(seconds=sign * seconds)


def validate_expiry_type(expiry_type: str) -> None:
    kind, sep, layout = expiry_type.partition(".")
    match kind:
        case "time":
            if sep and not layout:
                raise ConfigError(f"invalid expiry type {expiry_type!r}: empty time layout")
        case "duration" | "duration_in_seconds":
            if sep:
                raise ConfigError(f"invalid expiry type {expiry_type!r}")
        case _:
            raise ConfigError(f"invalid expiry type {expiry_type!r}")


def _parse_time(value: str, layout: str) -> datetime:
    try:
        if layout:
            when = datetime.strptime(value, layout)
        else:
            when = datetime.fromisoformat(value)
    except ValueError as exc:
        raise RestrikError(f"cannot parse expiry time {value!r}: {exc}") from exc
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return when


def expiry_time(
    response: Response,
    *,
    expiry_type: str,
    locator: str,
    unit: str | None = None,
    ahead: str | None = None,
    now: Callable[[], datetime] | None = None,
) -> datetime:
    """Compute when a lease should be renewed.

    ``time[.layout]`` reads an absolute timestamp (ISO 8601 unless a
    strftime layout is given); ``duration`` reads a duration, with
    ``unit`` appended to bare numbers; ``duration_in_seconds`` reads a
    number of seconds. The result is pulled forward by ``ahead``.
    """
    validate_expiry_type(expiry_type)
    value, found = parse_locator(locator).locate(response)
    if not found:
        raise RestrikError(f"no expiry value found via {locator}")
    lead = parse_duration(ahead) if ahead else timedelta(0)
    current = (now or (lambda: datetime.now(UTC)))()

    kind, _, layout = expiry_type.partition(".")
    match kind:
        case "time":
            when = _parse_time(value, layout)
        case "duration":
            text = value + unit if unit and _is_number(value) else value
            when = current + parse_duration(text)
        case _:
            if not _is_number(value):
                raise RestrikError(f"expiry {value!r} is not a number of seconds")
            when = current + timedelta(seconds=float(value))
    renew_at = when - lead
    logger.info("Lease renews at %s", renew_at.isoformat())
    return renew_at


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True
