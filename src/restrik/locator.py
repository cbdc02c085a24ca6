"""Value locators — point at a status or URL inside an HTTP response."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from . import jsonpath
from .errors import ConfigError
from .expand import expand_body

if TYPE_CHECKING:
    from .client import Response

logger = logging.getLogger(__name__)


class LocatorKind(enum.Enum):
    CODE = "code"
    EXACT = "exact"
    HEADER = "header"
    BODY = "body"


@dataclass(frozen=True)
class Locator:
    """A parsed ``code`` / ``exact.<v>`` / ``header.<name>`` / ``body.<path>`` locator."""

    kind: LocatorKind
    value: str = ""

    def __str__(self) -> str:
        if self.kind is LocatorKind.CODE:
            return "code"
        return f"{self.kind.value}.{self.value}"

    def locate(self, response: Response) -> tuple[str, bool]:
        """Evaluate against a response, returning ``(text, present)``."""
        match self.kind:
            case LocatorKind.CODE:
                return str(response.status_code), True
            case LocatorKind.EXACT:
                return self.value, True
            case LocatorKind.HEADER:
                values = response.headers.get_list(self.value)
                if not values:
                    return "", False
                return values[0], True
            case LocatorKind.BODY:
                doc = response.json_or_none()
                if doc is None:
                    return "", False
                value, present = jsonpath.get(doc, self.value)
                if not present:
                    return "", False
                return jsonpath.stringify(value), True
        raise AssertionError(self.kind)


def parse_locator(text: str) -> Locator:
    """Parse a locator string."""
    if text == "code":
        return Locator(LocatorKind.CODE)
    tag, sep, rest = text.partition(".")
    if not sep or not rest:
        raise ConfigError(f"invalid locator {text!r}: expected '<scope>.<value>'")
    try:
        kind = LocatorKind(tag)
    except ValueError:
        raise ConfigError(f"invalid locator {text!r}: unknown scope {tag!r}") from None
    if kind is LocatorKind.CODE:
        raise ConfigError(f"invalid locator {text!r}: 'code' takes no value")
    if kind is LocatorKind.BODY:
        jsonpath.parse(rest)
    return Locator(kind, rest)


def expand_locator(text: str, body: Any) -> Locator:
    """Parse a locator whose header/body part may reference ``$(body.x)`` of a prior response."""
    tag, sep, rest = text.partition(".")
    if sep and tag in (LocatorKind.HEADER.value, LocatorKind.BODY.value):
        expanded = expand_body(rest, body)
        if expanded != rest:
            logger.debug("Expanded locator '%s' to '%s.%s'", text, tag, expanded)
        text = f"{tag}.{expanded}"
    return parse_locator(text)
