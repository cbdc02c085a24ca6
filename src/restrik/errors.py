"""Exception types raised by the resource engine.

Every failure surfaces as an exception rooted at ``RestrikError``:

- ConfigError: malformed locator, template, path or method (raised at validate time)
- TransportError: the request never produced a usable response
- HTTPError: the server answered with a non-success status
- PollFailure: a long-running operation settled on a non-success status
- Cancelled: the caller's cancel token fired
- NotFound: a read hit a 404; orchestrators catch it and drop the resource
- PartialCreate: the create call succeeded but the follow-up poll or read did not
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ResourceState


class RestrikError(Exception):
    """Base exception for restrik."""


class ConfigError(RestrikError, ValueError):
    """Invalid configuration or template."""


class TransportError(RestrikError):
    """Network failure or an unreadable response."""


class HTTPError(RestrikError):
    """The server returned a status outside the accepted range."""

    def __init__(self, message: str, *, status_code: int, body: bytes = b"") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        detail = self.body.decode("utf-8", errors="replace")
        if detail:
            return f"{self.args[0]} ({self.status_code}): {detail}"
        return f"{self.args[0]} ({self.status_code})"


class PollFailure(RestrikError):
    """Polling reached a status that is neither success nor pending."""

    def __init__(self, status: str, *, body: bytes = b"") -> None:
        super().__init__(f"unexpected status {status!r}")
        self.status = status
        self.body = body


class Cancelled(RestrikError):
    """The operation was cancelled by the caller."""


class NotFound(RestrikError):
    """The target returned 404.

    Not a failure on the read, delete and delete-poll paths; orchestrators
    catch it and drop the resource from state.
    """

    def __init__(self, url: str, *, body: bytes = b"") -> None:
        super().__init__(f"{url} not found")
        self.url = url
        self.body = body


class PartialCreate(RestrikError):
    """The resource was created but could not be observed afterwards.

    ``state`` carries the identifier so a later refresh can finish
    reconciliation.
    """

    def __init__(self, message: str, *, state: ResourceState) -> None:
        super().__init__(message)
        self.state = state
