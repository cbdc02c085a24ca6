"""Cooperative cancellation for long-running calls."""

from __future__ import annotations

import threading

from .errors import Cancelled


class CancelToken:
    """Signal shared between a caller and the engine.

    Every sleep, lock wait and HTTP call made by the engine checks the
    token; a cancelled token turns the next check into ``Cancelled``.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def check(self) -> None:
        if self._event.is_set():
            raise Cancelled("operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early (and raising) on cancel."""
        self.check()
        if seconds > 0 and self._event.wait(seconds):
            raise Cancelled("operation cancelled")

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"
