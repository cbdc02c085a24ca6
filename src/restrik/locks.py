"""Named advisory locks shared by every resource in the process."""

from __future__ import annotations

import logging
import threading

from .cancel import CancelToken

logger = logging.getLogger(__name__)


class LockRegistry:
    """Process-wide mutexes keyed by name.

    Locks are not reentrant. Acquisition waits in short slices so a
    cancelled token is noticed while blocked.
    """

    def __init__(self, *, poll_interval: float = 0.1) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._poll_interval = poll_interval

    def _get(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def acquire(self, name: str, cancel: CancelToken | None = None) -> None:
        cancel = cancel or CancelToken()
        lock = self._get(name)
        logger.debug("Locking '%s'", name)
        while True:
            cancel.check()
            if lock.acquire(timeout=self._poll_interval):
                break
        logger.debug("Locked '%s'", name)

    def release(self, name: str) -> None:
        logger.debug("Unlocking '%s'", name)
        self._get(name).release()

    def locked(self, name: str) -> bool:
        return self._get(name).locked()
