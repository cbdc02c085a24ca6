"""Runtime execution context for applying a workspace."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from .cancel import CancelToken
from .client import Client
from .locks import LockRegistry
from .models import ProviderConfig
from .private import MemoryPrivateStore

logger = logging.getLogger(__name__)


@dataclass
class Entry:
    """What is known about one named block: its state, private data and last config."""

    state: Any = None
    config: Any = None
    private: MemoryPrivateStore = field(default_factory=MemoryPrivateStore)


class StateStore:
    """In-memory state for every named block in a workspace."""

    def __init__(self) -> None:
        self._entries: dict[str, Entry] = {}

    def entry(self, name: str) -> Entry:
        entry = self._entries.get(name)
        if entry is None:
            entry = self._entries[name] = Entry()
        return entry

    def get(self, name: str) -> Any:
        entry = self._entries.get(name)
        return None if entry is None else entry.state

    def put(self, name: str, state: Any, *, config: Any = None) -> None:
        entry = self.entry(name)
        entry.state = state
        if config is not None:
            entry.config = config
        logger.debug("Stored state for '%s'", name)

    def drop(self, name: str) -> None:
        entry = self._entries.pop(name, None)
        if entry is not None:
            entry.private.clear()
            logger.debug("Dropped state for '%s'", name)

    def __contains__(self, name: object) -> bool:
        entry = self._entries.get(name)  # type: ignore[arg-type]
        return entry is not None and entry.state is not None

    def __iter__(self) -> Iterator[str]:
        return (name for name, entry in self._entries.items() if entry.state is not None)

    def __len__(self) -> int:
        return sum(1 for _ in self)


class Context:
    """Runtime state passed through every spec operation."""

    def __init__(
        self,
        client: Client,
        *,
        provider: ProviderConfig | None = None,
        locks: LockRegistry | None = None,
        store: StateStore | None = None,
        cancel: CancelToken | None = None,
        dry_run: bool = False,
    ) -> None:
        self.client = client
        self.provider = provider
        self.locks = locks or LockRegistry()
        self.store = store if store is not None else StateStore()
        self.cancel = cancel or CancelToken()
        self.dry_run = dry_run

    def __repr__(self) -> str:
        return f"Context(base_url={self.client.base_url!r}, dry_run={self.dry_run}, states={len(self.store)})"
