"""Workspace — the provider and the named blocks parsed from HCL files."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, overload

import httpx
import pydantic

from .cancel import CancelToken
from .client import Client
from .context import Context, StateStore
from .errors import ConfigError
from .locks import LockRegistry
from .models import ProviderConfig
from .resolve import Resolver
from .spec import _spec_registry
from .specop import Absent, Ensure, Present, SpecOp

logger = logging.getLogger(__name__)

_STRATEGY_MAP: dict[str, type[SpecOp]] = {
    "present": Present,
    "ensure": Ensure,
    "absent": Absent,
}


@dataclass
class OperationRef:
    """An unresolved block: spec type, strategy and raw attributes."""

    name: str
    kind: str
    strategy: str
    attrs: dict[str, Any]
    source: str | None = None

    def resolve(self, resolver: Resolver) -> SpecOp:
        if self.kind not in _spec_registry:
            raise ConfigError(f"Unknown spec type: '{self.kind}'")
        spec_cls = _spec_registry[self.kind]
        logger.debug("Decoding %s '%s' -> %s", self.kind, self.name, spec_cls.__name__)
        spec_instance = spec_cls(self.name, **resolver.resolve(self.attrs))
        return _STRATEGY_MAP[self.strategy](spec_instance)


class Workspace(Mapping[str, SpecOp]):
    """Accumulates parsed files; blocks resolve into spec ops on access, in load order."""

    def __init__(self, *, variables: Mapping[str, Any] | None = None) -> None:
        self._resolver = Resolver(variables)
        self._provider: dict[str, Any] | None = None
        self._refs: dict[str, OperationRef] = {}

    def load(self, data: dict[str, Any], *, source: str | None = None) -> None:
        """Extract the provider and strategy blocks from a parsed data dict.

        Raises ConfigError on a second provider block or a duplicate name.
        """
        where = source or "input"
        for block in data.get("provider", []):
            if self._provider is not None:
                raise ConfigError(f"{where}: duplicate provider block")
            logger.debug("Found provider in %s", where)
            self._provider = dict(block)

        for strategy in _STRATEGY_MAP:
            for spec_block in data.get(strategy, []):
                # Each spec_block is {"spec_kind": {attrs}}
                for kind, attrs in spec_block.items():
                    attrs = dict(attrs)
                    name = attrs.pop("name", None)
                    if not name:
                        raise ConfigError(f"{where}: {strategy} '{kind}' block has no name")
                    if name in self._refs:
                        raise ConfigError(f"{where}: duplicate block: '{name}'")
                    logger.debug("Found %s '%s' (%s)", kind, name, strategy)
                    self._refs[name] = OperationRef(name, kind, strategy, attrs, source)

    @property
    def provider(self) -> ProviderConfig:
        if self._provider is None:
            raise ConfigError("no provider block loaded")
        try:
            return ProviderConfig.model_validate(self._resolver.resolve(self._provider))
        except pydantic.ValidationError as exc:
            raise ConfigError(f"provider: {exc}") from exc

    def _resolve(self) -> dict[str, SpecOp]:
        logger.debug("Resolving %d block(s)", len(self._refs))
        return {name: ref.resolve(self._resolver) for name, ref in self._refs.items()}

    def __getitem__(self, name: str) -> SpecOp:
        if name not in self._refs:
            raise KeyError(name)
        return self._refs[name].resolve(self._resolver)

    def __contains__(self, name: object) -> bool:
        return name in self._refs

    def __iter__(self) -> Iterator[str]:
        return iter(self._refs)

    def __len__(self) -> int:
        return len(self._refs)

    @overload
    def get(self, name: str) -> SpecOp | None: ...
    @overload
    def get(self, name: str, default: SpecOp) -> SpecOp: ...
    @overload
    def get(self, name: str, default: None) -> SpecOp | None: ...
    def get(self, name: str, default: Any = None) -> SpecOp | None:
        return self[name] if name in self._refs else default

    def filter(self, names: Iterable[str]) -> list[SpecOp]:
        """Return ops matching the given names, preserving input order."""
        resolved = self._resolve()
        return [op for n in names if (op := resolved.get(n)) is not None]

    def connect(
        self,
        *,
        transport: httpx.BaseTransport | None = None,
        store: StateStore | None = None,
        locks: LockRegistry | None = None,
        cancel: CancelToken | None = None,
        dry_run: bool = False,
    ) -> Context:
        """Build a client from the provider block and wrap it in a Context."""
        provider = self.provider
        client = Client.build(provider, transport=transport)
        return Context(client, provider=provider, locks=locks, store=store, cancel=cancel, dry_run=dry_run)

    def apply(self, ctx: Context, names: Iterable[str] | None = None) -> None:
        """Run every op (or the named ones) against ``ctx`` in order."""
        ops = list(self._resolve().values()) if names is None else self.filter(names)
        logger.info("Applying %d block(s)", len(ops))
        for op in ops:
            ctx.cancel.check()
            op(ctx)

    def __repr__(self) -> str:
        provider = "yes" if self._provider is not None else "no"
        return f"Workspace(provider={provider}, blocks={len(self._refs)})"
