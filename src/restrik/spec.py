"""Specification ABC and spec registration."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .context import Context

_spec_registry: dict[str, type[Specification]] = {}


def spec(name: str):
    """Register a Specification class as the decoder for an HCL block type."""

    def decorator(cls):
        _spec_registry[name] = cls
        cls.kind = name
        return cls

    return decorator


class Specification(ABC):
    """A named block in a workspace that can be compared, applied and removed."""

    kind: str = ""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    def __str__(self) -> str:
        return f"{self.kind or type(self).__name__} '{self.name}'"

    @abstractmethod
    def equals(self, ctx: Context) -> bool:
        """Remote state matches the block."""

    def exists(self, ctx: Context) -> bool:
        """The remote object exists (defaults to equals)."""
        return self.equals(ctx)

    @abstractmethod
    def apply(self, ctx: Context) -> None:
        """Create or update the remote object."""

    @abstractmethod
    def remove(self, ctx: Context) -> None:
        """Delete the remote object."""
