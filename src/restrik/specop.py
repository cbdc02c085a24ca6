"""SpecOp strategies: how a block is reconciled."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .context import Context
from .spec import Specification

logger = logging.getLogger(__name__)


class SpecOp(ABC):
    """Wraps a Specification with conditional execution logic."""

    def __init__(self, spec: Specification) -> None:
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.spec!r})"

    @abstractmethod
    def __call__(self, ctx: Context) -> None: ...


class Present(SpecOp):
    """Create only if the remote object doesn't exist."""

    def __call__(self, ctx: Context) -> None:
        if self.spec.exists(ctx):
            logger.debug("Skipping %s; already exists", self.spec)
        elif ctx.dry_run:
            logger.info("[DRY RUN] Would apply %s", self.spec)
        else:
            logger.info("Applying %s", self.spec)
            self.spec.apply(ctx)


class Ensure(SpecOp):
    """Create or update when the remote object has drifted."""

    def __call__(self, ctx: Context) -> None:
        if self.spec.equals(ctx):
            logger.debug("Skipping %s; up to date", self.spec)
        elif ctx.dry_run:
            logger.info("[DRY RUN] Would apply %s", self.spec)
        else:
            logger.info("Applying %s", self.spec)
            self.spec.apply(ctx)


class Absent(SpecOp):
    """Delete if the remote object exists."""

    def __call__(self, ctx: Context) -> None:
        if not self.spec.exists(ctx):
            logger.debug("Skipping removal of %s; not present", self.spec)
        elif ctx.dry_run:
            logger.info("[DRY RUN] Would remove %s", self.spec)
        else:
            logger.info("Removing %s", self.spec)
            self.spec.remove(ctx)
