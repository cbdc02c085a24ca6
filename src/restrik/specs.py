"""Built-in block types: restful_resource, restful_operation, restful_action, restful_data."""

from __future__ import annotations

import logging
from typing import Any

import pydantic

from .context import Context
from .datasource import DataSource
from .errors import ConfigError
from .models import (
    ActionConfig,
    DataSourceConfig,
    OperationConfig,
    ResourceConfig,
    ResourceState,
)
from .operation import Action, Operation
from .resource import Resource
from .spec import Specification, spec

logger = logging.getLogger(__name__)


def _validate[M: pydantic.BaseModel](model: type[M], name: str, attrs: dict[str, Any]) -> M:
    try:
        return model.model_validate(attrs)
    except pydantic.ValidationError as exc:
        raise ConfigError(f"'{name}': {exc}") from exc


@spec("restful_resource")
class ResourceSpec(Specification):
    """A managed REST resource."""

    def __init__(self, name: str, **attrs: Any) -> None:
        super().__init__(name)
        self.config = _validate(ResourceConfig, name, attrs)

    def _engine(self, ctx: Context) -> Resource:
        return Resource(ctx.client.with_logger_context(self.name), locks=ctx.locks, provider=ctx.provider)

    def _addressable(self, ctx: Context) -> bool:
        method = self.config.create_method or (ctx.provider.create_method if ctx.provider else "POST")
        return self.config.check_existance or method == "PUT"

    def _refresh(self, ctx: Context) -> ResourceState | None:
        entry = ctx.store.entry(self.name)
        state = entry.state
        if state is None:
            if not self._addressable(ctx):
                return None
            # the path names the resource itself, so an untracked one can be adopted
            state = ResourceState.from_config(self.config, id=self.config.path, body=self.config.body)
        fresh = self._engine(ctx).read(state, entry.private, ctx.cancel)
        if fresh is None:
            ctx.store.drop(self.name)
            return None
        ctx.store.put(self.name, fresh, config=entry.config or self.config)
        return fresh

    def exists(self, ctx: Context) -> bool:
        return self._refresh(ctx) is not None

    def equals(self, ctx: Context) -> bool:
        state = self._refresh(ctx)
        if state is None:
            return False
        plan = self._engine(ctx).modify_plan(state, self.config, ctx.store.entry(self.name).private)
        if plan.requires_replace or plan.output_unknown:
            return False
        return state.body == self.config.body

    def apply(self, ctx: Context) -> None:
        engine = self._engine(ctx)
        entry = ctx.store.entry(self.name)
        state = entry.state

        if state is not None and engine.modify_plan(state, self.config, entry.private).requires_replace:
            logger.info("Replacing %s", self)
            engine.delete(state, entry.config or self.config, entry.private, ctx.cancel)
            ctx.store.put(self.name, None)
            state = None

        if state is None:
            state = engine.create(
                self.config,
                entry.private,
                ctx.cancel,
                on_state=lambda early: ctx.store.put(self.name, early, config=self.config),
            )
        else:
            state = engine.update(state, self.config, entry.private, ctx.cancel)
        ctx.store.put(self.name, state, config=self.config)

    def remove(self, ctx: Context) -> None:
        entry = ctx.store.entry(self.name)
        self._engine(ctx).delete(entry.state, entry.config or self.config, entry.private, ctx.cancel)
        ctx.store.drop(self.name)


@spec("restful_operation")
class OperationSpec(Specification):
    """A call re-issued whenever its configuration changes."""

    def __init__(self, name: str, **attrs: Any) -> None:
        super().__init__(name)
        self.config = _validate(OperationConfig, name, attrs)

    def _engine(self, ctx: Context) -> Operation:
        return Operation(ctx.client.with_logger_context(self.name), locks=ctx.locks)

    def exists(self, ctx: Context) -> bool:
        return self.name in ctx.store

    def equals(self, ctx: Context) -> bool:
        entry = ctx.store.entry(self.name)
        if entry.state is None or entry.config != self.config:
            return False
        return not self._engine(ctx).modify_plan(entry.state, self.config, entry.private).output_unknown

    def apply(self, ctx: Context) -> None:
        engine = self._engine(ctx)
        entry = ctx.store.entry(self.name)
        if entry.state is None:
            state = engine.create(self.config, entry.private, ctx.cancel)
        else:
            state = engine.update(entry.state, self.config, entry.private, ctx.cancel)
        ctx.store.put(self.name, state, config=self.config)

    def remove(self, ctx: Context) -> None:
        entry = ctx.store.entry(self.name)
        self._engine(ctx).delete(entry.state, entry.config or self.config, entry.private, ctx.cancel)
        ctx.store.drop(self.name)


@spec("restful_action")
class ActionSpec(Specification):
    """A call issued on every apply."""

    def __init__(self, name: str, **attrs: Any) -> None:
        super().__init__(name)
        self.config = _validate(ActionConfig, name, attrs)

    def equals(self, ctx: Context) -> bool:
        return False

    def apply(self, ctx: Context) -> None:
        client = ctx.client.with_logger_context(self.name)
        output = Action(client, locks=ctx.locks).invoke(self.config, ctx.cancel)
        ctx.store.put(self.name, output)

    def remove(self, ctx: Context) -> None:
        ctx.store.drop(self.name)


@spec("restful_data")
class DataSpec(Specification):
    """A read-only lookup refreshed on every apply."""

    def __init__(self, name: str, **attrs: Any) -> None:
        super().__init__(name)
        self.config = _validate(DataSourceConfig, name, attrs)

    def equals(self, ctx: Context) -> bool:
        return False

    def apply(self, ctx: Context) -> None:
        client = ctx.client.with_logger_context(self.name)
        output = DataSource(client, locks=ctx.locks).read(self.config, ctx.cancel)
        ctx.store.put(self.name, output, config=self.config)

    def remove(self, ctx: Context) -> None:
        ctx.store.drop(self.name)
