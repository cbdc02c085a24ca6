"""One-shot calls: operations tracked in state, and fire-and-forget actions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from .body import apply_merge_patch, filter_attrs, loads
from .cancel import CancelToken
from .client import Client, Options, Response, overlay
from .errors import ConfigError
from .expand import expand_body, expand_path, expand_values
from .locks import LockRegistry
from .models import (
    ActionConfig,
    OperationConfig,
    OperationState,
    PlanModification,
    PollConfig,
    PrecheckStep,
)
from .poll import Poller, PollOptions
from .precheck import prechecked
from .private import EphemeralBodyManager, PrivateStore

logger = logging.getLogger(__name__)


class _Invoker:
    def __init__(self, client: Client, *, locks: LockRegistry | None = None) -> None:
        self.client = client
        self.locks = locks or LockRegistry()

    def _call(
        self,
        *,
        method: str,
        path: str,
        body: Any,
        query: dict[str, list[str]],
        header: dict[str, str],
        precheck: Sequence[PrecheckStep],
        poll: PollConfig | None,
        poll_path: str,
        output: Any,
        cancel: CancelToken,
        on_sent: Callable[[], None] | None = None,
    ) -> Response:
        with prechecked(
            self.client,
            precheck,
            locks=self.locks,
            path=path,
            header=header,
            query=query,
            body=output,
            cancel=cancel,
        ):
            options = Options(method=method, query=query, header=header)
            resp = self.client.operation(path, body, options, cancel=cancel).raise_for_status(f"{method} {path}")
            if on_sent is not None:
                on_sent()
            if poll is not None:
                poll_options = PollOptions.from_config(poll)
                poll_options.header = expand_values(overlay(header, poll.header), output)
                poll_options.query = expand_values(overlay(query, poll.query), output)
                if poll_options.url_locator is None:
                    poller = Poller(self.client.url(poll_path), poll_options, initial=resp)
                else:
                    poller = Poller.from_response(resp, poll_options)
                poller.wait(self.client, cancel)
        return resp


class Operation(_Invoker):
    """A call whose response is recorded in state.

    Create and update both issue the configured call; delete issues the
    optional ``delete_*`` call.
    """

    def validate(self, config: OperationConfig) -> None:
        if config.ephemeral_body is not None and not isinstance(config.ephemeral_body, dict):
            raise ConfigError("ephemeral_body must be an object")
        if config.delete_body is not None and config.delete_body_raw is not None:
            raise ConfigError("delete_body and delete_body_raw are mutually exclusive")

    def _run(self, config: OperationConfig, private: PrivateStore, cancel: CancelToken | None) -> OperationState:
        cancel = cancel or CancelToken()
        self.validate(config)
        payload = config.body
        if config.ephemeral_body is not None:
            payload = apply_merge_patch(payload, config.ephemeral_body)
        ephemeral = EphemeralBodyManager(private)
        logger.info("Running operation %s %s", config.method, config.path)
        resp = self._call(
            method=config.method,
            path=config.path,
            body=payload,
            query=dict(config.query),
            header=dict(config.header),
            precheck=config.precheck,
            poll=config.poll,
            poll_path=config.path,
            output=None,
            cancel=cancel,
            on_sent=lambda: ephemeral.set(config.ephemeral_body),
        )
        doc = resp.json()
        op_id = config.path
        if config.id_builder:
            op_id = expand_path(config.id_builder, config.path, doc, base_url=self.client.base_url)

        output = filter_attrs(doc, config.output_attrs) if config.output_attrs else doc
        return OperationState(id=op_id, output=ephemeral.subtract(output))

    def create(
        self, config: OperationConfig, private: PrivateStore, cancel: CancelToken | None = None
    ) -> OperationState:
        return self._run(config, private, cancel)

    def update(
        self,
        state: OperationState,
        config: OperationConfig,
        private: PrivateStore,
        cancel: CancelToken | None = None,
    ) -> OperationState:
        return self._run(config, private, cancel)

    def delete(
        self,
        state: OperationState,
        config: OperationConfig,
        private: PrivateStore,
        cancel: CancelToken | None = None,
    ) -> None:
        """Issue the delete call when one is configured, then forget the state."""
        cancel = cancel or CancelToken()
        if config.delete_method is None and config.delete_path is None:
            EphemeralBodyManager(private).set(None)
            return

        output = state.output
        path = config.path
        if config.delete_path:
            path = expand_path(config.delete_path, config.path, output, base_url=self.client.base_url)
        payload = config.delete_body
        if config.delete_body_raw:
            payload = loads(expand_body(config.delete_body_raw, output))
        method = config.delete_method or "DELETE"

        logger.info("Running delete operation %s %s", method, path)
        self._call(
            method=method,
            path=path,
            body=payload,
            query=expand_values(overlay(config.query, config.delete_query), output),
            header=expand_values(overlay(config.header, config.delete_header), output),
            precheck=config.precheck_delete,
            poll=config.poll_delete,
            poll_path=path,
            output=output,
            cancel=cancel,
        )
        EphemeralBodyManager(private).set(None)

    def modify_plan(
        self, state: OperationState | None, config: OperationConfig, private: PrivateStore
    ) -> PlanModification:
        plan = PlanModification()
        if state is not None and EphemeralBodyManager(private).diff(config.ephemeral_body):
            logger.info("ephemeral_body of operation %s has changed", state.id)
            plan.output_unknown = True
        return plan


class Action(_Invoker):
    """Invoke a call once; nothing is kept."""

    def invoke(self, config: ActionConfig, cancel: CancelToken | None = None) -> Any:
        cancel = cancel or CancelToken()
        logger.info("Invoking action %s %s", config.method, config.path)
        resp = self._call(
            method=config.method,
            path=config.path,
            body=config.body,
            query=dict(config.query),
            header=dict(config.header),
            precheck=config.precheck,
            poll=config.poll,
            poll_path=config.path,
            output=None,
            cancel=cancel,
        )
        return resp.json_or_none()
