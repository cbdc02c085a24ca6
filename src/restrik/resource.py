"""Resource lifecycle: create, read, update and delete a managed document."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

from . import jsonpath
from .body import (
    apply_merge_patch,
    create_merge_patch,
    filter_attrs,
    loads,
    modify_body,
    modify_body_for_import,
    nullify_object,
)
from .cancel import CancelToken
from .client import Client, Options, Response, overlay
from .errors import ConfigError, HTTPError, NotFound, PartialCreate, RestrikError
from .expand import expand_body, expand_path, expand_values
from .listing import decode_import_spec, encode_import_spec
from .locks import LockRegistry
from .models import (
    ImportSpec,
    PlanModification,
    PollConfig,
    ProviderConfig,
    ResourceConfig,
    ResourceState,
)
from .poll import Poller, PollOptions
from .precheck import prechecked
from .private import EphemeralBodyManager, PrivateStore, validate_ephemeral_body

logger = logging.getLogger(__name__)


def _poll_options(config: PollConfig, header: dict[str, str], query: dict[str, list[str]], output: Any) -> PollOptions:
    options = PollOptions.from_config(config)
    options.header = expand_values(overlay(header, config.header), output)
    options.query = expand_values(overlay(query, config.query), output)
    return options


class Resource:
    """Drive one REST resource through its lifecycle.

    The same instance may serve many resources; all per-resource data
    flows through the config, state and private store arguments.
    """

    def __init__(
        self,
        client: Client,
        *,
        locks: LockRegistry | None = None,
        provider: ProviderConfig | None = None,
    ) -> None:
        self.client = client
        self.locks = locks or LockRegistry()
        self.provider = provider
        self.log = client.logger_for(logger)

    def __repr__(self) -> str:
        return f"Resource(base_url={self.client.base_url!r})"

    def _scoped(self, base_url: str | None) -> Resource:
        """The engine for a resource that overrides the provider base URL."""
        if not base_url or base_url == self.client.base_url:
            return self
        return Resource(self.client.with_base_url(base_url), locks=self.locks, provider=self.provider)

    # -- provider defaults --

    def _create_method(self, config: ResourceConfig) -> str:
        if config.create_method:
            return config.create_method
        return self.provider.create_method if self.provider else "POST"

    def _update_method(self, config: ResourceConfig) -> str:
        if config.update_method:
            return config.update_method
        return self.provider.update_method if self.provider else "PUT"

    def _delete_method(self, config: ResourceConfig) -> str:
        if config.delete_method:
            return config.delete_method
        return self.provider.delete_method if self.provider else "DELETE"

    def _merge_patch_disabled(self, config: ResourceConfig) -> bool:
        if config.merge_patch_disabled is not None:
            return config.merge_patch_disabled
        return self.provider.merge_patch_disabled if self.provider else False

    # -- validation --

    def validate(self, config: ResourceConfig) -> None:
        """Reject configuration that can only fail at apply time."""
        if config.body is not None:
            for attr in config.write_only_attrs:
                if not jsonpath.exists(config.body, attr):
                    raise ConfigError(f"invalid path in 'write_only_attrs': {attr!r}")
            validate_ephemeral_body(config.body, config.ephemeral_body)
        elif config.ephemeral_body is not None and not isinstance(config.ephemeral_body, dict):
            raise ConfigError("ephemeral_body must be an object")
        for poll in (config.poll_create, config.poll_update, config.poll_delete):
            if poll is not None:
                PollOptions.from_config(poll)
        for attr in config.force_new_attrs + config.output_attrs:
            jsonpath.parse(attr)
        if config.create_selector:
            jsonpath.parse(config.create_selector)

    # -- create --

    def _probe(self, config: ResourceConfig, cancel: CancelToken) -> None:
        options = Options(
            query=overlay(config.query, config.read_query),
            header=overlay(config.header, config.read_header),
        )
        try:
            resp = self.client.read(config.path, options, cancel=cancel)
        except NotFound:
            return
        raise HTTPError(f"resource already exists at {config.path}", status_code=resp.status_code, body=resp.body)

    def _resource_id(self, config: ResourceConfig, doc: Any) -> str:
        if not config.read_path:
            return config.path
        return expand_path(config.read_path, config.path, doc, base_url=self.client.base_url)

    def create(
        self,
        config: ResourceConfig,
        private: PrivateStore,
        cancel: CancelToken | None = None,
        *,
        on_state: Callable[[ResourceState], None] | None = None,
    ) -> ResourceState:
        """Create the resource and return its reconciled state.

        ``on_state`` receives the state as soon as the identifier is known,
        before any poll or read, so a caller can persist it early.
        """
        if (scoped := self._scoped(config.base_url)) is not self:
            return scoped.create(config, private, cancel, on_state=on_state)
        cancel = cancel or CancelToken()
        self.validate(config)
        method = self._create_method(config)
        self.log.info("Creating resource at %s", config.path)

        if config.check_existance or method == "PUT":
            self._probe(config, cancel)

        header = overlay(config.header, config.create_header)
        query = overlay(config.query, config.create_query)
        with prechecked(
            self.client,
            config.precheck_create,
            locks=self.locks,
            path=config.path,
            header=header,
            query=query,
            cancel=cancel,
        ):
            payload = config.body
            if config.ephemeral_body is not None:
                payload = apply_merge_patch(payload, config.ephemeral_body)
            resp = self.client.create(
                config.path, payload, Options(method=method, query=query, header=header), cancel=cancel
            ).raise_for_status(f"create {config.path}")

            doc = resp.json()
            if config.create_selector:
                doc, found = jsonpath.get(doc, config.create_selector)
                if not found:
                    raise RestrikError(f"create_selector {config.create_selector!r} matched nothing in the response")

            resource_id = self._resource_id(config, doc)
            EphemeralBodyManager(private).set(config.ephemeral_body)
            state = ResourceState.from_config(config, id=resource_id, body=config.body)
            state.output = doc
            if on_state is not None:
                on_state(state)

            try:
                if config.poll_create is not None:
                    self._poll_create(config, resp, resource_id, header, query, doc, cancel)
                if config.post_create_read is not None:
                    state = self._post_create_read(config, state, doc, cancel)
                result = self.read(state, private, cancel)
            except RestrikError as exc:
                raise PartialCreate(f"resource {resource_id} was created but could not be read: {exc}", state=state) from exc
            if result is None:
                raise PartialCreate(f"resource {resource_id} was created but is not readable", state=state)

        self.log.info("Created resource %s", result.id)
        return result

    def _poll_create(
        self,
        config: ResourceConfig,
        resp: Response,
        resource_id: str,
        header: dict[str, str],
        query: dict[str, list[str]],
        output: Any,
        cancel: CancelToken,
    ) -> None:
        assert config.poll_create is not None
        options = _poll_options(config.poll_create, header, query, output)
        if options.url_locator is None:
            poller = Poller(self.client.url(resource_id), options, initial=resp)
        else:
            poller = Poller.from_response(resp, options)
        poller.wait(self.client, cancel)

    def _post_create_read(
        self, config: ResourceConfig, state: ResourceState, doc: Any, cancel: CancelToken
    ) -> ResourceState:
        spec = config.post_create_read
        assert spec is not None
        path = expand_path(spec.path, config.path, doc, base_url=self.client.base_url)
        options = Options(query=expand_values(spec.query, doc), header=expand_values(spec.header, doc))
        resp = self.client.do("GET", path, options=options, cancel=cancel).raise_for_status(f"read {path}")
        out = resp.json()
        if spec.selector:
            out, found = jsonpath.get(out, expand_body(spec.selector, out))
            if not found:
                raise RestrikError(f"post-create selector {spec.selector!r} matched nothing in the response")
        return state.model_copy(update={"id": self._resource_id(config, out), "output": out})

    # -- read --

    def read(
        self,
        state: ResourceState,
        private: PrivateStore,
        cancel: CancelToken | None = None,
        *,
        importing: bool = False,
    ) -> ResourceState | None:
        """Refresh ``state`` from the server; None means the resource is gone."""
        if (scoped := self._scoped(state.base_url)) is not self:
            return scoped.read(state, private, cancel, importing=importing)
        cancel = cancel or CancelToken()
        importing = importing or state.importing
        output = state.output
        options = Options(
            query=expand_values(overlay(state.query, state.read_query), output),
            header=expand_values(overlay(state.header, state.read_header), output),
        )
        try:
            resp = self.client.read(state.id, options, cancel=cancel)
        except NotFound:
            self.log.info("Resource %s no longer exists", state.id)
            return None
        resp.raise_for_status(f"read {state.id}")
        doc = resp.json()

        if state.read_selector:
            doc, found = jsonpath.get(doc, expand_body(state.read_selector, output))
            if not found:
                self.log.info("Resource %s not found by read selector", state.id)
                return None
        if state.read_response_template:
            doc = loads(expand_body(state.read_response_template, doc))

        if importing:
            managed = modify_body_for_import(state.body, doc)
        elif state.body is None:
            managed = doc
        else:
            managed = modify_body(state.body, doc, state.write_only_attrs)

        published = filter_attrs(doc, state.output_attrs) if state.output_attrs else doc
        published = EphemeralBodyManager(private).subtract(published)
        self.log.debug("Read resource %s", state.id)
        return state.model_copy(update={"body": managed, "output": published, "importing": False})

    # -- update --

    def _patched_body(self, config: ResourceConfig, planned: Any, output: Any) -> Any:
        if not config.update_body_patches:
            return planned
        doc = copy.deepcopy(planned)
        for idx, patch in enumerate(config.update_body_patches):
            if patch.removed:
                jsonpath.delete(doc, patch.path)
                continue
            assert patch.raw_json is not None
            try:
                value = loads(expand_body(patch.raw_json, output))
            except ConfigError as exc:
                raise ConfigError(f"update_body_patches[{idx}]: {exc}") from exc
            doc = jsonpath.set_value(doc, patch.path, value)
        return doc

    def update(
        self,
        state: ResourceState,
        config: ResourceConfig,
        private: PrivateStore,
        cancel: CancelToken | None = None,
    ) -> ResourceState:
        """Push the planned body and return the refreshed state."""
        if (scoped := self._scoped(config.base_url)) is not self:
            return scoped.update(state, config, private, cancel)
        cancel = cancel or CancelToken()
        self.validate(config)
        ephemeral = EphemeralBodyManager(private)
        changed = ephemeral.diff(config.ephemeral_body)
        if state.body == config.body and not changed:
            self.log.debug("Resource %s unchanged; skipping update", state.id)
            unchanged = ResourceState.from_config(config, id=state.id, body=state.body)
            unchanged.output = state.output
            return unchanged

        output = state.output
        header = expand_values(overlay(config.header, config.update_header), output)
        query = expand_values(overlay(config.query, config.update_query), output)
        method = self._update_method(config)
        merge_patch_disabled = self._merge_patch_disabled(config)
        self.log.info("Updating resource %s", state.id)

        with prechecked(
            self.client,
            config.precheck_update,
            locks=self.locks,
            path=state.id,
            header=header,
            query=query,
            body=output,
            cancel=cancel,
        ):
            payload = self._patched_body(config, config.body, output)
            if method == "PATCH" and not merge_patch_disabled:
                payload = create_merge_patch(state.body, payload)
            if config.ephemeral_body is not None:
                payload = apply_merge_patch(payload, config.ephemeral_body)

            path = state.id
            if config.update_path:
                path = expand_path(config.update_path, config.path, output, base_url=self.client.base_url)
            options = Options(method=method, query=query, header=header, merge_patch_disabled=merge_patch_disabled)
            resp = self.client.update(path, payload, options, cancel=cancel).raise_for_status(f"update {path}")
            ephemeral.set(config.ephemeral_body)

            if config.poll_update is not None:
                Poller.from_response(resp, _poll_options(config.poll_update, header, query, output)).wait(
                    self.client, cancel
                )

            planned = ResourceState.from_config(config, id=state.id, body=config.body)
            planned.output = output
            result = self.read(planned, private, cancel)

        if result is None:
            raise RestrikError(f"resource {state.id} disappeared after update")
        self.log.info("Updated resource %s", state.id)
        return result

    # -- delete --

    def delete(
        self,
        state: ResourceState,
        config: ResourceConfig,
        private: PrivateStore,
        cancel: CancelToken | None = None,
    ) -> None:
        if (scoped := self._scoped(state.base_url or config.base_url)) is not self:
            scoped.delete(state, config, private, cancel)
            return
        cancel = cancel or CancelToken()
        output = state.output
        header = expand_values(overlay(config.header, config.delete_header), output)
        query = expand_values(overlay(config.query, config.delete_query), output)
        method = self._delete_method(config)
        self.log.info("Deleting resource %s", state.id)

        with prechecked(
            self.client,
            config.precheck_delete,
            locks=self.locks,
            path=state.id,
            header=header,
            query=query,
            body=output,
            cancel=cancel,
        ):
            path = state.id
            if config.delete_path:
                path = expand_path(config.delete_path, config.path, output, base_url=self.client.base_url)
            payload = config.delete_body
            if config.delete_body_raw:
                payload = loads(expand_body(config.delete_body_raw, output))

            resp = self.client.delete(
                path, Options(method=method, query=query, header=header), body=payload, cancel=cancel
            )
            if resp.status_code == 404 and method == "DELETE":
                self.log.info("Resource %s was already gone", state.id)
            else:
                resp.raise_for_status(f"delete {path}")
                if config.poll_delete is not None:
                    Poller.from_response(resp, _poll_options(config.poll_delete, header, query, output)).wait(
                        self.client, cancel
                    )

        EphemeralBodyManager(private).set(None)
        self.log.info("Deleted resource %s", state.id)

    # -- planning --

    def modify_plan(
        self, state: ResourceState | None, config: ResourceConfig, private: PrivateStore
    ) -> PlanModification:
        """Flag replacement and unknown output for a pending update."""
        plan = PlanModification()
        if state is None:
            return plan
        if config.force_new_attrs:
            patch = create_merge_patch(state.body, config.body)
            for attr in config.force_new_attrs:
                if jsonpath.exists(patch, attr):
                    self.log.info("Change to '%s' forces replacement of %s", attr, state.id)
                    plan.requires_replace = ["body"]
                    break
        if EphemeralBodyManager(private).diff(config.ephemeral_body):
            self.log.info("ephemeral_body of %s has changed", state.id)
            plan.output_unknown = True
        return plan

    # -- import --

    def import_state(self, identity: str) -> ResourceState:
        """Seed a state from an identity; the next read projects onto its body."""
        spec = decode_import_spec(identity)
        return ResourceState(
            id=spec.id,
            path=spec.path,
            body=spec.body,
            query=spec.query or {},
            header=spec.header or {},
            read_selector=spec.read_selector,
            read_response_template=spec.read_response_template,
            importing=True,
        )

    def identity(self, state: ResourceState) -> str:
        """Encode the identity that re-imports ``state``."""
        spec = ImportSpec(
            id=state.id,
            path=state.path,
            query=state.query or None,
            header=state.header or None,
            body=nullify_object(state.body) if state.body is not None else None,
            read_selector=state.read_selector,
            read_response_template=state.read_response_template,
        )
        return encode_import_spec(spec)
