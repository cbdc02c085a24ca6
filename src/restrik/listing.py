"""Enumerate a collection endpoint into importable resources."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

import pydantic

from . import jsonpath
from .body import dumps, modify_body_for_import
from .cancel import CancelToken
from .client import Client, Options
from .errors import ConfigError, RestrikError
from .expand import expand_body, expand_path
from .models import ImportSpec, ListConfig, ResourceState

logger = logging.getLogger(__name__)


def decode_import_spec(identity: str) -> ImportSpec:
    """Parse an identity blob; ``id`` and ``path`` are required."""
    try:
        return ImportSpec.model_validate_json(identity)
    except pydantic.ValidationError as exc:
        raise ConfigError(f"invalid import identity: {exc}") from exc


def encode_import_spec(spec: ImportSpec) -> str:
    """Serialize an identity, omitting unset fields but keeping nulls inside ``body``."""
    data = spec.model_dump(mode="json")
    return dumps({k: v for k, v in data.items() if v is not None})


@dataclass
class ListResult:
    """One collection element: a display name, its identity and a seed state."""

    display_name: str
    identity: str
    state: ResourceState


def _collection(client: Client, config: ListConfig, cancel: CancelToken) -> list:
    options = Options(method=config.method, query=dict(config.query), header=dict(config.header))
    resp = client.read_collection(config.path, options, body=config.body, cancel=cancel)
    if resp.status_code == 404:
        logger.info("Collection %s does not exist", config.path)
        return []
    resp.raise_for_status(f"list {config.path}")
    doc = resp.json()
    if config.selector:
        doc, found = jsonpath.get(doc, config.selector)
        if not found:
            return []
    if not isinstance(doc, list):
        raise RestrikError(f"{config.path}: the (selected) response is not an array")
    return doc


def list_resources(
    client: Client,
    config: ListConfig,
    cancel: CancelToken | None = None,
) -> Iterator[ListResult]:
    """Yield one result per element of the listed collection."""
    cancel = cancel or CancelToken()
    items = _collection(client, config, cancel)
    logger.debug("Listed %d item(s) from %s", len(items), config.path)
    resource_path = config.resource_path or config.path

    for idx, item in enumerate(items):
        name = expand_body(config.name, item)
        resource_id = expand_path(config.resource_id, resource_path, item)
        if not resource_id:
            raise RestrikError(f"item {idx}: no id found via {config.resource_id!r}")

        spec = ImportSpec(
            id=resource_id,
            path=resource_path,
            query=dict(config.resource_query) or None,
            header=dict(config.resource_header) or None,
            body=config.resource_body,
            read_selector=config.resource_read_selector,
            read_response_template=config.resource_read_response_template,
        )
        body = modify_body_for_import(spec.body, item) if spec.body is not None else item
        state = ResourceState(
            id=resource_id,
            path=resource_path,
            body=body,
            output=item,
            query=spec.query or {},
            header=spec.header or {},
            read_selector=spec.read_selector,
            read_response_template=spec.read_response_template,
        )
        logger.debug("Listed %s as '%s': %s", resource_id, name, dumps(item))
        yield ListResult(display_name=name, identity=encode_import_spec(spec), state=state)
