"""Body reconciliation — project server responses onto the managed document."""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from . import jsonpath
from .errors import ConfigError

logger = logging.getLogger(__name__)


def dumps(doc: Any) -> str:
    """Serialize a document compactly, keeping key order."""
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False)


def loads(data: str | bytes | None) -> Any:
    """Decode a JSON body; an empty body decodes to None."""
    if data is None or not data.strip():
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON document: {exc}") from exc


def _project(base: Any, response: Any) -> Any:
    if isinstance(base, dict) and isinstance(response, dict):
        return {key: _project(value, response[key]) for key, value in base.items() if key in response}
    if isinstance(base, list) and isinstance(response, list):
        if len(base) != len(response):
            return response
        return [_project(b, r) for b, r in zip(base, response, strict=True)]
    return response


def modify_body(base: Any, response: Any, write_only: Sequence[str] = ()) -> Any:
    """Compute the managed document from the desired ``base`` and a read ``response``.

    Keys absent from ``base`` are dropped; arrays whose length changed are
    taken from the response verbatim. Values at ``write_only`` paths never
    come from the response: they keep the ``base`` value when it has one.
    """
    response = copy.deepcopy(response)
    for path in write_only:
        jsonpath.delete(response, path)
    result = _project(base, response)
    for path in write_only:
        for concrete in jsonpath.concrete_paths(base, path):
            if jsonpath.exists(result, concrete):
                continue
            value, _ = jsonpath.get(base, concrete)
            try:
                result = jsonpath.set_value(result, concrete, copy.deepcopy(value))
            except ConfigError as exc:
                logger.warning("Not restoring write-only value at '%s': %s", concrete, exc)
    return result


def _project_for_import(base: Any, response: Any) -> Any:
    if isinstance(base, dict) and isinstance(response, dict):
        out = {}
        for key, value in base.items():
            if key not in response:
                continue
            try:
                out[key] = _project_for_import(value, response[key])
            except ConfigError as exc:
                raise ConfigError(f"key {key!r}: {exc}") from None
        return out
    if isinstance(base, list) and isinstance(response, list):
        match len(base):
            case 0:
                return response
            case 1:
                out_list = []
                for idx, item in enumerate(response):
                    try:
                        out_list.append(_project_for_import(base[0], item))
                    except ConfigError as exc:
                        raise ConfigError(f"element {idx}: {exc}") from None
                return out_list
            case _:
                raise ConfigError("the length of an import template array should be at most 1")
    return response


def modify_body_for_import(base: Any, response: Any) -> Any:
    """Like ``modify_body`` but template arrays of length 0 or 1 match any length.

    A None ``base`` (import without a body template) keeps the whole response.
    """
    if base is None:
        return response
    return _project_for_import(base, response)


def nullify_object(doc: Any) -> Any:
    """Deep copy of ``doc`` with every scalar leaf replaced by None."""
    if isinstance(doc, dict):
        return {key: nullify_object(value) for key, value in doc.items()}
    if isinstance(doc, list):
        return [nullify_object(item) for item in doc]
    return None


def create_merge_patch(original: Any, target: Any) -> Any:
    """Return the JSON merge patch (RFC 7396) turning ``original`` into ``target``."""
    if not isinstance(original, dict) or not isinstance(target, dict):
        return copy.deepcopy(target)
    patch: dict[str, Any] = {}
    for key in original:
        if key not in target:
            patch[key] = None
    for key, value in target.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
        elif original[key] != value:
            if isinstance(original[key], dict) and isinstance(value, dict):
                patch[key] = create_merge_patch(original[key], value)
            else:
                patch[key] = copy.deepcopy(value)
    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7396), returning a new document."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result


def disjointed(lhs: Any, rhs: Any) -> bool:
    """True when two objects share no leaf path."""
    if not isinstance(lhs, dict) or not isinstance(rhs, dict):
        return False
    for key, value in lhs.items():
        if key not in rhs:
            continue
        if not disjointed(value, rhs[key]):
            return False
    return True


def difference(lhs: Any, rhs: Any) -> Any:
    """Remove from ``lhs`` every path present in ``rhs``.

    An object emptied by the subtraction is removed with its key.
    """
    if not isinstance(lhs, dict) or not isinstance(rhs, dict):
        return lhs
    out = {}
    for key, value in lhs.items():
        if key not in rhs:
            out[key] = value
            continue
        if not isinstance(rhs[key], dict) or not isinstance(value, dict):
            continue
        rest = difference(value, rhs[key])
        if rest:
            out[key] = rest
    return out


def filter_attrs(doc: Any, paths: Iterable[str]) -> Any:
    """Keep only ``paths`` in ``doc``; ``#`` steps apply to every array element."""
    paths = list(paths)
    if not paths:
        return doc
    results = [_filter(doc, jsonpath.parse(path), path) for path in paths]
    merged = results[0]
    for filtered in results[1:]:
        merged = _merge(merged, filtered, "")
    return merged


def _filter(doc: Any, steps: tuple[jsonpath.Step, ...], path: str) -> Any:
    if not steps:
        return copy.deepcopy(doc)
    step, rest = steps[0], steps[1:]
    match step:
        case jsonpath.Splat():
            if not isinstance(doc, list):
                raise ConfigError(f"{path}: splat step expects an array, got {type(doc).__name__}")
            return [_filter(item, rest, path) for item in doc]
        case jsonpath.Key(name):
            if not isinstance(doc, dict):
                raise ConfigError(f"{path}: step {name!r} expects an object, got {type(doc).__name__}")
            if name not in doc:
                return {}
            return {name: _filter(doc[name], rest, path)}
        case jsonpath.This():
            return _filter(doc, rest, path)
    raise ConfigError(f"{path}: query steps cannot filter attributes")


def _merge(lhs: Any, rhs: Any, where: str) -> Any:
    if isinstance(lhs, dict) and isinstance(rhs, dict):
        out = dict(lhs)
        for key, value in rhs.items():
            out[key] = _merge(out[key], value, f"{where}.{key}") if key in out else value
        return out
    if isinstance(lhs, list) and isinstance(rhs, list):
        if len(lhs) != len(rhs):
            raise ConfigError(f"cannot merge arrays of different length at '{where}'")
        return [_merge(a, b, f"{where}.{idx}") for idx, (a, b) in enumerate(zip(lhs, rhs, strict=True))]
    if lhs != rhs:
        raise ConfigError(f"conflicting values at '{where}'")
    return lhs
