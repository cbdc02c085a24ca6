"""Template expansion for paths and parameter values.

Templates reference the configured path and a prior response body:

- ``$(path)`` the configured resource path
- ``$(body)`` / ``$(body.a.b)`` a value from the body
- ``$f1.f2(body.a)`` the value piped through named functions
- ``#(body.self)`` a self-URL with the base URL prefix removed

In paths, ``$(body...)`` values are path-escaped unless functions are
given explicitly.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote, unquote, urlsplit

from . import jsonpath
from .errors import ConfigError

logger = logging.getLogger(__name__)

_PARAM_PATTERN = re.compile(r"\$([\w.]*)\(([\w.#@-]+)\)|#\(([\w.#@-]+)\)")

_NO_BODY = object()


def _escape(value: str) -> str:
    return quote(value, safe="$&+:=@")


def _base(value: str) -> str:
    stripped = value.rstrip("/")
    if not stripped:
        return "/" if value else "."
    return posixpath.basename(stripped)


def _url_path(value: str) -> str:
    return urlsplit(value).path


def _functions(path: str | None) -> dict[str, Callable[[str], str]]:
    def trim_path(value: str) -> str:
        if path is None:
            raise ConfigError("trim_path is only available when expanding a path")
        if posixpath.isabs(value) != posixpath.isabs(path):
            raise ConfigError(f"cannot make {value!r} relative to {path!r}")
        return posixpath.relpath(value, path)

    return {
        "escape": _escape,
        "unescape": unquote,
        "base": _base,
        "url_path": _url_path,
        "trim_path": trim_path,
    }


def _lookup(ref: str, body: Any) -> str:
    if body is _NO_BODY:
        raise ConfigError(f"cannot expand {ref!r} without a body")
    if ref == "body":
        query = "@this"
    elif ref.startswith("body."):
        query = ref.removeprefix("body.")
    else:
        raise ConfigError(f"invalid match: {ref!r}")
    value, present = jsonpath.get(body, query)
    if not present:
        raise ConfigError(f"no property found at path {query!r} in the body")
    return jsonpath.stringify(value)


def _apply(names: str, value: str, funcs: dict[str, Callable[[str], str]]) -> str:
    for name in names.split("."):
        func = funcs.get(name)
        if func is None:
            raise ConfigError(f"unknown function {name!r}")
        value = func(value)
    return value


def expand_path(
    pattern: str,
    path: str,
    body: Any = _NO_BODY,
    *,
    base_url: str = "",
) -> str:
    """Expand a path template against the configured path and a body."""
    funcs = _functions(path)

    def replace(match: re.Match[str]) -> str:
        names, ref, self_ref = match.groups()
        if self_ref is not None:
            return _lookup(self_ref, body).removeprefix(base_url)
        if ref == "path":
            return _apply(names, path, funcs) if names else path
        value = _lookup(ref, body)
        if names:
            return _apply(names, value, funcs)
        return _escape(value)

    out = _PARAM_PATTERN.sub(replace, pattern)
    if out != pattern:
        logger.debug("Expanded path '%s' to '%s'", pattern, out)
    return out


def expand_body(expr: str, body: Any) -> str:
    """Expand ``$(body...)`` parameters in a plain value; nothing is escaped.

    An empty body leaves ``expr`` untouched.
    """
    if body is None or body == "" or body == b"":
        return expr
    funcs = _functions(None)

    def replace(match: re.Match[str]) -> str:
        names, ref, self_ref = match.groups()
        if self_ref is not None:
            return match.group(0)
        value = _lookup(ref, body)
        return _apply(names, value, funcs) if names else value

    return _PARAM_PATTERN.sub(replace, expr)


def expand_values[V](values: Mapping[str, V], body: Any) -> dict[str, V]:
    """Expand every header value or query value list against ``body``."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, list):
            out[key] = [expand_body(v, body) for v in value]
        else:
            out[key] = expand_body(value, body)  # type: ignore[arg-type]
    return out
