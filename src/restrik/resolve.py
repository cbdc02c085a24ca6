"""Resolver — expand ${...} references in parsed configuration.

Only ``${...}`` is interpolated. The request templates ``$(...)`` and
``#(...)`` pass through untouched for the engine to expand at call time,
``$${...}`` yields a literal ``${...}`` and ``${{ ... }}`` is left alone.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator, Mapping
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)

_INTERP_PATTERN = re.compile(r"\$\$\{|\$\{([^{}]+)\}")
_WHOLE_PATTERN = re.compile(r"\$\{([^{}]+)\}")


class Environ(Mapping[str, str]):
    """Environment lookup that warns and reads as empty when a variable is unset."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def __getitem__(self, key: str) -> str:
        if key not in self._environ:
            logger.warning("Environment variable '%s' is not set", key)
            return ""
        return self._environ[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._environ)

    def __len__(self) -> int:
        return len(self._environ)


def default_context() -> dict[str, Any]:
    return {"env": Environ(), "CWD": os.getcwd}


class Resolver:
    """Resolve ${...} references against a context dict."""

    def __init__(self, context: Mapping[str, Any] | None = None) -> None:
        self._context = default_context() if context is None else dict(context)

    def lookup(self, ref: str) -> Any:
        """Resolve a dotted reference such as ``env.HOME``."""
        current: Any = self._context
        for part in ref.split("."):
            if isinstance(current, Mapping):
                if isinstance(current, Environ) or part in current:
                    current = current[part]
                    continue
            elif hasattr(current, part):
                current = getattr(current, part)
                continue
            raise ConfigError(f"undefined variable '{ref}'")
        if callable(current) and not isinstance(current, type):
            current = current()
        return current

    def resolve_value(self, value: str) -> Any:
        """Interpolate one string.

        A string that is exactly one ``${ref}`` keeps the referenced value's
        type; embedded references are stringified.
        """
        if "${" not in value:
            return value
        whole = _WHOLE_PATTERN.fullmatch(value)
        if whole:
            return self.lookup(whole.group(1).strip())

        def replace(match: re.Match[str]) -> str:
            if match.group(1) is None:
                return "${"
            return str(self.lookup(match.group(1).strip()))

        return _INTERP_PATTERN.sub(replace, value)

    def resolve(self, data: Any) -> Any:
        """Walk dicts and lists, interpolating every string."""
        if isinstance(data, dict):
            return {k: self.resolve(v) for k, v in data.items()}
        if isinstance(data, list):
            return [self.resolve(item) for item in data]
        if isinstance(data, str):
            return self.resolve_value(data)
        return data
