"""Dotted path queries over decoded JSON documents.

Supports the subset of gjson path syntax used by locators, selectors and
templates:

- ``a.b.c`` object keys, ``items.0`` array indices
- ``items.#`` array length, ``items.#.name`` splat over every element
- ``items.#(kind=="disk")`` first element matching a condition,
  ``items.#(kind=="disk")#`` every matching element
- ``@this`` the document itself
- ``\\`` escapes the next character (``a\\.b`` is the single key ``a.b``)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import ConfigError

_MISSING = object()

_OPERATORS = ("==", "!=", "<=", ">=", "<", ">")


@dataclass(frozen=True)
class Key:
    name: str


@dataclass(frozen=True)
class Splat:
    pass


@dataclass(frozen=True)
class This:
    pass


@dataclass(frozen=True)
class Query:
    field: tuple[Step, ...]
    op: str | None
    value: Any
    all: bool = False

    def matches(self, element: Any) -> bool:
        found, present = walk(element, self.field) if self.field else (element, True)
        if not present:
            return False
        if self.op is None:
            return True
        if self.op == "==":
            return found == self.value
        if self.op == "!=":
            return found != self.value
        try:
            match self.op:
                case "<":
                    return found < self.value
                case "<=":
                    return found <= self.value
                case ">":
                    return found > self.value
                case ">=":
                    return found >= self.value
        except TypeError:
            return False
        return False


type Step = Key | Splat | This | Query


def _split(path: str) -> list[tuple[str, bool]]:
    """Split a path on unescaped dots, keeping parenthesised groups whole.

    Returns (component, literal) pairs; ``literal`` is set when the
    component's first character was escaped.
    """
    parts: list[tuple[str, bool]] = []
    buf: list[str] = []
    literal = False
    depth = 0
    quoted = False
    idx = 0
    while idx < len(path):
        ch = path[idx]
        if ch == "\\" and not quoted:
            if idx + 1 >= len(path):
                raise ConfigError(f"dangling escape in path {path!r}")
            if not buf:
                literal = True
            buf.append(path[idx + 1])
            idx += 2
            continue
        if depth:
            if ch == '"':
                quoted = not quoted
            elif not quoted and ch == "(":
                depth += 1
            elif not quoted and ch == ")":
                depth -= 1
        elif ch == "(" and buf == ["#"] and not literal:
            depth = 1
        elif ch == ".":
            if not buf:
                raise ConfigError(f"empty step in path {path!r}")
            parts.append(("".join(buf), literal))
            buf, literal = [], False
            idx += 1
            continue
        buf.append(ch)
        idx += 1
    if depth:
        raise ConfigError(f"unbalanced parenthesis in path {path!r}")
    if not buf:
        raise ConfigError(f"empty step in path {path!r}")
    parts.append(("".join(buf), literal))
    return parts


def _parse_literal(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _parse_query(text: str, path: str) -> Query:
    all_matches = text.endswith(")#")
    body = text[2 : -2 if all_matches else -1].strip()
    for op in _OPERATORS:
        left, sep, right = body.partition(op)
        if sep:
            field = parse(left.strip()) if left.strip() else ()
            return Query(field, op, _parse_literal(right.strip()), all_matches)
    if not body:
        raise ConfigError(f"empty query in path {path!r}")
    return Query(parse(body), None, None, all_matches)


def parse(path: str) -> tuple[Step, ...]:
    """Parse a dotted path into steps."""
    if not path:
        raise ConfigError("empty path")
    steps: list[Step] = []
    for text, literal in _split(path):
        if literal:
            steps.append(Key(text))
        elif text == "#":
            steps.append(Splat())
        elif text == "@this":
            steps.append(This())
        elif text.startswith("#("):
            if not (text.endswith(")") or text.endswith(")#")):
                raise ConfigError(f"malformed query {text!r} in path {path!r}")
            steps.append(_parse_query(text, path))
        else:
            steps.append(Key(text))
    return tuple(steps)


def format_path(steps: tuple[Step, ...]) -> str:
    """Render value and splat steps back to dotted form."""
    out: list[str] = []
    for step in steps:
        match step:
            case Key(name):
                out.append("".join("\\" + c if c in ".#\\" else c for c in name))
            case Splat():
                out.append("#")
            case This():
                out.append("@this")
            case Query():
                raise ConfigError("query steps cannot be formatted")
    return ".".join(out)


def walk(doc: Any, steps: tuple[Step, ...]) -> tuple[Any, bool]:
    """Evaluate parsed steps against a document."""
    current = doc
    for pos, step in enumerate(steps):
        match step:
            case This():
                continue
            case Key(name):
                current = _child(current, name)
                if current is _MISSING:
                    return None, False
            case Splat():
                if not isinstance(current, list):
                    return None, False
                rest = steps[pos + 1 :]
                if not rest:
                    return len(current), True
                return _collect(current, rest), True
            case Query():
                if not isinstance(current, list):
                    return None, False
                matched = [item for item in current if step.matches(item)]
                rest = steps[pos + 1 :]
                if step.all:
                    return _collect(matched, rest), True
                if not matched:
                    return None, False
                return walk(matched[0], rest)
    return current, True


def _collect(items: list[Any], rest: tuple[Step, ...]) -> list[Any]:
    out = []
    for item in items:
        value, present = walk(item, rest)
        if present:
            out.append(value)
    return out


def _child(value: Any, name: str) -> Any:
    if isinstance(value, dict):
        return value.get(name, _MISSING)
    if isinstance(value, list) and name.isdigit():
        idx = int(name)
        return value[idx] if idx < len(value) else _MISSING
    return _MISSING


def get(doc: Any, path: str) -> tuple[Any, bool]:
    """Return ``(value, present)`` for ``path`` in ``doc``."""
    return walk(doc, parse(path))


def exists(doc: Any, path: str) -> bool:
    return get(doc, path)[1]


def stringify(value: Any) -> str:
    """Render a projected value as text: strings raw, everything else as JSON."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def set_value(doc: Any, path: str, value: Any) -> Any:
    """Set ``path`` in ``doc`` to ``value``, creating intermediate objects.

    Mutates and returns ``doc``. Only key and index steps are supported.
    """
    steps = [s for s in parse(path) if not isinstance(s, This)]
    if not steps:
        return value
    if any(not isinstance(s, Key) for s in steps):
        raise ConfigError(f"cannot set path {path!r}: only keys and indices are supported")
    if doc is None:
        doc = {}
    current = doc
    for pos, step in enumerate(steps):
        last = pos == len(steps) - 1
        name = step.name  # type: ignore[union-attr]
        if isinstance(current, list):
            if not name.isdigit():
                raise ConfigError(f"cannot set key {name!r} on an array in path {path!r}")
            idx = int(name)
            if idx > len(current):
                raise ConfigError(f"index {idx} out of range in path {path!r}")
            if idx == len(current):
                current.append(None if not last else value)
            if last:
                current[idx] = value
                break
            if not isinstance(current[idx], dict | list):
                current[idx] = {}
            current = current[idx]
        elif isinstance(current, dict):
            if last:
                current[name] = value
                break
            if not isinstance(current.get(name), dict | list):
                current[name] = {}
            current = current[name]
        else:
            raise ConfigError(f"cannot set path {path!r} through a scalar")
    return doc


def delete(doc: Any, path: str) -> None:
    """Remove ``path`` from ``doc`` in place; splat steps apply to every element."""
    _delete(doc, [s for s in parse(path) if not isinstance(s, This)])


def _delete(current: Any, steps: list[Step]) -> None:
    if not steps:
        return
    step, rest = steps[0], steps[1:]
    match step:
        case Splat():
            if isinstance(current, list) and rest:
                for item in current:
                    _delete(item, rest)
        case Key(name):
            if isinstance(current, dict):
                if name not in current:
                    return
                if rest:
                    _delete(current[name], rest)
                else:
                    del current[name]
            elif isinstance(current, list) and name.isdigit():
                idx = int(name)
                if idx >= len(current):
                    return
                if rest:
                    _delete(current[idx], rest)
                else:
                    del current[idx]
        case Query():
            raise ConfigError("cannot delete through a query step")


def concrete_paths(doc: Any, path: str) -> list[str]:
    """Rewrite each splat step of ``path`` as the indices present in ``doc``.

    Only paths that resolve in ``doc`` are returned, so ``tags.#.name``
    against ``{"tags": [{"name": 1}, {}]}`` yields ``["tags.0.name"]``.
    """
    found: list[str] = []

    def visit(value: Any, steps: tuple[Step, ...], prefix: tuple[Step, ...]) -> None:
        if not steps:
            found.append(format_path(prefix))
            return
        step, rest = steps[0], steps[1:]
        match step:
            case Splat():
                if isinstance(value, list):
                    for idx, item in enumerate(value):
                        visit(item, rest, (*prefix, Key(str(idx))))
            case This():
                visit(value, rest, prefix)
            case Key(name):
                child = _child(value, name)
                if child is not _MISSING:
                    visit(child, rest, (*prefix, step))
            case Query():
                raise ConfigError(f"query steps are not allowed in path {path!r}")

    visit(doc, parse(path), ())
    return found
