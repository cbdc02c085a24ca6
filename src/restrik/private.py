"""Per-resource private storage and the ephemeral body fingerprint."""

from __future__ import annotations

import base64
import hashlib
import json
import logging
from typing import Any, Protocol

from .body import difference, disjointed, nullify_object
from .errors import ConfigError

logger = logging.getLogger(__name__)

EPHEMERAL_BODY_KEY = "ephemeral_body"
RENEW_KEY = "renew"
CLOSE_KEY = "close"


class PrivateStore(Protocol):
    """Opaque key/value blob the host round-trips for each resource."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes | None) -> None: ...


class MemoryPrivateStore:
    """Dict-backed private storage; ``set(key, None)`` deletes."""

    def __init__(self, data: dict[str, bytes] | None = None) -> None:
        self.data: dict[str, bytes] = dict(data or {})

    def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    def set(self, key: str, value: bytes | None) -> None:
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value

    def clear(self) -> None:
        self.data.clear()

    def __repr__(self) -> str:
        return f"MemoryPrivateStore(keys={sorted(self.data)})"


def canonical_json(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _fingerprint(ebody: Any) -> str:
    return base64.b64encode(hashlib.sha256(canonical_json(ebody)).digest()).decode("ascii")


class EphemeralBodyManager:
    """Tracks the last ephemeral body sent without persisting its values.

    The blob holds a SHA-256 fingerprint for drift detection and a
    nullified skeleton used to strip ephemeral leaves out of responses.
    """

    def __init__(self, store: PrivateStore) -> None:
        self.store = store

    def _load(self) -> dict[str, str] | None:
        raw = self.store.get(EPHEMERAL_BODY_KEY)
        if raw is None:
            return None
        try:
            blob = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid {EPHEMERAL_BODY_KEY!r} private data: {exc}") from exc
        if not isinstance(blob, dict) or "hash" not in blob:
            raise ConfigError(f"invalid {EPHEMERAL_BODY_KEY!r} private data: key 'hash' not found")
        return blob

    def set(self, ebody: Any) -> None:
        """Record ``ebody``, or clear the record when it is None."""
        if ebody is None:
            self.store.set(EPHEMERAL_BODY_KEY, None)
            return
        skeleton = base64.b64encode(canonical_json(nullify_object(ebody))).decode("ascii")
        blob = {"hash": _fingerprint(ebody), "null": skeleton}
        self.store.set(EPHEMERAL_BODY_KEY, json.dumps(blob).encode("utf-8"))
        logger.debug("Recorded ephemeral body fingerprint")

    def exists(self) -> bool:
        return self.store.get(EPHEMERAL_BODY_KEY) is not None

    def diff(self, ebody: Any) -> bool:
        """True when ``ebody`` differs from what was last recorded."""
        blob = self._load()
        if blob is None:
            return bool(ebody)
        if ebody is None:
            return True
        return blob["hash"] != _fingerprint(ebody)

    def null_body(self) -> Any:
        """The nullified skeleton of the recorded body, or None."""
        blob = self._load()
        if blob is None or not blob.get("null"):
            return None
        return json.loads(base64.b64decode(blob["null"]))

    def subtract(self, doc: Any) -> Any:
        """Remove every recorded ephemeral path from ``doc``."""
        skeleton = self.null_body()
        if skeleton is None:
            return doc
        return difference(doc, skeleton)


def validate_ephemeral_body(body: Any, ebody: Any) -> None:
    """An ephemeral body may not overlap the managed body."""
    if ebody is None:
        return
    if not isinstance(ebody, dict):
        raise ConfigError("ephemeral_body must be an object")
    if body is None:
        return
    if not disjointed(body, ebody):
        raise ConfigError("ephemeral_body must not overlap with body")
