"""Tests for restrik.context."""

from __future__ import annotations

from restrik.context import Context, StateStore
from restrik.locks import LockRegistry


class TestStateStore:
    def test_empty(self):
        store = StateStore()
        assert store.get("a") is None
        assert "a" not in store
        assert len(store) == 0

    def test_put_and_get(self):
        store = StateStore()
        store.put("a", {"id": 1}, config="cfg")
        assert store.get("a") == {"id": 1}
        assert store.entry("a").config == "cfg"
        assert list(store) == ["a"]

    def test_put_none_keeps_config_and_private(self):
        store = StateStore()
        store.put("a", {"id": 1}, config="cfg")
        store.entry("a").private.set("k", b"v")
        store.put("a", None)
        assert "a" not in store
        assert store.entry("a").config == "cfg"
        assert store.entry("a").private.get("k") == b"v"

    def test_drop_clears_private(self):
        store = StateStore()
        store.put("a", 1)
        private = store.entry("a").private
        private.set("k", b"v")
        store.drop("a")
        assert private.get("k") is None
        assert store.entry("a").state is None

    def test_drop_missing(self):
        StateStore().drop("nope")


class TestContext:
    def test_defaults(self, client):
        ctx = Context(client)
        assert ctx.dry_run is False
        assert isinstance(ctx.locks, LockRegistry)
        assert not ctx.cancel.cancelled
        assert ctx.provider is None

    def test_shared_store_and_locks(self, client):
        store, locks = StateStore(), LockRegistry()
        ctx = Context(client, store=store, locks=locks, dry_run=True)
        assert ctx.store is store
        assert ctx.locks is locks

    def test_repr(self, client):
        ctx = Context(client)
        ctx.store.put("a", 1)
        assert repr(ctx) == "Context(base_url='https://api.test', dry_run=False, states=1)"
