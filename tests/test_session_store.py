"""
tests/test_session_store.py — Session Snapshot Storage
=======================================================

Uses the in-memory SQLite engine from ``conftest.db_engine`` for the
``kv`` mode.
"""

from __future__ import annotations

import pytest
from conftest import T0

from director.services.session_store import (
    DEFAULT_TTL_SEC,
    SessionStore,
    StorageMode,
    StorageUnavailableError,
    normalize_updated_at,
)


def _state(saved_at: int, marker: str = "x") -> dict:
    return {"savedAt": saved_at, "gameState": {"marker": marker}}


class TestModes:
    def test_kv(self, kv_store):
        assert kv_store.mode is StorageMode.KV
        assert kv_store.is_available and kv_store.is_persistent

    def test_memory(self):
        store = SessionStore(allow_memory=True)
        assert store.mode is StorageMode.MEMORY
        assert store.is_available and not store.is_persistent

    def test_disabled_raises(self):
        store = SessionStore()
        assert store.mode is StorageMode.DISABLED
        with pytest.raises(StorageUnavailableError):
            store.get("room")
        with pytest.raises(StorageUnavailableError):
            store.set("room", {})
        with pytest.raises(StorageUnavailableError):
            store.delete("room")
        assert store.purge_expired() == 0

    def test_from_env_memory(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("ALLOW_MEMORY_FALLBACK", "TRUE")
        assert SessionStore.from_env().mode is StorageMode.MEMORY

    def test_from_env_disabled(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("ALLOW_MEMORY_FALLBACK", "1")
        assert SessionStore.from_env().mode is StorageMode.DISABLED

    def test_from_env_sqlite(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'director.db'}")
        monkeypatch.setenv("SESSION_TTL_SEC", "60")
        store = SessionStore.from_env()
        assert store.mode is StorageMode.KV
        assert store.ttl_sec == 60

    def test_from_env_bad_ttl_uses_default(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("SESSION_TTL_SEC", "-4")
        assert SessionStore.from_env().ttl_sec == DEFAULT_TTL_SEC


class TestNormalizeUpdatedAt:
    def test_values(self):
        assert normalize_updated_at(12.9, 99) == 12
        assert normalize_updated_at("40", 99) == 40
        assert normalize_updated_at(0, 99) == 99
        assert normalize_updated_at(None, 99) == 99
        assert normalize_updated_at("soon", 99) == 99


@pytest.fixture(params=["kv", "memory"])
def store(request, kv_store, clock):
    if request.param == "kv":
        return kv_store
    return SessionStore(allow_memory=True, clock=clock)


class TestReadWrite:
    def test_missing(self, store):
        assert store.get("room") is None

    def test_write_then_read(self, store):
        result = store.set("room", _state(T0), T0)
        assert result.was_written and not result.is_stale
        row = store.get("room")
        assert row.updated_at == T0
        assert row.state == _state(T0)

    def test_stale_write_is_rejected(self, store):
        store.set("room", _state(T0 + 10, "new"), T0 + 10)
        result = store.set("room", _state(T0, "old"), T0)
        assert result.is_stale and not result.was_written
        assert result.updated_at == T0 + 10
        assert result.state["gameState"]["marker"] == "new"
        assert store.get("room").state["gameState"]["marker"] == "new"

    def test_equal_timestamp_overwrites(self, store):
        store.set("room", _state(T0, "first"), T0)
        result = store.set("room", _state(T0, "second"), T0)
        assert result.was_written
        assert store.get("room").state["gameState"]["marker"] == "second"

    def test_missing_timestamp_uses_now(self, store, clock):
        clock.advance(42)
        assert store.set("room", _state(0), None).updated_at == T0 + 42

    def test_non_dict_state_is_stored_empty(self, store):
        store.set("room", ["not", "a", "dict"], T0)
        assert store.get("room").state == {}

    def test_sessions_are_independent(self, store):
        store.set("a", _state(T0 + 5), T0 + 5)
        assert store.set("b", _state(T0), T0).was_written

    def test_delete(self, store):
        store.set("room", _state(T0), T0)
        store.delete("room")
        assert store.get("room") is None
        store.delete("room")


class TestExpiry:
    def test_expired_rows_disappear(self, kv_store, clock):
        kv_store.set("room", _state(T0), T0)
        clock.advance(DEFAULT_TTL_SEC * 1000 - 1)
        assert kv_store.get("room") is not None
        clock.advance(1)
        assert kv_store.get("room") is None

    def test_expired_row_does_not_block_older_write(self, kv_store, clock):
        kv_store.set("room", _state(T0 + 1000), T0 + 1000)
        clock.advance(DEFAULT_TTL_SEC * 1000)
        assert kv_store.set("room", _state(T0), T0).was_written

    def test_write_refreshes_expiry(self, kv_store, clock):
        kv_store.set("room", _state(T0), T0)
        clock.advance(DEFAULT_TTL_SEC * 1000 - 10)
        kv_store.set("room", _state(T0 + 1), T0 + 1)
        clock.advance(100)
        assert kv_store.get("room") is not None

    def test_purge_expired(self, kv_store, clock):
        kv_store.set("old", _state(T0), T0)
        clock.advance(DEFAULT_TTL_SEC * 1000)
        kv_store.set("fresh", _state(T0), T0)
        assert kv_store.purge_expired() == 1
        assert kv_store.get("fresh") is not None
