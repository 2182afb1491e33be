"""
director.services.session_store — Session Snapshot Storage
===========================================================

Backs the ``/api/sessions`` routes.  Three modes, picked at startup:

* ``kv``       — ``director_sessions`` table via SQLAlchemy (``DATABASE_URL``),
  rows expire after ``SESSION_TTL_SEC`` (default 3 days).
* ``memory``   — process-local dict, only with ``ALLOW_MEMORY_FALLBACK=true``.
* ``disabled`` — every call raises :class:`StorageUnavailableError` (→ 503).

Writes follow optimistic last-writer-wins: a write whose ``updatedAt`` is
strictly older than the stored row is rejected as stale and the stored row
is returned instead.  Equal timestamps overwrite.

All methods are synchronous; async callers go through
:func:`director.database.engine.run_db`.
"""

from __future__ import annotations

import enum
import logging
import math
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Engine, delete
from sqlalchemy.orm import Session

from director.constants import to_number
from director.database.engine import create_db_engine, get_session, init_db
from director.database.models import SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 60 * 60 * 24 * 3


class StorageUnavailableError(Exception):
    """No persistent storage is configured and memory fallback is off."""


class StorageMode(enum.StrEnum):
    KV = "kv"
    MEMORY = "memory"
    DISABLED = "disabled"


@dataclass(frozen=True, slots=True)
class StoredSession:
    session_id: str
    updated_at: int
    state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class WriteResult:
    updated_at: int
    state: dict[str, Any]
    is_stale: bool
    was_written: bool


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_updated_at(value: Any, now_ms: int) -> int:
    """Floor *value*; anything non-numeric or ≤ 0 becomes *now_ms*."""
    num = to_number(value)
    if num is None or num <= 0:
        return now_ms
    return int(math.floor(num))


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() == "true"


def _env_int(name: str, default: int) -> int:
    num = to_number(os.getenv(name))
    return int(num) if num is not None and num > 0 else default


class SessionStore:
    def __init__(
        self,
        engine: Engine | None = None,
        *,
        allow_memory: bool = False,
        ttl_sec: int = DEFAULT_TTL_SEC,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.engine = engine
        self.allow_memory = allow_memory
        self.ttl_sec = ttl_sec
        self.clock = clock or _now_ms
        self._memory: dict[str, StoredSession] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> SessionStore:
        """Build the store from ``DATABASE_URL`` / ``ALLOW_MEMORY_FALLBACK`` / ``SESSION_TTL_SEC``."""
        engine = None
        if os.getenv("DATABASE_URL", "").strip():
            try:
                engine = create_db_engine()
                init_db(engine)
            except Exception:
                logger.exception("Session database unavailable, falling back")
                engine = None

        store = cls(
            engine,
            allow_memory=_env_flag("ALLOW_MEMORY_FALLBACK"),
            ttl_sec=_env_int("SESSION_TTL_SEC", DEFAULT_TTL_SEC),
        )
        logger.info("Session storage mode: %s", store.mode)
        return store

    # -------------------------------------------------------------------
    # Mode
    # -------------------------------------------------------------------
    @property
    def mode(self) -> StorageMode:
        if self.engine is not None:
            return StorageMode.KV
        if self.allow_memory:
            return StorageMode.MEMORY
        return StorageMode.DISABLED

    @property
    def is_available(self) -> bool:
        return self.mode is not StorageMode.DISABLED

    @property
    def is_persistent(self) -> bool:
        return self.mode is StorageMode.KV

    def _assert_ready(self) -> None:
        if not self.is_available:
            raise StorageUnavailableError(
                "Persistent storage is not configured. Set DATABASE_URL, or set "
                "ALLOW_MEMORY_FALLBACK=true for local development."
            )

    # -------------------------------------------------------------------
    # KV helpers
    # -------------------------------------------------------------------
    def _live_record(self, session: Session, session_id: str, now: int) -> SessionRecord | None:
        record = session.get(SessionRecord, session_id, with_for_update=True)
        if record is None:
            return None
        if record.expires_at <= now:
            session.delete(record)
            return None
        return record

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------
    def get(self, session_id: str) -> StoredSession | None:
        self._assert_ready()

        if self.engine is None:
            with self._lock:
                return self._memory.get(session_id)

        now = self.clock()
        with get_session(self.engine) as session:
            record = self._live_record(session, session_id, now)
            result = None
            if record is not None:
                state = record.state if isinstance(record.state, dict) else {}
                result = StoredSession(session_id, record.updated_at, state)
        return result

    def set(self, session_id: str, state: Any, updated_at: Any = None) -> WriteResult:
        """Store *state* unless a strictly newer snapshot already exists."""
        self._assert_ready()

        now = self.clock()
        incoming_at = normalize_updated_at(updated_at, now)
        incoming_state = state if isinstance(state, dict) else {}

        if self.engine is None:
            with self._lock:
                existing = self._memory.get(session_id)
                if existing is not None and incoming_at < existing.updated_at:
                    return WriteResult(existing.updated_at, existing.state, True, False)
                self._memory[session_id] = StoredSession(session_id, incoming_at, incoming_state)
            return WriteResult(incoming_at, incoming_state, False, True)

        with get_session(self.engine) as session:
            record = self._live_record(session, session_id, now)
            if record is not None and incoming_at < record.updated_at:
                stale = WriteResult(record.updated_at, dict(record.state or {}), True, False)
                logger.info(
                    "Rejected stale write for %s (%d < %d)",
                    session_id, incoming_at, record.updated_at,
                )
                return stale

            expires_at = now + self.ttl_sec * 1000
            if record is None:
                session.add(
                    SessionRecord(
                        session_id=session_id,
                        updated_at=incoming_at,
                        state=incoming_state,
                        expires_at=expires_at,
                    )
                )
            else:
                record.updated_at = incoming_at
                record.state = incoming_state
                record.expires_at = expires_at
        return WriteResult(incoming_at, incoming_state, False, True)

    def delete(self, session_id: str) -> None:
        self._assert_ready()

        if self.engine is None:
            with self._lock:
                self._memory.pop(session_id, None)
            return

        with get_session(self.engine) as session:
            session.execute(delete(SessionRecord).where(SessionRecord.session_id == session_id))

    def purge_expired(self) -> int:
        """Delete expired rows; returns how many went."""
        if self.engine is None:
            return 0
        with get_session(self.engine) as session:
            result = session.execute(
                delete(SessionRecord).where(SessionRecord.expires_at <= self.clock())
            )
        return result.rowcount or 0
