"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from director.constants import ACTIVITY_CAPACITY
from director.database.models import Base
from director.engine.bounded import BoundedSequence
from director.engine.reconciler import SnapshotReconciler
from director.engine.session import SessionEngine
from director.engine.settings import normalize_settings
from director.engine.tip_menu import TipMenu, parse_fallback_tip_menu
from director.services import bus as bus_api
from director.services.session_store import SessionStore

T0 = 1_700_000_000_000


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeClock:
    """Injectable epoch-ms clock."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class FakeBus:
    """Records every request; answers from ``responses`` or raises for ``failing``."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, Any]] = []
        self.responses: dict[str, Any] = {}
        self.failing: set[str] = set()
        self.subscribers: dict[str, list] = {}

    async def request(self, method: str, params: Any = None) -> Any:
        self.requests.append((method, params))
        if method in self.failing:
            raise ConnectionError(f"{method} unavailable")
        return self.responses.get(method)

    async def publish(self, topic: str, data: Any) -> None:
        for handler in self.subscribers.get(topic, []):
            await handler(data)

    def subscribe(self, topic: str, handler) -> None:
        self.subscribers.setdefault(topic, []).append(handler)

    # -- inspection helpers ------------------------------------------------
    def whispers(self, kind: str | None = None) -> list[dict[str, Any]]:
        data = [params["data"] for method, params in self.requests if method == bus_api.WHISPER]
        if kind is None:
            return data
        return [item for item in data if item.get("type") == kind]

    def chats(self) -> list[str]:
        return [params["message"] for method, params in self.requests if method == bus_api.CHAT_SEND]

    def clear(self) -> None:
        self.requests.clear()


def make_engine(
    bus: FakeBus | None = None,
    clock: FakeClock | None = None,
    reconciler: SnapshotReconciler | None = None,
    **settings: Any,
) -> SessionEngine:
    """Engine with the default fallback menu already applied."""
    engine = SessionEngine(
        bus or FakeBus(),
        reconciler or SnapshotReconciler(),
        settings=normalize_settings(settings),
        clock=clock or FakeClock(),
    )
    items = parse_fallback_tip_menu(engine.settings.fallback_tip_menu)
    engine.apply_tip_menu(TipMenu(is_enabled=True, settings=items, source="fallback"))
    engine.state.activity_feed = BoundedSequence(ACTIVITY_CAPACITY)
    return engine


def tip_payload(user_id: str, amount: int, username: str | None = None, item_id: str = "") -> dict:
    return {
        "tokensAmount": amount,
        "tokensSpendData": {
            "action": "director.menu.tip",
            "userId": user_id,
            "username": username or user_id,
            "itemId": item_id,
        },
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def engine(bus: FakeBus, clock: FakeClock) -> SessionEngine:
    return make_engine(bus, clock)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Director tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def kv_store(db_engine: Engine, clock: FakeClock) -> SessionStore:
    return SessionStore(db_engine, clock=clock)


@pytest.fixture
def client(kv_store: SessionStore, monkeypatch):
    """FastAPI TestClient backed by the SQLite store, no API key."""
    from fastapi.testclient import TestClient

    from director.api.deps import get_store
    from director.api.main import app

    monkeypatch.delenv("BACKEND_API_KEY", raising=False)
    app.dependency_overrides[get_store] = lambda: kv_store
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
