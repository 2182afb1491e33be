"""
director.engine.reconciler — Snapshot Reconciler
=================================================

Keeps the local fast copy and the remote copy of a session snapshot
consistent under last-writer-wins, keyed by ``savedAt`` (epoch ms).

* :func:`merge_by_saved_at` is the single comparison used by hydration
  (ties go to the remote copy) and by conflict recovery (remote must be
  strictly newer).
* :func:`coerce_game_state` re-validates a foreign snapshot field by field;
  a malformed snapshot can never crash the engine or inject unbounded
  structures.
* :class:`SnapshotReconciler` owns the local store, the remote client and
  the ordered remote-write chain.  Write N, including any conflict
  adoption and rebroadcast, finishes before write N+1 goes on the wire.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from director.constants import (
    ACTIVITY_CAPACITY,
    ACTIVITY_TEXT_MAX,
    CHALLENGER_PLACEHOLDER,
    COMMAND_BY_ID,
    DIRECTOR_PLACEHOLDER,
    HISTORY_CAPACITY,
    ID_MAX,
    LABEL_MAX,
    MENU_TITLE_MAX,
    QUEUE_CAPACITY,
    USER_NAME_MAX,
    non_negative_int,
)
from director.engine.bounded import BoundedSequence
from director.engine.state import (
    ActivityEntry,
    ChallengerSeat,
    CommandEntry,
    DirectorSeat,
    GameState,
    HistoryEntry,
    Performance,
    User,
)
from director.engine.tip_menu import MenuItem, TipMenu
from director.services.local_store import LocalSnapshotStore
from director.services.remote_store import RemoteSessionClient, RemoteStoreError

logger = logging.getLogger(__name__)

__all__ = [
    "MergeDecision",
    "SnapshotReconciler",
    "SnapshotTarget",
    "coerce_game_state",
    "is_valid_snapshot",
    "merge_by_saved_at",
    "serialize",
    "snapshot_saved_at",
]

MENU_ITEMS_MAX = 100
MIN_DURATION_MS = 1000

Snapshot = dict[str, Any]
ConflictHandler = Callable[[Snapshot], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Last-writer-wins
# ---------------------------------------------------------------------------
def snapshot_saved_at(snapshot: Any) -> int:
    if not isinstance(snapshot, dict):
        return 0
    return non_negative_int(snapshot.get("savedAt"))


def is_valid_snapshot(snapshot: Any) -> bool:
    return isinstance(snapshot, dict) and isinstance(snapshot.get("gameState"), dict)


@dataclass(frozen=True, slots=True)
class MergeDecision:
    winner: Snapshot | None
    should_push_local: bool
    should_pull_remote: bool


def merge_by_saved_at(
    local: Snapshot | None,
    remote: Snapshot | None,
    *,
    prefer_remote_on_tie: bool = True,
) -> MergeDecision:
    """Decide which side is canonical.

    A missing (or gameState-less) remote always means "push local".
    """
    if not is_valid_snapshot(remote):
        return MergeDecision(winner=local, should_push_local=True, should_pull_remote=False)

    local_at = snapshot_saved_at(local)
    remote_at = snapshot_saved_at(remote)
    remote_wins = remote_at > local_at or (prefer_remote_on_tie and remote_at == local_at)
    if remote_wins:
        return MergeDecision(winner=remote, should_push_local=False, should_pull_remote=True)
    return MergeDecision(winner=local, should_push_local=True, should_pull_remote=False)


def serialize(state: GameState, saved_at: int) -> Snapshot:
    """Deep snapshot of *state*; shares no mutable structure with it."""
    game_state = state.to_dict()
    game_state["savedAt"] = saved_at
    return {"savedAt": saved_at, "gameState": game_state}


# ---------------------------------------------------------------------------
# Defensive coercion
# ---------------------------------------------------------------------------
def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _text(value: Any, limit: int, default: str = "") -> str:
    if value is None:
        return default
    return str(value)[:limit] or default


def _opt_id(value: Any) -> str | None:
    text = _text(value, ID_MAX).strip()
    return text or None


def _command_entry(raw: Any) -> CommandEntry | None:
    if not isinstance(raw, dict):
        return None
    return CommandEntry(
        id=_text(raw.get("id"), ID_MAX),
        command_id=_text(raw.get("commandId"), ID_MAX),
        label=_text(raw.get("label"), LABEL_MAX),
        category_title=_text(raw.get("categoryTitle"), LABEL_MAX),
        issued_by_id=_text(raw.get("issuedById"), ID_MAX),
        issued_by_name=_text(raw.get("issuedByName"), USER_NAME_MAX),
        issued_at=non_negative_int(raw.get("issuedAt")),
        duration_ms=max(MIN_DURATION_MS, non_negative_int(raw.get("durationMs"), MIN_DURATION_MS)),
    )


def _history_entry(raw: Any) -> HistoryEntry | None:
    if not isinstance(raw, dict):
        return None
    return HistoryEntry(
        id=_text(raw.get("id"), ID_MAX),
        command_id=_text(raw.get("commandId"), ID_MAX),
        label=_text(raw.get("label"), LABEL_MAX),
        category_title=_text(raw.get("categoryTitle"), LABEL_MAX),
        issued_by_name=_text(raw.get("issuedByName"), USER_NAME_MAX),
        issued_at=non_negative_int(raw.get("issuedAt")),
    )


def _activity_entry(raw: Any) -> ActivityEntry | None:
    if not isinstance(raw, dict):
        return None
    return ActivityEntry(
        id=_text(raw.get("id"), ID_MAX),
        at=non_negative_int(raw.get("at")),
        text=_text(raw.get("text"), ACTIVITY_TEXT_MAX),
    )


def _menu_item(raw: Any) -> MenuItem | None:
    if not isinstance(raw, dict):
        return None
    item_id = _text(raw.get("id"), ID_MAX).strip()
    title = _text(raw.get("title"), MENU_TITLE_MAX).strip()
    price = non_negative_int(raw.get("price"))
    if not item_id or not title or not price:
        return None
    return MenuItem(id=item_id, title=title, price=price)


def _capped(items, factory, capacity: int) -> list:
    result = []
    for raw in items:
        if len(result) >= capacity:
            break
        item = factory(raw)
        if item is not None:
            result.append(item)
    return result


def _menu_items(raw: list) -> list[MenuItem]:
    """Menu entries in order; a repeated id keeps only its first entry."""
    seen: set[str] = set()
    result: list[MenuItem] = []
    for item in _capped(raw, _menu_item, MENU_ITEMS_MAX):
        if item.id not in seen:
            seen.add(item.id)
            result.append(item)
    return result


def coerce_game_state(raw: Any) -> GameState:
    """Build a fresh :class:`GameState` from an untrusted ``gameState`` dict."""
    state = GameState()
    if not isinstance(raw, dict):
        return state

    state.is_live = bool(raw.get("isLive"))
    state.total_session_tips = non_negative_int(raw.get("totalSessionTips"))

    director = raw.get("director")
    if isinstance(director, dict):
        state.director = DirectorSeat(
            id=_opt_id(director.get("id")),
            name=_text(director.get("name"), USER_NAME_MAX, DIRECTOR_PLACEHOLDER),
            total=non_negative_int(director.get("total")),
            start_time=non_negative_int(director.get("startTime")),
        )

    challenger = raw.get("challenger")
    if isinstance(challenger, dict):
        state.challenger = ChallengerSeat(
            id=_opt_id(challenger.get("id")),
            name=_text(challenger.get("name"), USER_NAME_MAX, CHALLENGER_PLACEHOLDER),
            total=non_negative_int(challenger.get("total")),
        )

    for user_id, raw_user in _dict(raw.get("users")).items():
        if not isinstance(raw_user, dict):
            continue
        user_id = _text(user_id, ID_MAX).strip()
        if not user_id:
            continue
        allocations: dict[str, int] = {}
        for item_id, amount in _dict(raw_user.get("allocations")).items():
            value = non_negative_int(amount)
            if value > 0:
                key = _text(item_id, ID_MAX)
                allocations[key] = allocations.get(key, 0) + value
        state.users[user_id] = User(
            id=user_id,
            name=_text(raw_user.get("name"), USER_NAME_MAX, "viewer"),
            total=non_negative_int(raw_user.get("total")),
            allocations=allocations,
        )

    tip_menu = raw.get("tipMenu")
    if isinstance(tip_menu, dict):
        state.tip_menu = TipMenu(
            is_enabled=bool(tip_menu.get("isEnabled")),
            settings=_menu_items(_list(tip_menu.get("settings"))),
            updated_at=non_negative_int(tip_menu.get("updatedAt")),
            source=_text(tip_menu.get("source"), 32, "fallback"),
        )

    performance = raw.get("currentPerformance")
    entry = _command_entry(performance)
    if entry is not None:
        state.current_performance = Performance(
            entry=entry,
            started_at=non_negative_int(performance.get("startedAt")),
            ends_at=non_negative_int(performance.get("endsAt")),
        )

    state.queue = BoundedSequence(
        QUEUE_CAPACITY, _capped(_list(raw.get("queue")), _command_entry, QUEUE_CAPACITY)
    )
    state.command_history = BoundedSequence(
        HISTORY_CAPACITY,
        _capped(_list(raw.get("commandHistory")), _history_entry, HISTORY_CAPACITY),
    )
    state.command_cooldowns = {
        command_id: expiry
        for command_id, raw_expiry in _dict(raw.get("commandCooldowns")).items()
        if command_id in COMMAND_BY_ID and (expiry := non_negative_int(raw_expiry)) > 0
    }
    state.overlay_flash_at = non_negative_int(raw.get("overlayFlashAt"))
    state.activity_feed = BoundedSequence(
        ACTIVITY_CAPACITY,
        _capped(_list(raw.get("activityFeed")), _activity_entry, ACTIVITY_CAPACITY),
    )
    return state


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------
class SnapshotTarget(Protocol):
    """What :meth:`SnapshotReconciler.hydrate` needs from the engine."""

    def apply_snapshot(self, snapshot: Snapshot) -> None: ...

    def serialize(self) -> Snapshot: ...

    async def adopt_remote_snapshot(self, snapshot: Snapshot) -> bool: ...


class SnapshotReconciler:
    """Local cache + remote store + ordered remote-write chain."""

    def __init__(
        self,
        local: LocalSnapshotStore | None = None,
        remote: RemoteSessionClient | None = None,
        session_id: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.session_id = session_id
        # handed to every client built by configure_remote (tests mock it)
        self.transport = transport
        self._chain: asyncio.Future | None = None

    def configure_remote(self, base_url: str, api_key: str = "") -> None:
        """Point the remote side at *base_url*; blank disables it."""
        base_url = (base_url or "").strip()
        if not base_url:
            self.remote = None
            return
        if (
            self.remote is not None
            and self.remote.base_url == base_url.rstrip("/")
            and self.remote.api_key == (api_key or "").strip()
        ):
            return
        self.remote = RemoteSessionClient(base_url, api_key or "", transport=self.transport)
        logger.info("Remote session store: %s", self.remote.base_url)

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None and bool(self.remote.base_url) and bool(self.session_id)

    # -------------------------------------------------------------------
    # Local
    # -------------------------------------------------------------------
    def read_local(self) -> Snapshot | None:
        if self.local is None:
            return None
        snapshot = self.local.read()
        return snapshot if is_valid_snapshot(snapshot) else None

    def write_local(self, snapshot: Snapshot) -> None:
        if self.local is not None:
            self.local.write(snapshot)

    # -------------------------------------------------------------------
    # Remote
    # -------------------------------------------------------------------
    async def read_remote(self) -> Snapshot | None:
        """Fetch the remote snapshot; absent, disabled or unreachable → None."""
        if not self.remote_enabled:
            return None
        try:
            snapshot = await self.remote.get(self.session_id)
        except RemoteStoreError:
            logger.warning("Remote snapshot fetch failed for %s", self.session_id, exc_info=True)
            return None
        return snapshot if is_valid_snapshot(snapshot) else None

    async def _write_remote(
        self,
        remote: RemoteSessionClient,
        session_id: str,
        snapshot: Snapshot,
        on_conflict: ConflictHandler | None,
    ) -> None:
        try:
            result = await remote.put(session_id, snapshot)
        except RemoteStoreError:
            logger.warning("Remote snapshot write failed; staying local-only", exc_info=True)
            return

        if not result.conflict:
            return

        logger.info(
            "Remote write for %s rejected as stale (remote updatedAt=%d)",
            session_id, result.updated_at,
        )
        newer = result.state if is_valid_snapshot(result.state) else await self.read_remote()
        if newer is None or on_conflict is None:
            return
        try:
            await on_conflict(newer)
        except Exception:
            logger.exception("Conflict adoption failed for %s", session_id)

    def push_remote(self, snapshot: Snapshot, on_conflict: ConflictHandler | None = None) -> None:
        """Enqueue a remote write behind every earlier one."""
        if not self.remote_enabled:
            return

        previous = self._chain
        remote, session_id = self.remote, self.session_id

        async def _run() -> None:
            if previous is not None:
                await asyncio.wait([previous])
            try:
                await self._write_remote(remote, session_id, snapshot, on_conflict)
            except Exception:
                logger.exception("Remote write failed for %s", session_id)

        self._chain = asyncio.ensure_future(_run())

    def persist(self, snapshot: Snapshot, on_conflict: ConflictHandler | None = None) -> None:
        """Write *snapshot* locally now and remotely in order."""
        self.write_local(snapshot)
        self.push_remote(snapshot, on_conflict)

    async def flush(self) -> None:
        """Wait until every enqueued remote write has finished."""
        while self._chain is not None and not self._chain.done():
            await asyncio.wait([self._chain])

    # -------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------
    async def hydrate(self, target: SnapshotTarget) -> MergeDecision:
        """Load local, fetch remote, and make the newer side canonical on both ends."""
        local = self.read_local()
        if local is not None:
            target.apply_snapshot(local)

        remote = await self.read_remote()
        decision = merge_by_saved_at(local, remote)

        if decision.should_pull_remote:
            logger.info(
                "Hydrated from remote snapshot (remote=%d, local=%d)",
                snapshot_saved_at(remote), snapshot_saved_at(local),
            )
            target.apply_snapshot(remote)
            self.write_local(remote)
        elif decision.should_push_local and self.remote_enabled:
            self.push_remote(local or target.serialize(), target.adopt_remote_snapshot)
        return decision
