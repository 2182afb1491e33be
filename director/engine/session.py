"""
director.engine.session — Session State Engine
===============================================

:class:`SessionEngine` owns the single authoritative :class:`GameState`
for one streaming session.

Every handler follows the same shape:

  1. validate; on failure queue a targeted ``*.result`` whisper and stop
     (global state untouched),
  2. mutate the state synchronously,
  3. persist a new snapshot and queue a state broadcast,
  4. flush the outbox over the bus.

Bus sends are the only suspension points inside a handler, so no two
handlers ever interleave mid-mutation.  A failed send is logged and
dropped; nothing here raises past a handler boundary.
"""

from __future__ import annotations

import logging
import math
import secrets
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from director.constants import (
    ACTIVITY_BROADCAST_LIMIT,
    ACTIVITY_TEXT_MAX,
    COMMAND_BY_ID,
    USER_NAME_MAX,
    non_negative_int,
    sanitize_session_id,
)
from director.engine import goals, leadership
from director.engine.events import (
    CommandIssueRequest,
    DirectorEvent,
    ReallocateRequest,
    SelfAllocationsRequest,
    SettingsUpdated,
    StateRequest,
    TipContribution,
    parse_tip_payload,
    parse_whisper,
)
from director.engine.reconciler import (
    SnapshotReconciler,
    coerce_game_state,
    is_valid_snapshot,
    merge_by_saved_at,
    serialize,
)
from director.engine.settings import DirectorSettings, normalize_settings
from director.engine.state import (
    ActivityEntry,
    CommandEntry,
    GameState,
    HistoryEntry,
    Performance,
    User,
)
from director.engine.tip_menu import (
    TipMenu,
    normalize_tip_menu_payload,
    tip_menu_signature,
)
from director.services import bus as bus_api
from director.services.bus import MessageBus

logger = logging.getLogger(__name__)

__all__ = ["SessionEngine"]

# Outbound whisper types
STATE = "director.state"
SELF_ALLOCATIONS = "director.self.allocations"
TIP_RESULT = "director.menu.tip.result"
REALLOCATE_RESULT = "director.menu.reallocate.result"
COMMAND_RESULT = "director.command.result"

ACCEPTED = "accepted"
REJECTED = "rejected"

PHASE_LIVE = "LIVE"
PHASE_PREPRODUCTION = "PREPRODUCTION"


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def _short_id(prefix: str, now_ms: int) -> str:
    return f"{prefix}_{now_ms}_{secrets.token_hex(2)}"


class SessionEngine:
    """Single writer of the session :class:`GameState`."""

    def __init__(
        self,
        bus: MessageBus,
        reconciler: SnapshotReconciler | None = None,
        settings: DirectorSettings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.bus = bus
        self.reconciler = reconciler or SnapshotReconciler()
        self.settings = settings or normalize_settings()
        self.clock = clock or wall_clock_ms
        self.state = GameState()
        # platform context ({model, user, ...}) from v1.ext.context.get
        self.context: dict[str, Any] = {}
        self._outbox: deque[tuple[str, dict[str, Any]]] = deque()
        self._overlay_requested = False

    # -------------------------------------------------------------------
    # Outbox
    # -------------------------------------------------------------------
    def _queue_whisper(self, data: dict[str, Any]) -> None:
        self._outbox.append((bus_api.WHISPER, {"data": data}))

    def _queue_targeted(self, user_id: str, data: dict[str, Any]) -> None:
        self._queue_whisper({**data, "targetUserId": str(user_id or "")})

    def _queue_result(self, user_id: str, kind: str, status: str, message: str, **extra: Any) -> None:
        self._queue_targeted(user_id, {"type": kind, "status": status, "message": message, **extra})

    def _queue_chat(self, message: str) -> None:
        if not message:
            return
        self._outbox.append(
            (
                bus_api.CHAT_SEND,
                {"message": message, "isAnonymous": False, "user": self.context.get("user")},
            )
        )

    def _queue_broadcast(self) -> None:
        self._queue_whisper(self.build_state_payload())

    async def flush_outbox(self) -> None:
        """Send everything queued so far, in order."""
        while self._outbox:
            method, params = self._outbox.popleft()
            try:
                await self.bus.request(method, params)
            except Exception:
                logger.warning("Bus request %s failed", method, exc_info=True)

    # -------------------------------------------------------------------
    # Small helpers
    # -------------------------------------------------------------------
    def append_activity(self, text: str) -> None:
        now = self.clock()
        self.state.activity_feed.push_front(
            ActivityEntry(id=_short_id("a", now), at=now, text=str(text or "")[:ACTIVITY_TEXT_MAX])
        )

    def _get_or_create_user(self, user_id: str, username: str) -> User:
        user = self.state.users.get(user_id)
        if user is None:
            user = User(id=user_id, name=username[:USER_NAME_MAX])
            self.state.users[user_id] = user
        else:
            user.name = username[:USER_NAME_MAX]
        return user

    def derive_menu_goals(self) -> None:
        self.state.menu_goals = goals.derive_menu_goals(
            self.state.users.values(), self.state.tip_menu.settings
        )

    # -------------------------------------------------------------------
    # Leadership
    # -------------------------------------------------------------------
    def sync_leadership(self, trigger_user_id: str | None = None) -> list[leadership.Promotion]:
        promotions = leadership.sync_leadership(
            self.state, self.settings, self.clock(), trigger_user_id
        )
        for promotion in promotions:
            self._announce(promotion)
        return promotions

    def _announce(self, promotion: leadership.Promotion) -> None:
        name = promotion.name
        if promotion.reason is leadership.PromotionReason.LIVE_START:
            self.append_activity(f"LIVE started. New director: {name}")
            self._queue_chat(f"DIRECTOR LIVE: we're on! Director: {name}.")
        elif promotion.reason is leadership.PromotionReason.OVERTAKE:
            self.append_activity(f"Power shift: {name} took the remote")
            self._queue_chat(f"Director change: {name} is now in command.")
        else:
            self.append_activity(f"Director: {name}")

    # -------------------------------------------------------------------
    # Tip menu
    # -------------------------------------------------------------------
    def apply_tip_menu(self, menu: TipMenu, source: str | None = None) -> bool:
        """Replace the tip menu.  Returns whether its content signature changed."""
        previous = tip_menu_signature(self.state.tip_menu.settings)
        self.state.tip_menu = TipMenu(
            is_enabled=menu.is_enabled,
            settings=list(menu.settings),
            updated_at=menu.updated_at or self.clock(),
            source=source or menu.source,
        )

        goals.prune_allocations(self.state.users.values(), self.state.tip_menu.settings)
        self.derive_menu_goals()

        current = tip_menu_signature(self.state.tip_menu.settings)
        if current != previous and current:
            self.append_activity("Tip menu updated")
        return current != previous

    def _fallback_menu(self) -> TipMenu:
        return normalize_tip_menu_payload(
            None, self.settings.fallback_tip_menu, source="fallback", now_ms=self.clock()
        )

    async def load_tip_menu(self) -> bool:
        """Fetch the menu from the host SDK, falling back to the text spec."""
        try:
            payload = await self.bus.request(bus_api.TIP_MENU_GET, None)
        except Exception:
            logger.warning("Tip menu fetch failed", exc_info=True)
            if not self.state.tip_menu.settings:
                return self.apply_tip_menu(self._fallback_menu(), "fallback")
            return False

        menu = normalize_tip_menu_payload(
            payload, self.settings.fallback_tip_menu, source="sdk", now_ms=self.clock()
        )
        return self.apply_tip_menu(menu)

    async def refresh_tip_menu(self) -> bool:
        changed = await self.load_tip_menu()
        if changed:
            self.persist()
            self._queue_broadcast()
        await self.flush_outbox()
        return changed

    # -------------------------------------------------------------------
    # Settings & context
    # -------------------------------------------------------------------
    async def load_context(self) -> None:
        ctx = await self.bus.request(bus_api.CONTEXT_GET, None)
        self.context = ctx if isinstance(ctx, dict) else {}
        model = self.context.get("model")
        model_id = model.get("id") if isinstance(model, dict) else None
        self.reconciler.session_id = sanitize_session_id(model_id)
        logger.info("Session id: %s", self.reconciler.session_id or "(none, remote disabled)")

    async def load_settings(self) -> DirectorSettings:
        try:
            response = await self.bus.request(bus_api.SETTINGS_GET, None)
        except Exception:
            logger.warning("Settings fetch failed, keeping current settings", exc_info=True)
        else:
            raw = response.get("settings") if isinstance(response, dict) else None
            self.settings = normalize_settings(raw)
        self.reconciler.configure_remote(self.settings.backend_url, self.settings.backend_api_key)
        return self.settings

    async def reload_settings(self) -> None:
        try:
            await self.load_settings()
            self.sync_leadership()
            await self.load_tip_menu()
            self.persist()
            self._queue_broadcast()
        except Exception:
            logger.exception("Settings reload failed")
        await self.flush_outbox()

    # -------------------------------------------------------------------
    # Outbound state
    # -------------------------------------------------------------------
    def build_pressure(self) -> dict[str, Any]:
        director_total = self.state.director.total
        challenger_total = self.state.challenger.total
        margin = self.settings.overtake_margin
        gap = max(0, director_total - challenger_total)
        threshold = director_total + margin
        return {
            "gap": gap,
            "margin": margin,
            "neededToOvertake": max(0, threshold - challenger_total),
            "percent": min(100.0, challenger_total / threshold * 100) if threshold > 0 else 0.0,
            "isCritical": gap < margin,
        }

    def build_cooldown_map(self, now: int) -> dict[str, int]:
        return {
            command_id: expiry - now
            for command_id, expiry in self.state.command_cooldowns.items()
            if command_id in COMMAND_BY_ID and expiry > now
        }

    def build_state_payload(self) -> dict[str, Any]:
        """The ``director.state`` envelope broadcast to every surface."""
        state = self.state
        now = self.clock()
        tenure_left = 0
        if state.director.start_time:
            tenure_left = max(
                0, state.director.start_time + self.settings.min_tenure_sec * 1000 - now
            )

        performance = None
        if state.current_performance is not None:
            performance = {
                **state.current_performance.to_dict(),
                "remainingMs": max(0, state.current_performance.ends_at - now),
            }

        return {
            "type": STATE,
            "isLive": state.is_live,
            "phaseLabel": PHASE_LIVE if state.is_live else PHASE_PREPRODUCTION,
            "totalSessionTips": state.total_session_tips,
            "preproductionGoal": self.settings.preproduction_goal,
            "overtakeMargin": self.settings.overtake_margin,
            "minTenureSec": self.settings.min_tenure_sec,
            "director": state.director.to_dict(),
            "challenger": state.challenger.to_dict(),
            "pressure": self.build_pressure(),
            "directorTenureLeftMs": tenure_left,
            "menuGoals": [goal.to_dict() for goal in state.menu_goals],
            "menuSource": state.tip_menu.source,
            "currentPerformance": performance,
            "queue": [
                {
                    "id": entry.id,
                    "commandId": entry.command_id,
                    "label": entry.label,
                    "categoryTitle": entry.category_title,
                    "issuedByName": entry.issued_by_name,
                    "issuedAt": entry.issued_at,
                }
                for entry in state.queue
            ],
            "commandHistory": [entry.to_dict() for entry in state.command_history],
            "commandCooldowns": self.build_cooldown_map(now),
            "overlayFlashAt": state.overlay_flash_at,
            "activityFeed": [
                entry.to_dict() for entry in state.activity_feed.head(ACTIVITY_BROADCAST_LIMIT)
            ],
            "updatedAt": now,
        }

    async def broadcast_state(self) -> None:
        self._queue_broadcast()
        await self.flush_outbox()

    def _queue_self_allocations(self, user_id: str) -> None:
        if not user_id:
            return
        user = self.state.users.get(user_id)
        allocations = user.allocations if user else {}
        self._queue_targeted(
            user_id,
            {
                "type": SELF_ALLOCATIONS,
                "total": user.total if user else 0,
                "allocations": [
                    {
                        "itemId": goal.id,
                        "title": goal.title,
                        "allocated": non_negative_int(allocations.get(goal.id)),
                    }
                    for goal in self.state.menu_goals
                ],
            },
        )

    async def send_self_allocations(self, user_id: str) -> None:
        self._queue_self_allocations(user_id)
        await self.flush_outbox()

    async def request_overlay_open(self) -> None:
        """Ask the platform to open the overlay, at most once per process."""
        if self._overlay_requested:
            return
        self._overlay_requested = True
        try:
            await self.bus.request(bus_api.OVERLAY_OPEN, {"source": "extension"})
        except Exception:
            logger.warning("Overlay open request failed", exc_info=True)
            self._overlay_requested = False

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------
    async def handle_tip_contribution(self, payload: Any) -> None:
        event = payload if isinstance(payload, TipContribution) else parse_tip_payload(payload)
        if event is None or not event.amount:
            return

        state = self.state
        item = state.menu_item(event.item_id) or state.first_menu_item()
        if item is None:
            self._queue_result(
                event.user_id, TIP_RESULT, REJECTED, "No tip menu items are available right now"
            )
            await self.flush_outbox()
            return

        user = self._get_or_create_user(event.user_id, event.username)
        user.total += event.amount
        user.allocations[item.id] = user.allocations.get(item.id, 0) + event.amount
        state.total_session_tips += event.amount

        self.sync_leadership(user.id)
        self.derive_menu_goals()
        self.append_activity(f'{user.name} +{event.amount} tk to "{item.title}"')

        self._queue_result(
            user.id, TIP_RESULT, ACCEPTED, f'Contribution accepted: {event.amount} tk to "{item.title}"'
        )
        self._queue_self_allocations(user.id)
        self.persist()
        self._queue_broadcast()
        await self.flush_outbox()

    async def handle_reallocate(self, event: ReallocateRequest) -> None:
        def reject(message: str) -> None:
            self._queue_result(event.user_id, REALLOCATE_RESULT, REJECTED, message)

        if (
            not event.from_item_id
            or not event.to_item_id
            or event.from_item_id == event.to_item_id
            or not event.amount
        ):
            reject("Check from/to and the amount to reallocate")
            await self.flush_outbox()
            return

        from_item = self.state.menu_item(event.from_item_id)
        to_item = self.state.menu_item(event.to_item_id)
        if from_item is None or to_item is None:
            reject("One of the items is no longer available")
            await self.flush_outbox()
            return

        user = self.state.users.get(event.user_id)
        available = user.allocations.get(from_item.id, 0) if user else 0
        if available < event.amount:
            reject(f'Not enough balance in "{from_item.title}"')
            await self.flush_outbox()
            return

        user = self._get_or_create_user(event.user_id, event.username)
        remaining = available - event.amount
        if remaining > 0:
            user.allocations[from_item.id] = remaining
        else:
            del user.allocations[from_item.id]
        user.allocations[to_item.id] = user.allocations.get(to_item.id, 0) + event.amount

        self.derive_menu_goals()
        self.append_activity(
            f'{user.name} moved {event.amount} tk: "{from_item.title}" → "{to_item.title}"'
        )
        self._queue_result(user.id, REALLOCATE_RESULT, ACCEPTED, f"Reallocated {event.amount} tk")
        self._queue_self_allocations(user.id)
        self.persist()
        self._queue_broadcast()
        await self.flush_outbox()

    def _check_command(self, event: CommandIssueRequest, now: int) -> str | None:
        """Return the rejection message for *event*, or None when allowed."""
        state = self.state
        if event.command_id not in COMMAND_BY_ID:
            return "Unknown command"
        if not state.is_live:
            return "The remote unlocks once the session is LIVE"
        if not state.director.id or state.director.id != event.user_id:
            return "Only the current director can use the remote"
        cooldown_ends_at = state.command_cooldowns.get(event.command_id, 0)
        if cooldown_ends_at > now:
            return f"Command on cooldown: {math.ceil((cooldown_ends_at - now) / 1000)}s"
        if state.current_performance is not None and state.queue.is_full:
            return "Command queue is full, try again shortly"
        return None

    async def handle_command_issue(self, event: CommandIssueRequest) -> None:
        now = self.clock()
        rejection = self._check_command(event, now)
        if rejection is not None:
            self._queue_result(event.user_id, COMMAND_RESULT, REJECTED, rejection)
            await self.flush_outbox()
            return

        state = self.state
        command = COMMAND_BY_ID[event.command_id]
        duration_ms = self.settings.command_duration_sec * 1000
        cooldown_ms = self.settings.command_cooldown_sec * 1000
        entry = CommandEntry(
            id=_short_id("cmd", now),
            command_id=command["id"],
            label=command["label"],
            category_title=command["categoryTitle"],
            issued_by_id=event.user_id,
            issued_by_name=event.username,
            issued_at=now,
            duration_ms=duration_ms,
        )

        if state.current_performance is None:
            state.current_performance = Performance(entry=entry, started_at=now, ends_at=now + duration_ms)
        else:
            state.queue.append(entry)

        state.command_cooldowns[entry.command_id] = now + cooldown_ms
        state.command_history.push_front(HistoryEntry.from_entry(entry))
        state.overlay_flash_at = now

        self.append_activity(f"Director command: {command['label']}")
        self._queue_chat(f"Director: {command['categoryTitle']} / {command['label']}")
        self._queue_result(
            event.user_id,
            COMMAND_RESULT,
            ACCEPTED,
            f'Command "{command["label"]}" sent',
            commandId=entry.command_id,
            cooldownMs=cooldown_ms,
        )
        self.persist()
        self._queue_broadcast()
        await self.flush_outbox()

    async def tick(self) -> None:
        """Roll the performance over and expire cooldowns (runs every second)."""
        state = self.state
        now = self.clock()
        changed = False

        performance = state.current_performance
        if performance is not None and now >= performance.ends_at:
            upcoming = state.queue.pop_front()
            if upcoming is not None:
                duration_ms = max(1000, upcoming.duration_ms)
                state.current_performance = Performance(
                    entry=upcoming, started_at=now, ends_at=now + duration_ms
                )
                self.append_activity(f"On air: {upcoming.label}")
            else:
                state.current_performance = None
                self.append_activity("Current command finished")
            changed = True

        had_cooldowns = bool(state.command_cooldowns)
        expired = [cid for cid, expiry in state.command_cooldowns.items() if expiry <= now]
        for command_id in expired:
            del state.command_cooldowns[command_id]
        changed = changed or bool(expired)

        if changed:
            self.persist()
        if state.is_live or state.current_performance is not None or had_cooldowns:
            self._queue_broadcast()
        await self.flush_outbox()

    # -------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------
    async def dispatch(self, event: DirectorEvent | None) -> None:
        if event is None:
            return
        if isinstance(event, TipContribution):
            await self.handle_tip_contribution(event)
        elif isinstance(event, StateRequest):
            await self.broadcast_state()
        elif isinstance(event, SelfAllocationsRequest):
            await self.send_self_allocations(event.user_id)
        elif isinstance(event, ReallocateRequest):
            await self.handle_reallocate(event)
        elif isinstance(event, CommandIssueRequest):
            await self.handle_command_issue(event)
        elif isinstance(event, SettingsUpdated):
            await self.reload_settings()

    async def handle_whisper(self, data: Any) -> DirectorEvent | None:
        """Parse and route a whispered envelope; returns the parsed event."""
        event = parse_whisper(data)
        await self.dispatch(event)
        return event

    # -------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------
    def serialize(self) -> dict[str, Any]:
        return serialize(self.state, self.state.saved_at or self.clock())

    def apply_snapshot(self, snapshot: dict[str, Any]) -> None:
        """Replace the whole game state with a re-validated copy of *snapshot*."""
        game_state = snapshot.get("gameState") if isinstance(snapshot, dict) else None
        state = coerce_game_state(game_state)
        state.saved_at = non_negative_int(
            snapshot.get("savedAt") if isinstance(snapshot, dict) else None, self.clock()
        )
        self.state = state

        if state.tip_menu.settings:
            goals.prune_allocations(state.users.values(), state.tip_menu.settings)
        self.derive_menu_goals()
        self.sync_leadership()

    def persist(self) -> None:
        """Advance ``savedAt`` and hand the snapshot to the reconciler."""
        self.state.saved_at = max(self.clock(), self.state.saved_at)
        self.reconciler.persist(self.serialize(), self.adopt_remote_snapshot)

    def persist_heartbeat(self) -> None:
        """Re-push the current snapshot without advancing ``savedAt``."""
        if not self.reconciler.remote_enabled:
            return
        self.reconciler.push_remote(self.serialize(), self.adopt_remote_snapshot)

    async def adopt_remote_snapshot(self, snapshot: dict[str, Any]) -> bool:
        """Apply *snapshot* only if it is strictly newer than the live state."""
        if not is_valid_snapshot(snapshot):
            return False
        decision = merge_by_saved_at(
            {"savedAt": self.state.saved_at}, snapshot, prefer_remote_on_tie=False
        )
        if not decision.should_pull_remote:
            return False

        logger.info(
            "Adopting newer remote snapshot (remote=%s, local=%d)",
            snapshot.get("savedAt"), self.state.saved_at,
        )
        self.apply_snapshot(snapshot)
        self.reconciler.write_local(snapshot)
        await self.broadcast_state()
        return True

    async def hydrate(self) -> None:
        await self.reconciler.hydrate(self)
