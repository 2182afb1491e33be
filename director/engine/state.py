"""
director.engine.state — Game Data Model
========================================

The authoritative in-memory game state owned by
:class:`~director.engine.session.SessionEngine`.  Every structure knows how
to render itself in the camelCase wire/snapshot shape via ``to_dict()``;
``to_dict()`` always builds fresh containers so a serialized snapshot never
aliases live engine state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from director.constants import (
    ACTIVITY_CAPACITY,
    CHALLENGER_PLACEHOLDER,
    DIRECTOR_PLACEHOLDER,
    HISTORY_CAPACITY,
    QUEUE_CAPACITY,
)
from director.engine.bounded import BoundedSequence
from director.engine.tip_menu import MenuItem, TipMenu

__all__ = [
    "ActivityEntry",
    "ChallengerSeat",
    "CommandEntry",
    "DirectorSeat",
    "GameState",
    "HistoryEntry",
    "MenuGoal",
    "Performance",
    "User",
]


@dataclass(slots=True)
class User:
    id: str
    name: str
    total: int = 0
    # item id → tokens earmarked for that item (zero entries are removed)
    allocations: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "total": self.total,
            "allocations": dict(self.allocations),
        }


@dataclass(slots=True)
class DirectorSeat:
    id: str | None = None
    name: str = DIRECTOR_PLACEHOLDER
    total: int = 0
    start_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "total": self.total,
            "startTime": self.start_time,
        }


@dataclass(slots=True)
class ChallengerSeat:
    id: str | None = None
    name: str = CHALLENGER_PLACEHOLDER
    total: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "total": self.total}


@dataclass(frozen=True, slots=True)
class MenuGoal:
    id: str
    title: str
    price: int
    progress: int
    tokens_left: int
    percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "progress": self.progress,
            "tokensLeft": self.tokens_left,
            "percent": self.percent,
        }


@dataclass(frozen=True, slots=True)
class CommandEntry:
    id: str
    command_id: str
    label: str
    category_title: str
    issued_by_id: str
    issued_by_name: str
    issued_at: int
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "commandId": self.command_id,
            "label": self.label,
            "categoryTitle": self.category_title,
            "issuedById": self.issued_by_id,
            "issuedByName": self.issued_by_name,
            "issuedAt": self.issued_at,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True, slots=True)
class Performance:
    """The command currently on screen."""

    entry: CommandEntry
    started_at: int
    ends_at: int

    def to_dict(self) -> dict[str, Any]:
        return {**self.entry.to_dict(), "startedAt": self.started_at, "endsAt": self.ends_at}


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    id: str
    command_id: str
    label: str
    category_title: str
    issued_by_name: str
    issued_at: int

    @classmethod
    def from_entry(cls, entry: CommandEntry) -> HistoryEntry:
        return cls(
            id=entry.id,
            command_id=entry.command_id,
            label=entry.label,
            category_title=entry.category_title,
            issued_by_name=entry.issued_by_name,
            issued_at=entry.issued_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "commandId": self.command_id,
            "label": self.label,
            "categoryTitle": self.category_title,
            "issuedByName": self.issued_by_name,
            "issuedAt": self.issued_at,
        }


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    id: str
    at: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "at": self.at, "text": self.text}


def _queue() -> BoundedSequence[CommandEntry]:
    return BoundedSequence(QUEUE_CAPACITY)


def _history() -> BoundedSequence[HistoryEntry]:
    return BoundedSequence(HISTORY_CAPACITY)


def _feed() -> BoundedSequence[ActivityEntry]:
    return BoundedSequence(ACTIVITY_CAPACITY)


@dataclass(slots=True)
class GameState:
    """Everything one session snapshot carries."""

    is_live: bool = False
    total_session_tips: int = 0
    director: DirectorSeat = field(default_factory=DirectorSeat)
    challenger: ChallengerSeat = field(default_factory=ChallengerSeat)
    # insertion order is the tie-break for equal totals
    users: dict[str, User] = field(default_factory=dict)
    tip_menu: TipMenu = field(default_factory=TipMenu)
    menu_goals: list[MenuGoal] = field(default_factory=list)
    current_performance: Performance | None = None
    queue: BoundedSequence[CommandEntry] = field(default_factory=_queue)
    command_history: BoundedSequence[HistoryEntry] = field(default_factory=_history)
    # command id → cooldown expiry (epoch ms)
    command_cooldowns: dict[str, int] = field(default_factory=dict)
    overlay_flash_at: int = 0
    activity_feed: BoundedSequence[ActivityEntry] = field(default_factory=_feed)
    saved_at: int = 0

    def sorted_users(self) -> list[User]:
        """Users by descending total; equal totals keep insertion order."""
        return sorted(self.users.values(), key=lambda user: -user.total)

    def menu_item(self, item_id: str) -> MenuItem | None:
        for item in self.tip_menu.settings:
            if item.id == item_id:
                return item
        return None

    def first_menu_item(self) -> MenuItem | None:
        return self.tip_menu.settings[0] if self.tip_menu.settings else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isLive": self.is_live,
            "totalSessionTips": self.total_session_tips,
            "director": self.director.to_dict(),
            "challenger": self.challenger.to_dict(),
            "users": {user_id: user.to_dict() for user_id, user in self.users.items()},
            "tipMenu": self.tip_menu.to_dict(),
            "menuGoals": [goal.to_dict() for goal in self.menu_goals],
            "currentPerformance": (
                self.current_performance.to_dict() if self.current_performance else None
            ),
            "queue": [entry.to_dict() for entry in self.queue],
            "commandHistory": [entry.to_dict() for entry in self.command_history],
            "commandCooldowns": dict(self.command_cooldowns),
            "overlayFlashAt": self.overlay_flash_at,
            "activityFeed": [entry.to_dict() for entry in self.activity_feed],
            "savedAt": self.saved_at,
        }
