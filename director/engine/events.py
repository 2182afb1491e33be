"""
director.engine.events — Inbound Event Envelopes
=================================================

Every message the engine reacts to is normalized into one of the frozen
dataclasses below before it reaches a handler.  Parsing only coerces
shapes; business validation (positive amounts, existing items, who may
issue commands) stays in :mod:`director.engine.session` so rejections can
be reported back to the acting viewer.

Bus topics and whisper types:

* ``v1.payment.tokens.spend.succeeded`` → :class:`TipContribution`
* ``director.state.request`` → :class:`StateRequest`
* ``director.self.allocations.request`` → :class:`SelfAllocationsRequest`
* ``director.menu.reallocate`` → :class:`ReallocateRequest`
* ``director.command.issue`` → :class:`CommandIssueRequest`
* ``director.settings.updated`` → :class:`SettingsUpdated`
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from director.constants import USER_NAME_MAX, non_negative_int

__all__ = [
    "TIP_ACTION",
    "CommandIssueRequest",
    "DirectorEvent",
    "ReallocateRequest",
    "SelfAllocationsRequest",
    "SettingsUpdated",
    "StateRequest",
    "TipContribution",
    "parse_tip_payload",
    "parse_whisper",
]

TIP_ACTION = "director.menu.tip"

# Whisper types
STATE_REQUEST = "director.state.request"
SELF_ALLOCATIONS_REQUEST = "director.self.allocations.request"
MENU_REALLOCATE = "director.menu.reallocate"
COMMAND_ISSUE = "director.command.issue"
SETTINGS_UPDATED = "director.settings.updated"


def _user_id(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _username(value: Any) -> str:
    return str(value or "viewer")[:USER_NAME_MAX]


@dataclass(frozen=True, slots=True)
class TipContribution:
    user_id: str
    username: str
    amount: int
    item_id: str = ""


@dataclass(frozen=True, slots=True)
class ReallocateRequest:
    user_id: str
    username: str
    from_item_id: str
    to_item_id: str
    amount: int


@dataclass(frozen=True, slots=True)
class CommandIssueRequest:
    user_id: str
    username: str
    command_id: str


@dataclass(frozen=True, slots=True)
class StateRequest:
    pass


@dataclass(frozen=True, slots=True)
class SelfAllocationsRequest:
    user_id: str


@dataclass(frozen=True, slots=True)
class SettingsUpdated:
    pass


DirectorEvent = (
    TipContribution
    | ReallocateRequest
    | CommandIssueRequest
    | StateRequest
    | SelfAllocationsRequest
    | SettingsUpdated
)


def parse_tip_payload(payload: Any) -> TipContribution | None:
    """Parse a currency-spend event.  Returns None unless it targets the menu."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("tokensSpendData")
    if not isinstance(data, dict) or data.get("action") != TIP_ACTION:
        return None

    user_id = _user_id(data.get("userId"))
    if not user_id:
        return None

    return TipContribution(
        user_id=user_id,
        username=_username(data.get("username")),
        amount=non_negative_int(payload.get("tokensAmount")),
        item_id=str(data.get("itemId") or "").strip(),
    )


def parse_whisper(data: Any) -> DirectorEvent | None:
    """Parse a whispered envelope.  Unknown or outbound types yield None."""
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    if kind == STATE_REQUEST:
        return StateRequest()
    if kind == SETTINGS_UPDATED:
        return SettingsUpdated()

    user_id = _user_id(data.get("userId"))
    if not user_id:
        return None

    if kind == SELF_ALLOCATIONS_REQUEST:
        return SelfAllocationsRequest(user_id=user_id)
    if kind == MENU_REALLOCATE:
        return ReallocateRequest(
            user_id=user_id,
            username=_username(data.get("username")),
            from_item_id=str(data.get("fromItemId") or "").strip(),
            to_item_id=str(data.get("toItemId") or "").strip(),
            amount=non_negative_int(data.get("amount")),
        )
    if kind == COMMAND_ISSUE:
        command_id = str(data.get("commandId") or "").strip()
        if not command_id:
            return None
        return CommandIssueRequest(
            user_id=user_id,
            username=_username(data.get("username")),
            command_id=command_id,
        )
    return None
