"""
director.engine.leadership — Director / Challenger Protocol
============================================================

Re-run after every allocation-affecting event and on hydration.

Steps:
  1. Go live once the session total reaches the preproduction goal and at
     least one user exists; the triggering user (or the leader) takes the
     chair with reason ``liveStart``.
  2. Before going live, only a challenger preview is computed: the top
     user whose id differs from the (empty) director — i.e. the leader.
  3. While live: no users → reset both seats.  A director id that no
     longer maps to a user is replaced by the leader (``fallback``);
     otherwise the director's cached name/total is refreshed.
  4. Overtake when tenure has elapsed AND the best non-director user's
     total ≥ director total + margin.

Ties between equal totals resolve by user insertion order (stable sort).
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from director.engine.settings import DirectorSettings
from director.engine.state import ChallengerSeat, DirectorSeat, GameState, User

logger = logging.getLogger(__name__)

__all__ = ["Promotion", "PromotionReason", "promote", "sync_leadership"]


class PromotionReason(enum.StrEnum):
    LIVE_START = "liveStart"
    OVERTAKE = "overtake"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class Promotion:
    user_id: str
    name: str
    reason: PromotionReason

    @property
    def is_public(self) -> bool:
        """Whether the promotion is announced in public chat."""
        return self.reason is not PromotionReason.FALLBACK


def promote(state: GameState, user: User, reason: PromotionReason, now_ms: int) -> Promotion:
    """Seat *user* as director, starting a fresh tenure window."""
    state.director = DirectorSeat(
        id=user.id,
        name=user.name,
        total=user.total,
        start_time=now_ms,
    )
    state.overlay_flash_at = now_ms
    logger.info("Director promoted: %s (%s, reason=%s)", user.name, user.id, reason.value)
    return Promotion(user_id=user.id, name=user.name, reason=reason)


def _set_challenger(state: GameState, ranked: list[User]) -> None:
    candidate = next((u for u in ranked if u.id != state.director.id), None)
    if candidate is None:
        state.challenger = ChallengerSeat()
        return
    state.challenger = ChallengerSeat(id=candidate.id, name=candidate.name, total=candidate.total)


def sync_leadership(
    state: GameState,
    settings: DirectorSettings,
    now_ms: int,
    trigger_user_id: str | None = None,
) -> list[Promotion]:
    """Run the leadership protocol in place and return any promotions."""
    promotions: list[Promotion] = []
    ranked = state.sorted_users()

    # 1. Go live
    if (
        not state.is_live
        and state.total_session_tips >= settings.preproduction_goal
        and ranked
    ):
        state.is_live = True
        trigger = state.users.get(trigger_user_id) if trigger_user_id else None
        promotions.append(promote(state, trigger or ranked[0], PromotionReason.LIVE_START, now_ms))

    # 2. Preproduction preview
    if not state.is_live:
        _set_challenger(state, ranked)
        return promotions

    # 3. Live with nobody left
    if not ranked:
        state.director = DirectorSeat()
        state.challenger = ChallengerSeat()
        return promotions

    director_user = state.users.get(state.director.id) if state.director.id else None
    if director_user is None:
        promotions.append(promote(state, ranked[0], PromotionReason.FALLBACK, now_ms))
    else:
        state.director.name = director_user.name
        state.director.total = director_user.total

    # 4. Overtake
    candidate = next((u for u in state.sorted_users() if u.id != state.director.id), None)
    if candidate is not None:
        tenure_done = now_ms - state.director.start_time >= settings.min_tenure_sec * 1000
        lead_enough = candidate.total >= state.director.total + settings.overtake_margin
        if tenure_done and lead_enough:
            promotions.append(promote(state, candidate, PromotionReason.OVERTAKE, now_ms))

    _set_challenger(state, state.sorted_users())
    return promotions
