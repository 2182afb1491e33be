"""
tests/test_leadership.py — Director / Challenger Protocol
==========================================================

Covers go-live, the pre-live challenger preview, fallback promotion,
tenure-gated overtakes and the stable-sort tie-break.
"""

from __future__ import annotations

import random

from director.engine.leadership import PromotionReason, sync_leadership
from director.engine.settings import normalize_settings
from director.engine.state import DirectorSeat, GameState, User

T0 = 1_700_000_000_000
SETTINGS = normalize_settings({"preproductionGoal": 50, "overtakeMargin": 10, "minTenureSec": 15})


def _state(*users: tuple[str, int], live: bool = False) -> GameState:
    state = GameState(is_live=live)
    for user_id, total in users:
        state.users[user_id] = User(user_id, user_id.upper(), total=total)
    state.total_session_tips = sum(total for _, total in users)
    return state


def _seat(state: GameState, user_id: str, start: int = T0) -> None:
    user = state.users[user_id]
    state.director = DirectorSeat(id=user.id, name=user.name, total=user.total, start_time=start)


class TestGoLive:
    def test_reaching_goal_goes_live_with_trigger_as_director(self):
        state = _state(("u1", 50))
        promotions = sync_leadership(state, SETTINGS, T0, trigger_user_id="u1")
        assert state.is_live is True
        assert state.director.id == "u1"
        assert state.director.start_time == T0
        assert state.overlay_flash_at == T0
        assert [p.reason for p in promotions] == [PromotionReason.LIVE_START]
        assert promotions[0].is_public

    def test_trigger_wins_over_leader(self):
        state = _state(("big", 40), ("small", 10))
        promotions = sync_leadership(state, SETTINGS, T0, trigger_user_id="small")
        assert state.director.id == "small"
        assert promotions[0].user_id == "small"

    def test_unknown_trigger_falls_back_to_leader(self):
        state = _state(("a", 20), ("b", 30))
        sync_leadership(state, SETTINGS, T0, trigger_user_id="ghost")
        assert state.director.id == "b"

    def test_below_goal_stays_in_preproduction(self):
        state = _state(("u1", 49))
        assert sync_leadership(state, SETTINGS, T0, "u1") == []
        assert state.is_live is False
        assert state.director.id is None

    def test_prelive_challenger_is_the_leader(self):
        state = _state(("a", 10), ("b", 30), ("c", 5))
        sync_leadership(state, SETTINGS, T0)
        assert state.challenger.id == "b"
        assert state.challenger.total == 30


class TestLiveMaintenance:
    def test_no_users_resets_both_seats(self):
        state = _state(live=True)
        state.director = DirectorSeat(id="gone", name="Gone", total=5, start_time=T0)
        sync_leadership(state, SETTINGS, T0)
        assert state.director.id is None
        assert state.director.name == "Casting..."
        assert state.challenger.id is None

    def test_missing_director_is_replaced_silently(self):
        state = _state(("a", 70), ("b", 20), live=True)
        state.director = DirectorSeat(id="gone", name="Gone", total=5, start_time=T0)
        promotions = sync_leadership(state, SETTINGS, T0 + 1)
        assert state.director.id == "a"
        assert [p.reason for p in promotions] == [PromotionReason.FALLBACK]
        assert not promotions[0].is_public

    def test_director_cache_is_refreshed(self):
        state = _state(("a", 70), live=True)
        _seat(state, "a")
        state.users["a"].total = 90
        state.users["a"].name = "Renamed"
        sync_leadership(state, SETTINGS, T0 + 1)
        assert state.director.total == 90
        assert state.director.name == "Renamed"
        assert state.director.start_time == T0


class TestOvertake:
    def test_margin_must_be_met(self):
        state = _state(("a", 100), ("b", 109), live=True)
        _seat(state, "a")
        assert sync_leadership(state, SETTINGS, T0 + 20_000) == []
        assert state.director.id == "a"
        assert state.challenger.id == "b"

        state.users["b"].total = 110
        promotions = sync_leadership(state, SETTINGS, T0 + 21_000)
        assert [p.reason for p in promotions] == [PromotionReason.OVERTAKE]
        assert state.director.id == "b"
        assert state.director.start_time == T0 + 21_000
        assert state.challenger.id == "a"

    def test_tenure_blocks_overtake_regardless_of_lead(self):
        state = _state(("a", 100), ("b", 100_000), live=True)
        _seat(state, "a")
        assert sync_leadership(state, SETTINGS, T0 + 14_999) == []
        assert state.director.id == "a"
        sync_leadership(state, SETTINGS, T0 + 15_000)
        assert state.director.id == "b"

    def test_equal_totals_keep_insertion_order(self):
        state = _state(("first", 10), ("second", 10), ("third", 10))
        sync_leadership(state, SETTINGS, T0)
        assert state.challenger.id == "first"


class TestInvariant:
    def test_live_director_always_exists(self):
        rng = random.Random(7)
        state = _state(live=True)
        now = T0
        for step in range(300):
            user_id = f"u{rng.randrange(12)}"
            user = state.users.setdefault(user_id, User(user_id, user_id))
            user.total += rng.randrange(1, 40)
            if step % 37 == 0 and len(state.users) > 1:
                state.users.pop(state.director.id or "", None)
            now += rng.randrange(0, 6000)
            sync_leadership(state, SETTINGS, now, trigger_user_id=user_id)
            if state.users:
                assert state.director.id in state.users
