"""
director.engine.goals — Menu Goals & Allocation Pruning
========================================================

Pure functions over users and the current tip menu.

* :func:`prune_allocations` — after a menu replacement, redirect tokens
  earmarked for vanished items to the new menu's first item.  Tokens are
  never dropped while the menu has at least one item.
* :func:`derive_menu_goals` — aggregate progress per item, sorted
  closest-to-completion, then cheapest, then alphabetical.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from director.constants import non_negative_int
from director.engine.state import MenuGoal, User
from director.engine.tip_menu import MenuItem

__all__ = ["derive_menu_goals", "prune_allocations"]


def prune_allocations(users: Iterable[User], items: Sequence[MenuItem]) -> None:
    """Rewrite every user's allocations against *items* (in place).

    Known fragility: the fallback target is always ``items[0]``, so a menu
    whose order shuffles between refreshes can send stranded tokens to a
    different item each time.
    """
    valid_ids = {item.id for item in items}
    fallback_id = items[0].id if items else ""

    for user in users:
        kept: dict[str, int] = {}
        overflow = 0
        for item_id, raw_amount in user.allocations.items():
            amount = non_negative_int(raw_amount)
            if not amount:
                continue
            if item_id in valid_ids:
                kept[item_id] = kept.get(item_id, 0) + amount
            else:
                overflow += amount

        if overflow and fallback_id:
            kept[fallback_id] = kept.get(fallback_id, 0) + overflow

        user.allocations = kept


def derive_menu_goals(users: Iterable[User], items: Sequence[MenuItem]) -> list[MenuGoal]:
    """Recompute goal progress for every item on the menu."""
    valid_ids = {item.id for item in items}
    totals: dict[str, int] = {}
    for user in users:
        for item_id, raw_amount in user.allocations.items():
            if item_id not in valid_ids:
                continue
            amount = non_negative_int(raw_amount)
            if amount:
                totals[item_id] = totals.get(item_id, 0) + amount

    goals = []
    for item in items:
        progress = totals.get(item.id, 0)
        goals.append(
            MenuGoal(
                id=item.id,
                title=item.title,
                price=item.price,
                progress=progress,
                tokens_left=max(0, item.price - progress),
                percent=min(100.0, progress / item.price * 100) if item.price > 0 else 0.0,
            )
        )

    goals.sort(key=lambda goal: (goal.tokens_left, goal.price, goal.title.casefold(), goal.title))
    return goals
