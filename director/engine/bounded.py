"""
director.engine.bounded — Fixed-Capacity Sequences
===================================================

One small abstraction for every collection in the game state that must not
grow without bound: the command queue, the command history and the
activity feed.  Backed by :class:`collections.deque` with ``maxlen``.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import Generic, TypeVar

T = TypeVar("T")


class BoundedSequence(Generic[T]):
    """Ordered sequence holding at most *capacity* items.

    Two insertion modes:

    * :meth:`push_front` — most-recent-first logs; the oldest item falls
      off the end once full.
    * :meth:`append` — FIFO queues; refuses new items once full.
    """

    __slots__ = ("_items", "capacity")

    def __init__(self, capacity: int, items: Iterable[T] = ()) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: deque[T] = deque(islice(items, capacity), maxlen=capacity)

    def push_front(self, item: T) -> None:
        self._items.appendleft(item)

    def append(self, item: T) -> bool:
        """Add *item* at the tail.  Returns False (and drops it) when full."""
        if self.is_full:
            return False
        self._items.append(item)
        return True

    def pop_front(self) -> T | None:
        if not self._items:
            return None
        return self._items.popleft()

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.capacity

    def head(self, n: int) -> list[T]:
        """The first *n* items."""
        return list(islice(self._items, max(0, n)))

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"BoundedSequence(capacity={self.capacity}, size={len(self._items)})"
