"""
Bounded History

Fixed-capacity, newest-first buffers for simulation output.
"""

from collections import deque
from typing import Generic, Iterator, Optional, TypeVar

from src.simulator.errors import InvalidConfiguration

T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """
    Newest-first buffer that silently evicts the oldest entry once full.

    Example:
        >>> history = BoundedHistory(capacity=2)
        >>> history.push("a"); history.push("b"); history.push("c")
        'a'
        >>> history.snapshot()
        ('c', 'b')
    """

    def __init__(self, capacity: int = 20):
        if capacity < 1:
            raise InvalidConfiguration(f"History capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._items: deque = deque(maxlen=capacity)

    def push(self, item: T) -> Optional[T]:
        """Insert at the front. Returns the evicted item, if any."""
        evicted = self._items[-1] if len(self._items) == self.capacity else None
        self._items.appendleft(item)
        return evicted

    def snapshot(self) -> tuple:
        """Read-only view, newest first."""
        return tuple(self._items)

    def latest(self) -> Optional[T]:
        return self._items[0] if self._items else None

    def find(self, item_id: str) -> Optional[T]:
        """Look up an entry by its ``id`` attribute."""
        for item in self._items:
            if getattr(item, "id", None) == item_id:
                return item
        return None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())
