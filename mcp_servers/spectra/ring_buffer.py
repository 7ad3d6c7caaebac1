"""Thread-safe bounded FIFO used by the capture stores."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Bounded FIFO with oldest-first eviction.

    All access goes through one lock so readers never observe a record while
    an ingest callback is mutating it.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = int(capacity)
        self._items: deque[T] = deque(maxlen=self._capacity)
        self._lock = threading.RLock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def append(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def snapshot(self) -> list[T]:
        """Copy of the items, oldest first."""
        with self._lock:
            return list(self._items)

    def newest_first(self) -> list[T]:
        with self._lock:
            return list(reversed(self._items))

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def find_last(self, predicate: Callable[[T], bool]) -> T | None:
        with self._lock:
            for item in reversed(self._items):
                if predicate(item):
                    return item
        return None

    def update_last(self, predicate: Callable[[T], bool], update: Callable[[T], None]) -> bool:
        """Apply ``update`` to the newest matching item under the lock."""
        with self._lock:
            for item in reversed(self._items):
                if predicate(item):
                    update(item)
                    return True
        return False

    def remove_if(self, predicate: Callable[[T], bool]) -> int:
        with self._lock:
            kept = [item for item in self._items if not predicate(item)]
            removed = len(self._items) - len(kept)
            if removed:
                self._items.clear()
                self._items.extend(kept)
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())
