"""Fixed-capacity membership set with FIFO eviction.

Tracks which item identities the streamer has already processed.  Items
are inserted once, in chronological order, and never re-touched, so
insertion order and recency order coincide and plain FIFO eviction is
enough (no LRU bookkeeping).

Backed by a dict (insertion-ordered) for O(1) membership and O(1)
eviction of the oldest key.  Not thread-safe: the owning streamer is its
only accessor.
"""

from __future__ import annotations

from typing import Iterable

from .errors import ConfigError


class BoundedHistory:
    """Ordered set of item ids holding at most *capacity* entries."""

    __slots__ = ("_data", "_capacity")

    def __init__(self, capacity: int) -> None:
        if not isinstance(capacity, int) or capacity < 1:
            raise ConfigError(f"history capacity must be >= 1, got {capacity!r}")
        self._data: dict[str, None] = {}
        self._capacity = capacity

    @property
    def capacity(self) -> int:
        return self._capacity

    def contains(self, item_id: str) -> bool:
        return item_id in self._data

    def insert_all(self, item_ids: Iterable[str]) -> None:
        """Insert *item_ids* in order, evicting the oldest entry on overflow.

        Re-inserting an id that is already present keeps its original
        position.
        """
        for item_id in item_ids:
            if item_id in self._data:
                continue
            self._data[item_id] = None
            if len(self._data) > self._capacity:
                oldest = next(iter(self._data))
                del self._data[oldest]

    def size(self) -> int:
        return len(self._data)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"BoundedHistory(capacity={self._capacity}, size={len(self._data)})"
