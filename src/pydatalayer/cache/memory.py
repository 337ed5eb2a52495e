"""Bounded in-memory cache tier with FIFO eviction."""

from __future__ import annotations

import copy
import logging
from collections import OrderedDict
from collections.abc import Callable, Iterator

from pydatalayer.cache.entry import CacheEntry

_logger = logging.getLogger(__name__)


class MemoryTier:
    """Fast tier holding at most ``capacity`` entries.

    Eviction is FIFO on insertion order, not LRU: reads never change an
    entry's position, so the entry inserted earliest is always the next to
    go. Replacing a key counts as a fresh insertion.
    Values are copied in and out, so callers never share a cached object.
    """

    def __init__(self, capacity: int, *, clock: Callable[[], float]) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> Iterator[str]:
        """Keys in insertion order, oldest first (snapshot, safe to mutate during iteration)."""
        return iter(list(self._entries))

    def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            _logger.debug("Memory cache entry expired key=%s", key)
            return None
        return entry.model_copy(deep=True)

    def set(self, key: str, value: object, ttl: float) -> CacheEntry:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._capacity:
            evicted, _ = self._entries.popitem(last=False)
            _logger.debug("Memory cache full (%d), evicted oldest key=%s", self._capacity, evicted)
        entry = CacheEntry(key=key, value=copy.deepcopy(value), created_at=self._clock(), ttl=ttl)
        self._entries[key] = entry
        return entry.model_copy(deep=True)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)
