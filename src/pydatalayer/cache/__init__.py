"""Tiered cache layer.

A bounded FIFO memory tier for small, frequently read records and an
optional durable tier (SQLite) for larger aggregates that should survive a
restart. Both tiers expire entries by TTL on read and through periodic sweeps.
"""

from pydatalayer.cache.durable import DurableStore, SqliteDurableStore
from pydatalayer.cache.entry import CacheEntry, CacheTier
from pydatalayer.cache.manager import CacheManager
from pydatalayer.cache.memory import MemoryTier

__all__ = [
    "CacheEntry",
    "CacheManager",
    "CacheTier",
    "DurableStore",
    "MemoryTier",
    "SqliteDurableStore",
]
