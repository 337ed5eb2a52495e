"""Two-tier cache facade used by the orchestrator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydatalayer import _constants as c
from pydatalayer.cache.durable import DurableStore
from pydatalayer.cache.entry import CacheTier
from pydatalayer.cache.memory import MemoryTier
from pydatalayer.exceptions import DataLayerValidationError, PersistentStoreUnavailable

_logger = logging.getLogger(__name__)


def _validate_key(key: Any) -> str:
    if not isinstance(key, str) or not key.strip():
        raise DataLayerValidationError(f"Cache key must be a non-empty string, got {key!r}")
    return key


class CacheManager:
    """Tiered key/value cache with TTL expiry.

    The fast tier is a bounded FIFO :class:`MemoryTier`. The durable tier is
    optional; when it is missing or failing the cache silently degrades to
    memory only: durable reads miss and durable writes return ``False``.
    """

    def __init__(
        self,
        *,
        capacity: int = c.DEFAULT_MEMORY_CAPACITY,
        durable: DurableStore | None = None,
        default_ttl: float = c.DEFAULT_TTL_SECONDS,
        durable_ttl: float = c.DURABLE_TTL_SECONDS,
        durable_horizon: float = c.DURABLE_HORIZON_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._memory = MemoryTier(capacity, clock=clock)
        self._durable = durable
        self._default_ttl = default_ttl
        self._durable_ttl = durable_ttl
        self._durable_horizon = durable_horizon
        self._sweep_tasks: list[asyncio.Task[None]] = []

    @property
    def memory(self) -> MemoryTier:
        return self._memory

    @property
    def durable_enabled(self) -> bool:
        return self._durable is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the durable tier; on failure the cache runs memory-only."""
        if self._durable is None:
            return
        try:
            await self._durable.open()
        except PersistentStoreUnavailable:
            _logger.warning("Durable cache unavailable, continuing with memory tier only", exc_info=True)
            self._durable = None

    async def aclose(self) -> None:
        await self.stop_sweeper()
        durable = self._durable
        if durable is not None:
            try:
                await durable.close()
            except Exception:
                _logger.debug("Closing durable cache failed", exc_info=True)

    # ------------------------------------------------------------------
    # Reads / writes
    # ------------------------------------------------------------------

    async def get(self, key: str, tier: CacheTier = CacheTier.FAST) -> Any | None:
        """Return the cached value for *key*, or ``None`` when absent or expired."""
        _validate_key(key)
        if tier == CacheTier.FAST:
            entry = self._memory.get(key)
            return entry.value if entry is not None else None

        durable = self._durable
        if durable is None:
            return None
        try:
            entry = await durable.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                await durable.delete(key)
                _logger.debug("Durable cache entry expired key=%s", key)
                return None
        except PersistentStoreUnavailable:
            _logger.warning("Durable cache read failed for key=%s", key, exc_info=True)
            return None
        return entry.value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        tier: CacheTier = CacheTier.FAST,
    ) -> bool:
        """Store *value*; returns ``False`` if the durable tier could not persist it.

        Without *ttl* the fast tier uses ``default_ttl`` and the durable tier
        ``durable_ttl``.
        """
        _validate_key(key)
        if tier == CacheTier.FAST:
            self._memory.set(key, value, self._default_ttl if ttl is None else ttl)
            return True

        durable = self._durable
        if durable is None:
            return False
        try:
            await durable.put(key, value, self._clock(), self._durable_ttl if ttl is None else ttl)
        except (PersistentStoreUnavailable, DataLayerValidationError):
            _logger.warning("Durable cache write failed for key=%s, persistence degraded", key, exc_info=True)
            return False
        return True

    async def delete(self, key: str, tier: CacheTier | None = None) -> None:
        """Remove *key* from *tier* (both tiers when ``None``)."""
        _validate_key(key)
        if tier in (None, CacheTier.FAST):
            self._memory.delete(key)
        if tier in (None, CacheTier.DURABLE) and self._durable is not None:
            try:
                await self._durable.delete(key)
            except PersistentStoreUnavailable:
                _logger.warning("Durable cache delete failed for key=%s", key, exc_info=True)

    async def delete_prefix(self, prefix: str, tier: CacheTier | None = None) -> int:
        """Remove every key starting with *prefix*; returns the number removed."""
        _validate_key(prefix)
        removed = 0
        if tier in (None, CacheTier.FAST):
            for key in self._memory.keys():
                if key.startswith(prefix) and self._memory.delete(key):
                    removed += 1
        if tier in (None, CacheTier.DURABLE) and self._durable is not None:
            try:
                for entry in await self._durable.iterate_by_timestamp_ascending(math.inf):
                    if entry.key.startswith(prefix):
                        await self._durable.delete(entry.key)
                        removed += 1
            except PersistentStoreUnavailable:
                _logger.warning("Durable cache prefix delete failed for prefix=%s", prefix, exc_info=True)
        return removed

    async def clear(self, tier: CacheTier | None = None) -> None:
        if tier in (None, CacheTier.FAST):
            self._memory.clear()
        if tier in (None, CacheTier.DURABLE) and self._durable is not None:
            try:
                await self._durable.clear()
            except PersistentStoreUnavailable:
                _logger.warning("Durable cache clear failed", exc_info=True)

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def sweep_memory(self) -> int:
        removed = self._memory.sweep()
        if removed:
            _logger.debug("Memory sweep removed %d expired entries", removed)
        return removed

    async def sweep_durable(self) -> int:
        """Delete durable entries older than the horizon, oldest first."""
        durable = self._durable
        if durable is None:
            return 0
        cutoff = self._clock() - self._durable_horizon
        removed = 0
        try:
            for entry in await durable.iterate_by_timestamp_ascending(cutoff):
                await durable.delete(entry.key)
                removed += 1
        except PersistentStoreUnavailable:
            _logger.warning("Durable sweep failed after %d deletions", removed, exc_info=True)
        if removed:
            _logger.debug("Durable sweep removed %d entries older than %.0fs", removed, self._durable_horizon)
        return removed

    async def sweep(self) -> dict[CacheTier, int]:
        return {
            CacheTier.FAST: self.sweep_memory(),
            CacheTier.DURABLE: await self.sweep_durable(),
        }

    def start_sweeper(
        self,
        *,
        memory_interval: float = c.MEMORY_SWEEP_INTERVAL_SECONDS,
        durable_interval: float = c.DURABLE_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """Schedule the periodic sweeps on the running loop."""
        if self._sweep_tasks:
            return

        async def _memory_loop() -> None:
            while True:
                await self._sleep(memory_interval)
                try:
                    self.sweep_memory()
                except Exception:
                    _logger.warning("Memory sweep failed", exc_info=True)

        async def _durable_loop() -> None:
            while True:
                await self._sleep(durable_interval)
                try:
                    await self.sweep_durable()
                except Exception:
                    _logger.warning("Durable sweep failed", exc_info=True)

        self._sweep_tasks = [asyncio.create_task(_memory_loop())]
        if self._durable is not None:
            self._sweep_tasks.append(asyncio.create_task(_durable_loop()))

    async def stop_sweeper(self) -> None:
        tasks = self._sweep_tasks
        self._sweep_tasks = []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def stats(self) -> dict[str, Any]:
        return {
            "memory_entries": len(self._memory),
            "memory_capacity": self._memory.capacity,
            "durable_enabled": self.durable_enabled,
        }
