"""Tests for the memory tier, the SQLite durable tier and the cache facade."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from pydatalayer.cache import CacheEntry, CacheManager, CacheTier, MemoryTier, SqliteDurableStore
from pydatalayer.exceptions import DataLayerValidationError, PersistentStoreUnavailable


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _BrokenDurableStore:
    """Durable store whose every operation fails."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def open(self) -> None:
        self.calls.append("open")

    async def close(self) -> None:
        self.calls.append("close")

    async def put(self, key: str, value: Any, timestamp: float, ttl: float) -> None:
        self.calls.append("put")
        raise PersistentStoreUnavailable("disk gone")

    async def get(self, key: str) -> CacheEntry | None:
        self.calls.append("get")
        raise PersistentStoreUnavailable("disk gone")

    async def delete(self, key: str) -> None:
        raise PersistentStoreUnavailable("disk gone")

    async def clear(self) -> None:
        raise PersistentStoreUnavailable("disk gone")

    async def iterate_by_timestamp_ascending(self, upper_bound: float) -> list[CacheEntry]:
        raise PersistentStoreUnavailable("disk gone")


class _UnopenableDurableStore(_BrokenDurableStore):
    async def open(self) -> None:
        raise PersistentStoreUnavailable("no such database")


# ------------------------------------------------------------------
# MemoryTier
# ------------------------------------------------------------------


class TestMemoryTier:
    def test_value_valid_before_ttl_and_removed_at_ttl(self) -> None:
        clock = FakeClock()
        tier = MemoryTier(10, clock=clock)
        tier.set("k", "v", ttl=30)

        clock.advance(29.9)
        entry = tier.get("k")
        assert entry is not None
        assert entry.value == "v"

        clock.advance(0.1)
        assert tier.get("k") is None
        assert "k" not in tier

    def test_fifo_evicts_first_inserted_not_least_recently_used(self) -> None:
        tier = MemoryTier(3, clock=FakeClock())
        for key in ("a", "b", "c"):
            tier.set(key, key.upper(), ttl=60)

        # Reading "a" must not protect it: eviction is by insertion order.
        assert tier.get("a") is not None
        tier.set("d", "D", ttl=60)

        assert list(tier.keys()) == ["b", "c", "d"]
        assert [tier.get(k).value for k in ("b", "c", "d")] == ["B", "C", "D"]  # type: ignore[union-attr]

    def test_capacity_plus_one_evicts_exactly_one(self) -> None:
        capacity = 5
        tier = MemoryTier(capacity, clock=FakeClock())
        for i in range(capacity + 1):
            tier.set(f"k{i}", i, ttl=60)

        assert len(tier) == capacity
        assert "k0" not in tier
        assert [tier.get(f"k{i}").value for i in range(1, capacity + 1)] == [1, 2, 3, 4, 5]  # type: ignore[union-attr]

    def test_replacing_key_refreshes_entry_without_eviction(self) -> None:
        clock = FakeClock()
        tier = MemoryTier(2, clock=clock)
        tier.set("a", 1, ttl=10)
        tier.set("b", 2, ttl=10)
        clock.advance(5)
        tier.set("a", 11, ttl=10)

        assert len(tier) == 2
        assert list(tier.keys()) == ["b", "a"]
        clock.advance(6)
        assert tier.get("b") is None
        assert tier.get("a").value == 11  # type: ignore[union-attr]

    def test_sweep_removes_only_expired_entries(self) -> None:
        clock = FakeClock()
        tier = MemoryTier(10, clock=clock)
        tier.set("short", 1, ttl=5)
        tier.set("long", 2, ttl=500)
        clock.advance(10)

        assert tier.sweep() == 1
        assert list(tier.keys()) == ["long"]

    def test_values_are_copied_in_and_out(self) -> None:
        tier = MemoryTier(10, clock=FakeClock())
        rows = [{"id": 1}]
        stored = tier.set("rows", rows, ttl=60)

        rows.append({"id": 2})
        stored.value.append({"id": 3})
        tier.get("rows").value.append({"id": 4})  # type: ignore[union-attr]

        assert tier.get("rows").value == [{"id": 1}]  # type: ignore[union-attr]

    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            MemoryTier(0, clock=FakeClock())


# ------------------------------------------------------------------
# CacheManager (fast tier)
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_capacity_two_scenario() -> None:
    cache = CacheManager(capacity=2, clock=FakeClock())
    await cache.set("a", 1, 60)
    await cache.set("b", 2, 60)
    await cache.set("c", 3, 60)

    assert await cache.get("a") is None
    assert await cache.get("b") == 2
    assert await cache.get("c") == 3


@pytest.mark.asyncio
async def test_default_ttl_applies_when_none_given() -> None:
    clock = FakeClock()
    cache = CacheManager(default_ttl=10, clock=clock)
    assert await cache.set("k", {"x": 1}) is True

    clock.advance(9)
    assert await cache.get("k") == {"x": 1}
    clock.advance(1)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_delete_and_clear_are_idempotent() -> None:
    cache = CacheManager(clock=FakeClock())
    await cache.set("k", 1, 60)
    await cache.delete("k")
    await cache.delete("k")
    assert await cache.get("k") is None

    await cache.set("x", 1, 60)
    await cache.clear()
    await cache.clear()
    assert len(cache.memory) == 0


@pytest.mark.asyncio
async def test_delete_prefix_only_touches_matching_keys() -> None:
    cache = CacheManager(clock=FakeClock())
    for key in ("products_all", "products_1", "products_2", "categories_all"):
        await cache.set(key, key, 60)

    removed = await cache.delete_prefix("products_")

    assert removed == 3
    assert list(cache.memory.keys()) == ["categories_all"]


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_key", ["", "   ", None, 42])
async def test_malformed_keys_raise_validation_error(bad_key: Any) -> None:
    cache = CacheManager(clock=FakeClock())
    with pytest.raises(DataLayerValidationError):
        await cache.get(bad_key)
    with pytest.raises(DataLayerValidationError):
        await cache.set(bad_key, 1)


@pytest.mark.asyncio
async def test_durable_tier_absent_degrades_to_memory_only() -> None:
    cache = CacheManager(clock=FakeClock())
    assert await cache.set("k", 1, 60, CacheTier.DURABLE) is False
    assert await cache.get("k", CacheTier.DURABLE) is None
    assert cache.stats() == {"memory_entries": 0, "memory_capacity": 50, "durable_enabled": False}


@pytest.mark.asyncio
async def test_failing_durable_tier_never_raises() -> None:
    store = _BrokenDurableStore()
    cache = CacheManager(durable=store, clock=FakeClock())
    await cache.open()

    assert await cache.set("k", 1, 60, CacheTier.DURABLE) is False
    assert await cache.get("k", CacheTier.DURABLE) is None
    await cache.delete("k")
    await cache.clear()
    assert await cache.delete_prefix("k") == 0
    assert await cache.sweep_durable() == 0
    assert store.calls[:3] == ["open", "put", "get"]


@pytest.mark.asyncio
async def test_unopenable_durable_tier_is_dropped() -> None:
    cache = CacheManager(durable=_UnopenableDurableStore(), clock=FakeClock())
    await cache.open()
    assert cache.durable_enabled is False
    assert await cache.set("k", 1, 60, CacheTier.DURABLE) is False


@pytest.mark.asyncio
async def test_sweeper_task_removes_expired_memory_entries() -> None:
    clock = FakeClock()
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)
        await asyncio.sleep(0)

    cache = CacheManager(clock=clock, sleep=_sleep)
    await cache.set("stale", 1, 5)
    clock.advance(10)

    cache.start_sweeper(memory_interval=3600, durable_interval=86400)
    for _ in range(5):
        await asyncio.sleep(0)
    await cache.stop_sweeper()

    assert "stale" not in cache.memory
    assert delays and set(delays) == {3600}


@pytest.mark.asyncio
async def test_fast_tier_hits_never_alias_each_other() -> None:
    cache = CacheManager(clock=FakeClock())
    await cache.set("rows", [{"id": 1}], 60)

    first = await cache.get("rows")
    first.append({"id": 999})

    assert await cache.get("rows") == [{"id": 1}]


# ------------------------------------------------------------------
# SQLite durable tier
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sqlite_durable_roundtrip_survives_reopen(tmp_path: Path) -> None:
    path = str(tmp_path / "cache.db")
    clock = FakeClock()

    cache = CacheManager(durable=SqliteDurableStore(path), clock=clock)
    await cache.open()
    assert await cache.set("catalog", [{"id": 1, "name": "Lamp"}], 3600, CacheTier.DURABLE) is True
    await cache.aclose()

    reopened = CacheManager(durable=SqliteDurableStore(path), clock=clock)
    await reopened.open()
    try:
        assert await reopened.get("catalog", CacheTier.DURABLE) == [{"id": 1, "name": "Lamp"}]
        # The durable tier is independent of the fast tier.
        assert await reopened.get("catalog") is None
    finally:
        await reopened.aclose()


@pytest.mark.asyncio
async def test_sqlite_durable_expired_entry_is_deleted_on_read(tmp_path: Path) -> None:
    clock = FakeClock()
    store = SqliteDurableStore(str(tmp_path / "cache.db"))
    cache = CacheManager(durable=store, clock=clock)
    await cache.open()
    try:
        await cache.set("k", "v", 60, CacheTier.DURABLE)
        clock.advance(60)
        assert await cache.get("k", CacheTier.DURABLE) is None
        assert await store.get("k") is None
    finally:
        await cache.aclose()


@pytest.mark.asyncio
async def test_sqlite_durable_rejects_unserializable_value(tmp_path: Path) -> None:
    cache = CacheManager(durable=SqliteDurableStore(str(tmp_path / "cache.db")), clock=FakeClock())
    await cache.open()
    try:
        assert await cache.set("k", {"obj": object()}, 60, CacheTier.DURABLE) is False
        assert await cache.get("k", CacheTier.DURABLE) is None
    finally:
        await cache.aclose()


@pytest.mark.asyncio
async def test_durable_sweep_removes_entries_past_horizon_regardless_of_ttl(tmp_path: Path) -> None:
    clock = FakeClock(now=0.0)
    store = SqliteDurableStore(str(tmp_path / "cache.db"))
    cache = CacheManager(durable=store, durable_horizon=100, clock=clock)
    await cache.open()
    try:
        await cache.set("oldest", 1, 10_000, CacheTier.DURABLE)
        clock.advance(10)
        await cache.set("older", 2, 10_000, CacheTier.DURABLE)
        clock.advance(50)
        await cache.set("recent", 3, 10_000, CacheTier.DURABLE)
        clock.advance(55)

        swept = await cache.sweep()

        assert swept == {CacheTier.FAST: 0, CacheTier.DURABLE: 2}
        remaining = await store.iterate_by_timestamp_ascending(clock())
        assert [entry.key for entry in remaining] == ["recent"]
    finally:
        await cache.aclose()


@pytest.mark.asyncio
async def test_sqlite_iterates_in_ascending_timestamp_order(tmp_path: Path) -> None:
    store = SqliteDurableStore(str(tmp_path / "cache.db"))
    await store.open()
    try:
        await store.put("c", 3, 30.0, 60)
        await store.put("a", 1, 10.0, 60)
        await store.put("b", 2, 20.0, 60)

        entries = await store.iterate_by_timestamp_ascending(25.0)
        assert [(e.key, e.value) for e in entries] == [("a", 1), ("b", 2)]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_sqlite_store_not_open_raises_unavailable(tmp_path: Path) -> None:
    store = SqliteDurableStore(str(tmp_path / "cache.db"))
    with pytest.raises(PersistentStoreUnavailable):
        await store.get("k")


@pytest.mark.asyncio
async def test_durable_tier_defaults_to_its_own_ttl(tmp_path: Path) -> None:
    store = SqliteDurableStore(str(tmp_path / "cache.db"))
    cache = CacheManager(durable=store, default_ttl=10, durable_ttl=3600, clock=FakeClock())
    await cache.open()
    try:
        assert await cache.set("settings", {"currency": "DZD"}, tier=CacheTier.DURABLE) is True
        await cache.set("fast", 1)

        entry = await store.get("settings")
        assert entry is not None
        assert entry.ttl == 3600
        assert cache.memory.get("fast").ttl == 10  # type: ignore[union-attr]
    finally:
        await cache.aclose()
