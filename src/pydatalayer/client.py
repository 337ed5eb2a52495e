"""High-level async client wiring cache, orchestrator and state store together."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from pydatalayer._constants import collection_key, entity_key
from pydatalayer.cache import CacheManager, CacheTier, DurableStore, SqliteDurableStore
from pydatalayer.config import DataLayerConfig
from pydatalayer.errors import ErrorListener, ErrorReporter
from pydatalayer.exceptions import DataLayerError, DataLayerValidationError
from pydatalayer.orchestrator import DataOrchestrator, ExecuteOptions
from pydatalayer.remote import RemoteService, RestRemoteService
from pydatalayer.result import Failure, Result
from pydatalayer.state import JsonFileSnapshotStorage, SnapshotStorage, StateStore
from pydatalayer.state.store import Subscriber

_logger = logging.getLogger(__name__)


def _confirmed_rows(data: Any, fallback: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Rows echoed back by a write, or *fallback* when the remote returned none."""
    if isinstance(data, Mapping):
        return [data]
    if isinstance(data, list):
        rows = [row for row in data if isinstance(row, Mapping)]
        if rows:
            return rows
    return [fallback]


class DataLayerClient:
    """Async data layer between view code and the remote record service.

    One instance owns one cache, one orchestrator and one state store for
    the lifetime of the process.

    Usage::

        async with DataLayerClient(config) as client:
            client.subscribe("products", render_products)
            await client.load_collection("products")
    """

    def __init__(
        self,
        config: DataLayerConfig,
        *,
        remote: RemoteService | None = None,
        session: aiohttp.ClientSession | None = None,
        durable: DurableStore | None = None,
        snapshot_storage: SnapshotStorage | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._clock = clock
        self._external_session = session is not None
        self._http_session = session
        self._remote = remote
        self._owns_remote = remote is None

        if durable is None and config.durable_path:
            durable = SqliteDurableStore(config.durable_path)
        if snapshot_storage is None and config.snapshot_path:
            snapshot_storage = JsonFileSnapshotStorage(config.snapshot_path)
        self._snapshot_storage = snapshot_storage

        self.reporter = ErrorReporter()
        self.cache = CacheManager(
            capacity=config.memory_capacity,
            durable=durable,
            default_ttl=config.default_ttl,
            durable_horizon=config.durable_horizon,
            clock=clock,
            sleep=sleep,
        )
        self.orchestrator = DataOrchestrator(
            self.cache,
            reporter=self.reporter,
            retries=config.retry_attempts,
            write_retries=config.write_retries,
            base_delay=config.retry_base_delay,
            write_interval=config.write_interval,
            sleep=sleep,
        )
        self.store = StateStore(max_history=config.max_history, reporter=self.reporter)
        self._families: set[str] = set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DataLayerClient:
        if self._remote is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._remote = RestRemoteService(self._config, self._http_session)
        await self.cache.open()
        self.cache.start_sweeper(
            memory_interval=self._config.memory_sweep_interval,
            durable_interval=self._config.durable_sweep_interval,
        )
        await self.restore_snapshot()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        try:
            await self.save_snapshot()
        finally:
            await self.orchestrator.aclose()
            await self.cache.aclose()
            if not self._external_session and self._http_session is not None:
                await self._http_session.close()
                self._http_session = None
            if self._owns_remote:
                self._remote = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_remote(self) -> RemoteService:
        if self._remote is None:
            raise DataLayerError("Client not initialized. Use 'async with DataLayerClient(...) as client:'")
        return self._remote

    def _slot_loaded(self, name: str) -> bool:
        return isinstance(self.store.get_state(name), list)

    def _collection(self, collection: str | None) -> str:
        name = collection or self._config.default_collection
        if name not in self._families:
            self.orchestrator.declare_family(name, keys=(collection_key(name),), prefixes=(f"{name}_",))
            self._families.add(name)
        return name

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_collection(self, collection: str | None = None, *, use_cache: bool = True) -> Result[Any]:
        """Fetch every record of *collection* and publish it to the state slot of the same name."""
        name = self._collection(collection)
        remote = self._require_remote()
        tier = CacheTier.DURABLE if name in self._config.durable_collections else CacheTier.FAST

        result = await self.orchestrator.execute(
            lambda: remote.query(name),
            collection_key(name),
            ExecuteOptions(use_cache=use_cache, cache_ttl=self._config.collection_ttl, tier=tier),
        )
        if result.ok:
            self.store.set_state({name: result.data}, f"load-{name}")
        return result

    async def load_entity(
        self,
        record_id: Any,
        collection: str | None = None,
        *,
        use_cache: bool = True,
    ) -> Result[Any]:
        """Fetch one record; cached separately from the collection listing."""
        name = self._collection(collection)
        remote = self._require_remote()
        try:
            key = entity_key(name, record_id)
        except DataLayerValidationError as exc:
            return Failure(self.reporter.report(exc, "validation", {"collection": name, "record_id": record_id}))
        return await self.orchestrator.execute(
            lambda: remote.query_one(name, record_id),
            key,
            ExecuteOptions(use_cache=use_cache, cache_ttl=self._config.entity_ttl),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_entity(self, record: Mapping[str, Any], collection: str | None = None) -> Result[Any]:
        """Insert *record* through the write queue.

        On success the collection's cache keys are invalidated and the
        confirmed row is appended to the loaded state slot.
        """
        name = self._collection(collection)
        remote = self._require_remote()
        result = await self.orchestrator.write(lambda: remote.insert(name, record))
        if result.ok:
            await self.orchestrator.invalidate(name)
            if self._slot_loaded(name):
                for row in _confirmed_rows(result.data, record):
                    self.store.add_record(name, row)
        return result

    async def update_entity(
        self,
        record_id: Any,
        patch: Mapping[str, Any],
        collection: str | None = None,
    ) -> Result[Any]:
        """Patch one record through the write queue, then invalidate and publish it."""
        name = self._collection(collection)
        remote = self._require_remote()
        result = await self.orchestrator.write(lambda: remote.update(name, record_id, patch))
        if result.ok:
            await self.orchestrator.invalidate(name)
            if self._slot_loaded(name):
                for row in _confirmed_rows(result.data, patch):
                    self.store.update_record(name, record_id, row)
        return result

    async def invalidate(self, pattern: str) -> int:
        return await self.orchestrator.invalidate(pattern)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def subscribe(self, slot: str, callback: Subscriber) -> Callable[[], None]:
        return self.store.subscribe(slot, callback)

    def get_state(self, slot: str | None = None) -> Any:
        return self.store.get_state(slot)

    def set_filter(self, name: str, value: Any) -> dict[str, Any]:
        return self.store.set_filter(name, value)

    def undo(self) -> bool:
        return self.store.undo()

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        return self.reporter.on_error(listener)

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    async def save_snapshot(self) -> bool:
        """Persist ``filters`` and ``cart``; returns ``False`` when no storage is configured or saving failed."""
        storage = self._snapshot_storage
        if storage is None:
            return False
        snapshot = self.store.persisted_snapshot(timestamp=self._clock())
        try:
            await asyncio.to_thread(storage.save, snapshot)
        except OSError as exc:
            self.reporter.report(exc, "state-save", {"storage": type(storage).__name__})
            return False
        return True

    async def restore_snapshot(self) -> bool:
        """Load the persisted snapshot if one exists and is fresh enough."""
        storage = self._snapshot_storage
        if storage is None:
            return False
        snapshot = await asyncio.to_thread(storage.load)
        if snapshot is None:
            return False
        restored = self.store.restore(snapshot, now=self._clock(), max_age=self._config.snapshot_max_age)
        if not restored:
            try:
                await asyncio.to_thread(storage.remove)
            except OSError:
                _logger.debug("Removing stale snapshot failed", exc_info=True)
        return restored

    def stats(self) -> dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "orchestrator": self.orchestrator.stats(),
            "state": self.store.stats(),
        }
