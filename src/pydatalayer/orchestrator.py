"""Read-through, retrying and write-serializing wrapper around remote calls."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from pydatalayer import _constants as c
from pydatalayer.cache import CacheManager, CacheTier
from pydatalayer.errors import ErrorReporter
from pydatalayer.exceptions import DataLayerError, DataLayerValidationError, TransientRemoteError
from pydatalayer.remote import RemoteResponse
from pydatalayer.result import Failure, Result, Success

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExecuteOptions(BaseModel):
    """Per-call options for :meth:`DataOrchestrator.execute`.

    ``retries=None`` uses the orchestrator default.  ``cache_ttl=None`` uses
    the cache default TTL.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    use_cache: bool = True
    cache_ttl: float | None = Field(default=None, ge=0)
    tier: CacheTier = CacheTier.FAST
    retries: int | None = Field(default=None, ge=1)


@dataclass(slots=True)
class _PendingWrite:
    """A queued request waiting for the drain loop."""

    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(slots=True)
class _KeyFamily:
    keys: tuple[str, ...] = ()
    prefixes: tuple[str, ...] = ()


def _unwrap(value: Any) -> Any:
    """Turn a :class:`RemoteResponse` into its data, raising if it carries an error."""
    if not isinstance(value, RemoteResponse):
        return value
    if value.error is not None:
        raise TransientRemoteError(value.error.message, status_code=value.error.status)
    return value.data


class DataOrchestrator:
    """Shields callers from transient remote failures.

    Reads go through the cache first and fall back to the remote operation
    inside a bounded retry loop with linear backoff.  Writes are pushed onto
    a FIFO queue and executed one at a time, with a fixed pause between two
    writes.  Nothing raises across :meth:`execute` or :meth:`write`; failures
    come back as :class:`~pydatalayer.result.Failure`.
    """

    def __init__(
        self,
        cache: CacheManager,
        *,
        reporter: ErrorReporter | None = None,
        retries: int = c.DEFAULT_RETRIES,
        write_retries: int = c.DEFAULT_WRITE_RETRIES,
        base_delay: float = c.RETRY_BASE_DELAY_SECONDS,
        write_interval: float = c.WRITE_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if retries < 1 or write_retries < 1:
            raise ValueError("retries must be >= 1")
        self._cache = cache
        self._reporter = reporter or ErrorReporter()
        self._retries = retries
        self._write_retries = write_retries
        self._base_delay = base_delay
        self._write_interval = write_interval
        self._sleep = sleep
        self._queue: deque[_PendingWrite] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self._processing = False
        self._families: dict[str, _KeyFamily] = {}

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def reporter(self) -> ErrorReporter:
        return self._reporter

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        cache_key: str | None = None,
        options: ExecuteOptions | None = None,
    ) -> Result[Any]:
        """Run *operation* with cache read-through and retries.

        Parameters
        ----------
        operation
            Zero-argument coroutine function performing the remote call.  It
            may return a plain value or a :class:`RemoteResponse`; a response
            carrying ``error`` counts as a failed attempt.
        cache_key
            Key to read from and populate.  ``None`` disables caching.
        options
            See :class:`ExecuteOptions`.

        Returns
        -------
        Success or Failure
            ``Success(data, from_cache=True)`` on a cache hit (the operation
            is not invoked), ``Success(data)`` after a successful attempt, or
            ``Failure`` once every attempt failed.
        """
        opts = options or ExecuteOptions()
        retries = opts.retries if opts.retries is not None else self._retries
        use_cache = opts.use_cache and cache_key is not None

        if use_cache:
            try:
                cached = await self._cache.get(cache_key, opts.tier)  # type: ignore[arg-type]
            except DataLayerValidationError as exc:
                return Failure(self._reporter.report(exc, "validation", {"cache_key": cache_key}))
            if cached is not None:
                _logger.debug("Cache hit key=%s tier=%s", cache_key, opts.tier)
                return Success(cached, from_cache=True)
            _logger.debug("Cache miss key=%s tier=%s", cache_key, opts.tier)

        last_exc: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                value = _unwrap(await operation())
            except DataLayerValidationError as exc:
                # Malformed requests fail the same way on every attempt.
                last_exc = exc
                break
            except Exception as exc:
                last_exc = exc
                _logger.info("Remote call failed (attempt %d/%d): %s", attempt, retries, exc)
                if attempt < retries:
                    await self._sleep(self._base_delay * attempt)
                continue

            if use_cache and value is not None:
                stored = await self._cache.set(cache_key, value, opts.cache_ttl, opts.tier)  # type: ignore[arg-type]
                if not stored:
                    _logger.debug("Cache write for key=%s degraded to no persistence", cache_key)
            return Success(value)

        if last_exc is None:
            last_exc = DataLayerError("Remote call made no attempt")
        _logger.warning("Remote call gave up after %d attempt(s): %s", retries, last_exc)
        info = self._reporter.report(
            last_exc,
            "remote",
            {"cache_key": cache_key, "retries": retries, "options": opts.model_dump(mode="json")},
        )
        return Failure(info)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write(
        self,
        operation: Callable[[], Awaitable[Any]],
        *,
        retries: int | None = None,
    ) -> Result[Any]:
        """Queue a remote write; it runs after every previously queued write settled.

        Writes never read or populate the cache.  Invalidating keys the write
        made stale is up to the caller (see :meth:`invalidate`).
        """
        options = ExecuteOptions(use_cache=False, retries=retries or self._write_retries)
        result: Result[Any] = await self.enqueue(lambda: self.execute(operation, None, options))
        return result

    async def enqueue(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* through the serialized queue and return its outcome.

        Exceptions raised by *operation* propagate to the awaiting caller.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._queue.append(_PendingWrite(operation=operation, future=future))
        _logger.debug("Write queued, queue_length=%d", len(self._queue))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        self._processing = True
        try:
            while self._queue:
                pending = self._queue.popleft()
                try:
                    value = await pending.operation()
                except asyncio.CancelledError:
                    if not pending.future.done():
                        pending.future.set_exception(DataLayerError("Orchestrator closed while the write was running"))
                    raise
                except Exception as exc:
                    if not pending.future.done():
                        pending.future.set_exception(exc)
                else:
                    if not pending.future.done():
                        pending.future.set_result(value)
                _logger.debug(
                    "Write settled after %.3fs, remaining=%d",
                    time.monotonic() - pending.enqueued_at,
                    len(self._queue),
                )
                await self._sleep(self._write_interval)
        finally:
            self._processing = False

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def declare_family(self, name: str, *, keys: Iterable[str] = (), prefixes: Iterable[str] = ()) -> None:
        """Register the exact keys and key prefixes invalidated together under *name*."""
        if not name:
            raise DataLayerValidationError("Family name must be non-empty")
        self._families[name] = _KeyFamily(keys=tuple(keys), prefixes=tuple(prefixes))

    async def invalidate(self, pattern: str) -> int:
        """Drop *pattern* as an exact key plus every key of the family named *pattern*.

        Returns the number of prefix-matched entries removed; exact keys are
        deleted from both tiers without counting.
        """
        await self._cache.delete(pattern)
        family = self._families.get(pattern)
        if family is None:
            return 0
        for key in family.keys:
            await self._cache.delete(key)
        removed = 0
        for prefix in family.prefixes:
            removed += await self._cache.delete_prefix(prefix)
        _logger.debug("Invalidated family=%s (%d prefixed entries)", pattern, removed)
        return removed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        return {
            "queue_length": len(self._queue),
            "processing": self._processing,
            "memory_entries": len(self._cache.memory),
        }

    async def aclose(self) -> None:
        """Stop the drain loop and fail writes that never started."""
        task = self._drain_task
        self._drain_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        while self._queue:
            pending = self._queue.popleft()
            if not pending.future.done():
                pending.future.set_exception(DataLayerError("Orchestrator closed before the write ran"))
