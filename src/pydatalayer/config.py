"""Client configuration for pydatalayer."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pydatalayer import _constants as c
from pydatalayer.exceptions import DataLayerConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_list(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclasses.dataclass(frozen=True)
class DataLayerConfig:
    """Data layer configuration.

    Parameters
    ----------
    base_url : str
        Base URL of the remote record service (PostgREST-style API).
    api_key : str
        API key sent as ``apikey`` and bearer token.
    memory_capacity : int
        Maximum number of entries held by the fast (memory) cache tier.
        Eviction is FIFO: the earliest inserted entry goes first.
    default_ttl : float
        TTL in seconds used when a cache write does not supply one.
    collection_ttl : float
        TTL in seconds for whole-collection cache entries.
    entity_ttl : float
        TTL in seconds for single-record cache entries.
    durable_path : str or None
        SQLite file backing the durable cache tier.  ``None`` disables the
        durable tier; durable reads then miss and durable writes return
        ``False``.
    durable_horizon : float
        Durable entries older than this many seconds are removed by the
        sweep regardless of their TTL.
    memory_sweep_interval : float
        Seconds between sweeps of expired memory entries.
    durable_sweep_interval : float
        Seconds between durable horizon sweeps.
    retry_attempts : int
        Attempts per read before giving up.
    retry_base_delay : float
        Backoff unit in seconds; attempt ``n`` is followed by a wait of
        ``retry_base_delay * n``.
    write_interval : float
        Pause in seconds between two queued writes.
    write_retries : int
        Attempts per queued write.
    max_history : int
        Size of the state undo ring buffer.
    snapshot_path : str or None
        JSON file used to persist ``filters``/``cart`` across sessions.
    snapshot_max_age : float
        Persisted snapshots older than this many seconds are ignored.
    default_collection : str
        Collection used by the client when none is passed.
    durable_collections : tuple of str
        Collections whose full listings are cached in the durable tier.
    request_timeout : float
        Total timeout in seconds for a single HTTP request.
    """

    base_url: str = "http://localhost:3000"
    api_key: str = ""
    memory_capacity: int = c.DEFAULT_MEMORY_CAPACITY
    default_ttl: float = c.DEFAULT_TTL_SECONDS
    collection_ttl: float = c.COLLECTION_TTL_SECONDS
    entity_ttl: float = c.ENTITY_TTL_SECONDS
    durable_path: str | None = None
    durable_horizon: float = c.DURABLE_HORIZON_SECONDS
    memory_sweep_interval: float = c.MEMORY_SWEEP_INTERVAL_SECONDS
    durable_sweep_interval: float = c.DURABLE_SWEEP_INTERVAL_SECONDS
    retry_attempts: int = c.DEFAULT_RETRIES
    retry_base_delay: float = c.RETRY_BASE_DELAY_SECONDS
    write_interval: float = c.WRITE_INTERVAL_SECONDS
    write_retries: int = c.DEFAULT_WRITE_RETRIES
    max_history: int = c.DEFAULT_MAX_HISTORY
    snapshot_path: str | None = None
    snapshot_max_age: float = c.SNAPSHOT_MAX_AGE_SECONDS
    default_collection: str = "products"
    durable_collections: tuple[str, ...] = ()
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.memory_capacity < 1:
            raise DataLayerConfigError(f"memory_capacity must be >= 1, got {self.memory_capacity}")
        if self.max_history < 1:
            raise DataLayerConfigError(f"max_history must be >= 1, got {self.max_history}")
        if self.retry_attempts < 1 or self.write_retries < 1:
            raise DataLayerConfigError("retry_attempts and write_retries must be >= 1")
        for name in ("retry_base_delay", "write_interval", "durable_horizon", "snapshot_max_age"):
            if getattr(self, name) < 0:
                raise DataLayerConfigError(f"{name} must not be negative")
        if not self.default_collection:
            raise DataLayerConfigError("default_collection must be non-empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> DataLayerConfig:
        """Create configuration from environment variables.

        Reads ``DATALAYER_*`` variables. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DataLayerConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "DATALAYER_BASE_URL": "base_url",
            "DATALAYER_API_KEY": "api_key",
            "DATALAYER_DURABLE_PATH": "durable_path",
            "DATALAYER_SNAPSHOT_PATH": "snapshot_path",
            "DATALAYER_DEFAULT_COLLECTION": "default_collection",
        }
        _ENV_INT_MAP = {
            "DATALAYER_MEMORY_CAPACITY": "memory_capacity",
            "DATALAYER_RETRY_ATTEMPTS": "retry_attempts",
            "DATALAYER_WRITE_RETRIES": "write_retries",
            "DATALAYER_MAX_HISTORY": "max_history",
        }
        _ENV_FLOAT_MAP = {
            "DATALAYER_DEFAULT_TTL": "default_ttl",
            "DATALAYER_COLLECTION_TTL": "collection_ttl",
            "DATALAYER_ENTITY_TTL": "entity_ttl",
            "DATALAYER_DURABLE_HORIZON": "durable_horizon",
            "DATALAYER_MEMORY_SWEEP_INTERVAL": "memory_sweep_interval",
            "DATALAYER_DURABLE_SWEEP_INTERVAL": "durable_sweep_interval",
            "DATALAYER_RETRY_BASE_DELAY": "retry_base_delay",
            "DATALAYER_WRITE_INTERVAL": "write_interval",
            "DATALAYER_SNAPSHOT_MAX_AGE": "snapshot_max_age",
            "DATALAYER_REQUEST_TIMEOUT": "request_timeout",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val
        try:
            for env_key, field_name in _ENV_INT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = int(val)
            for env_key, field_name in _ENV_FLOAT_MAP.items():
                val = env.get(env_key)
                if val is not None:
                    config_kwargs[field_name] = float(val)
        except ValueError as exc:
            raise DataLayerConfigError(f"Invalid numeric environment value: {exc}") from exc

        durable_env = env.get("DATALAYER_DURABLE_COLLECTIONS")
        if durable_env is not None:
            config_kwargs["durable_collections"] = _env_list(durable_env)

        # An explicit "off" switch wins over a configured path.
        if not _env_bool(env.get("DATALAYER_DURABLE_ENABLED"), True):
            config_kwargs["durable_path"] = None

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
