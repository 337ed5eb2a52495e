"""pydatalayer - Async client-side data layer: tiered cache, retrying orchestrator, observable state."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydatalayer")
except PackageNotFoundError:
    __version__ = "0+local"
from pydatalayer.cache import CacheEntry, CacheManager, CacheTier, DurableStore, MemoryTier, SqliteDurableStore
from pydatalayer.client import DataLayerClient
from pydatalayer.config import DataLayerConfig
from pydatalayer.errors import ErrorInfo, ErrorReporter
from pydatalayer.exceptions import (
    DataLayerConfigError,
    DataLayerError,
    DataLayerValidationError,
    MiddlewareError,
    PersistentStoreUnavailable,
    SubscriberError,
    TransientRemoteError,
)
from pydatalayer.orchestrator import DataOrchestrator, ExecuteOptions
from pydatalayer.remote import RemoteErrorDetail, RemoteResponse, RemoteService, RestRemoteService
from pydatalayer.result import Failure, Result, Success
from pydatalayer.state import (
    HistoryEntry,
    JsonFileSnapshotStorage,
    PersistedSnapshot,
    SnapshotStorage,
    StateStore,
    default_state,
)

__all__ = [
    "__version__",
    "CacheEntry",
    "CacheManager",
    "CacheTier",
    "DataLayerClient",
    "DataLayerConfig",
    "DataLayerConfigError",
    "DataLayerError",
    "DataLayerValidationError",
    "DataOrchestrator",
    "DurableStore",
    "ErrorInfo",
    "ErrorReporter",
    "ExecuteOptions",
    "Failure",
    "HistoryEntry",
    "JsonFileSnapshotStorage",
    "MemoryTier",
    "MiddlewareError",
    "PersistedSnapshot",
    "PersistentStoreUnavailable",
    "RemoteErrorDetail",
    "RemoteResponse",
    "RemoteService",
    "RestRemoteService",
    "Result",
    "SnapshotStorage",
    "SqliteDurableStore",
    "StateStore",
    "SubscriberError",
    "Success",
    "TransientRemoteError",
    "default_state",
]
