"""Internal constants shared across the library."""

from pydatalayer.exceptions import DataLayerValidationError

DEFAULT_MEMORY_CAPACITY = 50
DEFAULT_TTL_SECONDS: float = 5 * 60
COLLECTION_TTL_SECONDS: float = 10 * 60
ENTITY_TTL_SECONDS: float = 5 * 60
DURABLE_TTL_SECONDS: float = 60 * 60

#: Durable entries older than this are swept regardless of their own TTL.
DURABLE_HORIZON_SECONDS: float = 24 * 3600
MEMORY_SWEEP_INTERVAL_SECONDS: float = 3600
DURABLE_SWEEP_INTERVAL_SECONDS: float = 24 * 3600

DEFAULT_RETRIES = 3
DEFAULT_WRITE_RETRIES = 5
RETRY_BASE_DELAY_SECONDS: float = 1.0
WRITE_INTERVAL_SECONDS: float = 0.1

DEFAULT_MAX_HISTORY = 50
SNAPSHOT_MAX_AGE_SECONDS: float = 24 * 3600

USER_AGENT = "pydatalayer"

# Substrings that mark a reported error as critical.
CRITICAL_ERROR_KEYWORDS: tuple[str, ...] = ("network", "database", "auth", "payment")

_COLLECTION_SUFFIX = "all"


def collection_key(collection: str) -> str:
    """Cache key holding a whole collection."""
    return f"{collection}_{_COLLECTION_SUFFIX}"


def entity_key(collection: str, record_id: object) -> str:
    """Cache key holding a single record of *collection*.

    The id equal to the collection suffix is rejected; it would alias the
    collection listing.
    """
    if str(record_id) == _COLLECTION_SUFFIX:
        raise DataLayerValidationError(f"Record id {record_id!r} is reserved for collection listings")
    return f"{collection}_{record_id}"
