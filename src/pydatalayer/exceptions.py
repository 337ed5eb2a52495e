"""Custom exception hierarchy for pydatalayer."""

from __future__ import annotations


class DataLayerError(Exception):
    """Base exception for all pydatalayer errors."""


class DataLayerConfigError(DataLayerError):
    """Invalid or missing configuration."""


class DataLayerValidationError(DataLayerError):
    """Malformed key or path, or a payload that cannot be serialized."""


class TransientRemoteError(DataLayerError):
    """Retryable remote failure (network error, non-2xx response, error payload)."""

    def __init__(
        self,
        message: str,
        *,
        collection: str = "",
        status_code: int | None = None,
    ) -> None:
        self.collection = collection
        self.status_code = status_code
        super().__init__(message)


class PersistentStoreUnavailable(DataLayerError):
    """Durable cache tier is missing or failing.

    Never escapes :class:`~pydatalayer.cache.CacheManager`; the cache logs it
    and carries on as if the durable tier returned nothing.
    """


class MiddlewareError(DataLayerError):
    """A state middleware raised while observing a transition."""


class SubscriberError(DataLayerError):
    """A state subscriber raised while being notified."""
