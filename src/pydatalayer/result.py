"""Two-variant result type returned across the orchestrator boundary."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from pydatalayer.errors import ErrorInfo

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """A remote operation (or cache hit) that produced a value."""

    data: T
    from_cache: bool = False

    @property
    def ok(self) -> Literal[True]:
        return True

    @property
    def error(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class Failure:
    """An operation that exhausted its retries or failed validation."""

    error: ErrorInfo

    @property
    def ok(self) -> Literal[False]:
        return False

    @property
    def data(self) -> None:
        return None

    @property
    def from_cache(self) -> Literal[False]:
        return False


Result = Success[T] | Failure
