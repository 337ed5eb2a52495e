"""Cache entry model and tier selector."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CacheTier(StrEnum):
    FAST = "fast"
    DURABLE = "durable"


class CacheEntry(BaseModel):
    """A cached value; never mutated, a replacement is a new entry."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: Any
    created_at: float = Field(..., description="Epoch seconds at insertion")
    ttl: float = Field(..., description="Seconds the entry stays valid")

    @field_validator("key")
    @classmethod
    def _non_empty_key(cls, value: str) -> str:
        if not value:
            raise ValueError("key must be non-empty")
        return value

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        """Whether the entry has reached its TTL at *now*."""
        return self.age(now) >= self.ttl
