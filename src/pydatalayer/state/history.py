"""Undo history records."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HistoryEntry(BaseModel):
    """Snapshots taken around one committed ``set_state`` call."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    old_state: dict[str, Any] = Field(default_factory=dict)
    new_state: dict[str, Any] = Field(default_factory=dict)
    source: str = "unknown"
