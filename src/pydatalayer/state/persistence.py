"""Cross-session persistence of the user-owned state slots."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

_logger = logging.getLogger(__name__)


class PersistedSnapshot(BaseModel):
    """``{filters, cart, timestamp}`` as written to storage."""

    model_config = ConfigDict(extra="ignore")

    filters: dict[str, Any] = Field(default_factory=dict)
    cart: list[Any] = Field(default_factory=list)
    timestamp: float = Field(..., description="Epoch seconds when the snapshot was taken")

    def is_stale(self, *, now: float, max_age: float) -> bool:
        return now - self.timestamp > max_age


class SnapshotStorage(Protocol):
    def load(self) -> PersistedSnapshot | None:
        ...

    def save(self, snapshot: PersistedSnapshot) -> None:
        ...

    def remove(self) -> None:
        ...


class JsonFileSnapshotStorage:
    """Stores one snapshot as a JSON file.

    A missing, unreadable or malformed file loads as ``None``.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> PersistedSnapshot | None:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            _logger.warning("Cannot read state snapshot %s", self._path, exc_info=True)
            return None
        try:
            return PersistedSnapshot.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError):
            _logger.warning("Discarding malformed state snapshot %s", self._path, exc_info=True)
            return None

    def save(self, snapshot: PersistedSnapshot) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = snapshot.model_dump_json()
        # Atomic replace: readers see either the old file or the new one.
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove(self) -> None:
        self._path.unlink(missing_ok=True)
