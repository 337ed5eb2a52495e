"""State/store layer.

A single observable document shared by the data layer and its consumers.
Fetched records are pushed in here and subscribers react to the slots they
care about.
"""

from pydatalayer.state.history import HistoryEntry
from pydatalayer.state.persistence import JsonFileSnapshotStorage, PersistedSnapshot, SnapshotStorage
from pydatalayer.state.store import DEFAULT_FILTERS, StateStore, default_state

__all__ = [
    "DEFAULT_FILTERS",
    "HistoryEntry",
    "JsonFileSnapshotStorage",
    "PersistedSnapshot",
    "SnapshotStorage",
    "StateStore",
    "default_state",
]
