"""Observable in-memory state store.

This is the only component allowed to mutate the application state
document. Readers, middleware and subscribers only ever see deep copies.
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydatalayer import _constants as c
from pydatalayer.errors import ErrorReporter
from pydatalayer.exceptions import DataLayerValidationError, MiddlewareError, SubscriberError
from pydatalayer.state.history import HistoryEntry
from pydatalayer.state.persistence import PersistedSnapshot

_logger = logging.getLogger(__name__)

Subscriber = Callable[[Any, Any], None]
Middleware = Callable[[dict[str, dict[str, Any]], dict[str, Any], dict[str, Any], str], None]

_MISSING: Any = object()

DEFAULT_FILTERS: dict[str, str] = {
    "category": "",
    "price": "",
    "search": "",
    "sort": "newest",
}


def default_state() -> dict[str, Any]:
    """Initial document shape used when the caller does not supply one."""
    return {
        "products": [],
        "categories": [],
        "store_settings": None,
        "shipping_states": [],
        "current_user": None,
        "cart": [],
        "filters": dict(DEFAULT_FILTERS),
        "ui": {"loading": False, "modals": {}, "notifications": []},
    }


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _same(current: Any, incoming: Any) -> bool:
    if current is incoming:
        return True
    try:
        return bool(current == incoming)
    except Exception:
        return False


def _get_nested(document: Mapping[str, Any], keys: list[str]) -> Any:
    current: Any = document
    for key in keys:
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


def _callback_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)


class StateStore:
    """Single mutable document with subscriptions, middleware and undo.

    Every :meth:`set_state` runs synchronously to completion: middleware,
    commit, subscriber notification and history bookkeeping all happen
    before it returns.
    """

    def __init__(
        self,
        initial_state: Mapping[str, Any] | None = None,
        *,
        max_history: int = c.DEFAULT_MAX_HISTORY,
        reporter: ErrorReporter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if max_history < 1:
            raise ValueError(f"max_history must be >= 1, got {max_history}")
        self._state: dict[str, Any] = copy.deepcopy(dict(initial_state)) if initial_state is not None else default_state()
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._middleware: list[Middleware] = []
        self._history: deque[HistoryEntry] = deque(maxlen=max_history)
        self._reporter = reporter or ErrorReporter()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_state(self, key: str | None = None) -> Any:
        """Deep copy of the whole document, or of slot *key* (``None`` if unknown)."""
        if key is None:
            return copy.deepcopy(self._state)
        return copy.deepcopy(self._state.get(key))

    @property
    def history(self) -> list[HistoryEntry]:
        """Deep copies of the recorded entries, oldest first."""
        return [entry.model_copy(deep=True) for entry in self._history]

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Call *callback(new, old)* whenever slot *key* changes; returns an unsubscribe callable."""
        callbacks = self._subscribers.setdefault(key, [])
        callbacks.append(callback)

        def _unsubscribe() -> None:
            registered = self._subscribers.get(key)
            if registered is not None and callback in registered:
                registered.remove(callback)

        return _unsubscribe

    def add_middleware(self, middleware: Middleware) -> Callable[[], None]:
        """Append *middleware* to the chain; returns a callable removing it."""
        self._middleware.append(middleware)

        def _remove() -> None:
            if middleware in self._middleware:
                self._middleware.remove(middleware)

        return _remove

    def _notify(self, key: str, new_value: Any, old_value: Any) -> None:
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(copy.deepcopy(new_value), copy.deepcopy(old_value))
            except Exception as exc:
                _logger.debug("State subscriber %s failed for key=%s", _callback_name(callback), key, exc_info=True)
                error = SubscriberError(f"Subscriber {_callback_name(callback)} failed for {key!r}: {exc}")
                error.__cause__ = exc
                self._reporter.report(error, "state-notification", {"key": key})

    def _run_middleware(
        self,
        changes: dict[str, dict[str, Any]],
        new_state: dict[str, Any],
        old_state: dict[str, Any],
        source: str,
    ) -> None:
        for middleware in list(self._middleware):
            try:
                middleware(copy.deepcopy(changes), copy.deepcopy(new_state), copy.deepcopy(old_state), source)
            except Exception as exc:
                _logger.debug("State middleware %s failed", _callback_name(middleware), exc_info=True)
                error = MiddlewareError(f"Middleware {_callback_name(middleware)} failed: {exc}")
                error.__cause__ = exc
                self._reporter.report(error, "state-middleware", {"source": source})

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_state(self, partial_update: Mapping[str, Any], source: str = "unknown") -> dict[str, Any]:
        """Merge *partial_update* into the document.

        Only slots whose value actually differs end up in ``changes`` and
        trigger subscribers.  Returns a deep copy of the committed state.
        """
        if not isinstance(partial_update, Mapping):
            raise DataLayerValidationError(f"State update must be a mapping, got {type(partial_update).__name__}")

        old_state = copy.deepcopy(self._state)
        new_state = dict(self._state)
        changes: dict[str, dict[str, Any]] = {}
        for key, value in partial_update.items():
            current = self._state.get(key, _MISSING)
            if current is not _MISSING and _same(current, value):
                continue
            new_value = copy.deepcopy(value)
            changes[key] = {"old": old_state.get(key), "new": new_value}
            new_state[key] = new_value

        self._run_middleware(changes, new_state, old_state, source)

        self._state = new_state
        for key, change in changes.items():
            self._notify(key, change["new"], change["old"])

        self._history.append(
            HistoryEntry(
                timestamp=self._clock(),
                old_state=old_state,
                new_state=copy.deepcopy(new_state),
                source=source,
            )
        )
        if changes:
            _logger.debug("State committed source=%s keys=%s", source, sorted(changes))
        return copy.deepcopy(self._state)

    def update_nested_state(self, path: str, value: Any, source: str = "unknown") -> dict[str, Any]:
        """Set the dot-delimited *path* to *value*, creating intermediate dicts."""
        keys = path.split(".") if isinstance(path, str) else []
        if not keys or any(not key for key in keys):
            raise DataLayerValidationError(f"Invalid state path: {path!r}")

        current = _get_nested(self._state, keys)
        if current is not _MISSING and _same(current, value):
            return copy.deepcopy(self._state)

        new_state = copy.deepcopy(self._state)
        target: dict[str, Any] = new_state
        for key in keys[:-1]:
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            target = child
        target[keys[-1]] = value
        return self.set_state(new_state, source)

    def undo(self) -> bool:
        """Roll back the last committed update.

        Needs at least two history entries.  Every top-level slot is
        re-announced to its subscribers, changed or not.
        """
        if len(self._history) < 2:
            return False

        previous = self._history[-2]
        self._state = copy.deepcopy(previous.new_state)
        self._history.pop()

        for key in list(self._state):
            self._notify(key, self._state[key], previous.old_state.get(key))
        _logger.debug("State undo restored snapshot from source=%s", previous.source)
        return True

    # ------------------------------------------------------------------
    # Slot helpers
    # ------------------------------------------------------------------

    def set_filter(self, name: str, value: Any) -> dict[str, Any]:
        filters = dict(self._state.get("filters") or {})
        filters[name] = value
        return self.set_state({"filters": filters}, "set-filter")

    def clear_filters(self) -> dict[str, Any]:
        return self.set_state({"filters": dict(DEFAULT_FILTERS)}, "clear-filters")

    def add_to_cart(self, item: Mapping[str, Any]) -> str:
        """Append *item* to the cart under a fresh line id, which is returned."""
        line_id = uuid.uuid4().hex
        cart = list(self._state.get("cart") or [])
        cart.append({**item, "line_id": line_id})
        self.set_state({"cart": cart}, "add-to-cart")
        return line_id

    def remove_from_cart(self, line_id: str) -> dict[str, Any]:
        cart = [item for item in self._state.get("cart") or [] if item.get("line_id") != line_id]
        return self.set_state({"cart": cart}, "remove-from-cart")

    def clear_cart(self) -> dict[str, Any]:
        return self.set_state({"cart": []}, "clear-cart")

    def set_loading(self, loading: bool) -> dict[str, Any]:
        return self.update_nested_state("ui.loading", loading, "set-loading")

    def _records(self, slot: str) -> list[Any]:
        current = self._state.get(slot)
        return list(current) if isinstance(current, list) else []

    def add_record(self, slot: str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Append *record* to the collection held in *slot*."""
        return self.set_state({slot: [*self._records(slot), dict(record)]}, "add-record")

    def update_record(self, slot: str, record_id: Any, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Merge *patch* into every record of *slot* whose ``id`` equals *record_id*."""
        records = [
            {**item, **patch} if isinstance(item, Mapping) and item.get("id") == record_id else item
            for item in self._records(slot)
        ]
        return self.set_state({slot: records}, "update-record")

    def remove_record(self, slot: str, record_id: Any) -> dict[str, Any]:
        records = [
            item for item in self._records(slot) if not (isinstance(item, Mapping) and item.get("id") == record_id)
        ]
        return self.set_state({slot: records}, "remove-record")

    def _modals(self) -> dict[str, Any]:
        current = _get_nested(self._state, ["ui", "modals"])
        return dict(current) if isinstance(current, Mapping) else {}

    def show_modal(self, modal_id: str, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Open modal *modal_id* under ``ui.modals`` with its payload."""
        modals = self._modals()
        modals[modal_id] = dict(data or {})
        return self.update_nested_state("ui.modals", modals, "show-modal")

    def hide_modal(self, modal_id: str) -> dict[str, Any]:
        modals = self._modals()
        modals.pop(modal_id, None)
        return self.update_nested_state("ui.modals", modals, "hide-modal")

    # ------------------------------------------------------------------
    # Persistence / housekeeping
    # ------------------------------------------------------------------

    def persisted_snapshot(self, *, timestamp: float) -> PersistedSnapshot:
        """The subset of the document that survives a restart."""
        return PersistedSnapshot(
            filters=copy.deepcopy(self._state.get("filters") or {}),
            cart=copy.deepcopy(self._state.get("cart") or []),
            timestamp=timestamp,
        )

    def restore(self, snapshot: PersistedSnapshot, *, now: float, max_age: float) -> bool:
        """Apply a persisted snapshot unless it is older than *max_age* seconds."""
        if snapshot.is_stale(now=now, max_age=max_age):
            _logger.debug("Ignoring persisted snapshot aged %.0fs", now - snapshot.timestamp)
            return False
        self.set_state(
            {
                "filters": snapshot.filters or self._state.get("filters"),
                "cart": snapshot.cart or self._state.get("cart"),
            },
            "restore-snapshot",
        )
        return True

    def stats(self) -> dict[str, int]:
        return {
            "state_size": len(json.dumps(self._state, default=str)),
            "subscribers_count": sum(len(callbacks) for callbacks in self._subscribers.values()),
            "middleware_count": len(self._middleware),
            "history_size": len(self._history),
        }

    def reset_observers(self) -> None:
        """Drop every subscriber, middleware and history entry; the document is kept."""
        self._subscribers.clear()
        self._middleware.clear()
        self._history.clear()
