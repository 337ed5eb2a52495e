"""Error sink shared by the orchestrator and the state store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pydatalayer._constants import CRITICAL_ERROR_KEYWORDS
from pydatalayer._redact import redact_for_log

_logger = logging.getLogger(__name__)

ErrorListener = Callable[["ErrorInfo"], None]


class ErrorInfo(BaseModel):
    """Descriptor of a failure that was handled inside the data layer."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(..., description="Exception class name, e.g. 'TransientRemoteError'")
    message: str
    kind: str = Field("general", description="Where the error was caught, e.g. 'remote' or 'state-middleware'")
    context: dict[str, Any] = Field(default_factory=dict)
    critical: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


def _is_critical(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in CRITICAL_ERROR_KEYWORDS)


class ErrorReporter:
    """Collects handled errors and fans them out to listeners.

    Listeners are the hook for the surrounding application (toast
    notifications, crash reporting); a listener that raises is logged and
    skipped.
    """

    def __init__(self) -> None:
        self._listeners: list[ErrorListener] = []

    def on_error(self, listener: ErrorListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it again."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def report(self, error: BaseException | str, kind: str = "general", context: dict[str, Any] | None = None) -> ErrorInfo:
        """Record *error* and notify listeners."""
        if isinstance(error, BaseException):
            code = type(error).__name__
            message = str(error) or code
        else:
            code = "Error"
            message = error
        info = ErrorInfo(
            code=code,
            message=message,
            kind=kind,
            context=redact_for_log(context or {}),
            critical=_is_critical(message),
        )

        if info.critical:
            _logger.warning("Critical %s error %s: %s context=%s", kind, code, message, info.context)
        else:
            _logger.debug("Handled %s error %s: %s context=%s", kind, code, message, info.context)

        for listener in list(self._listeners):
            try:
                listener(info)
            except Exception:
                _logger.debug("Error listener failed", exc_info=True)
        return info
