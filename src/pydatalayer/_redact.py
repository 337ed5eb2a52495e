"""Helpers for safe debug logging.

Error contexts and remote payloads may carry API keys, bearer tokens and
customer details. This module redacts such fields before they are logged or
handed to error listeners.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Set
from typing import Any

from pydantic import BaseModel

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "cookie",
        "phone",
        "email",
    }
)

_MAX_DEPTH = 20
_REDACTED = "<redacted>"

# Credentials embedded in free text, e.g. an error message echoing a header or query string.
_INLINE_CREDENTIAL = re.compile(r"(?i)\b(bearer\s+|apikey=|api_key=)[^\s,;&\"']+")


def _redact_text(text: str, max_string: int) -> str:
    text = _INLINE_CREDENTIAL.sub(rf"\1{_REDACTED}", text)
    if len(text) > max_string:
        return f"{text[:max_string]}…<truncated>"
    return text


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted, JSON-friendly copy of *value* for logs and error reports.

    Pydantic models (cache entries, remote responses, snapshots) are dumped
    first, so their fields are redacted like any other mapping.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    def _walk(item: Any) -> Any:
        return redact_for_log(item, max_string=max_string, _depth=_depth + 1)

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _redact_text(value, max_string)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, BaseModel):
        return _walk(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(k): _REDACTED if str(k).lower() in _SENSITIVE_VALUE_KEYS else _walk(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_walk(item) for item in value]
    if isinstance(value, Set):
        return sorted((_walk(item) for item in value), key=repr)
    # Unknown objects are summarised, never dumped.
    return repr(value)
