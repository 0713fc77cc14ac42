"""Redaction of order rows and change records before they are logged."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

# Request credentials plus the customer contact columns of an order row.
_REDACTED_KEYS = frozenset(
    {
        "apikey",
        "api_key",
        "authorization",
        "password",
        "email",
        "phone",
        "delivery_address",
    }
)

_MAX_DEPTH = 4


def redact_for_log(value: Any, *, max_string: int = 256) -> Any:
    """Return a copy of a decoded JSON value that is safe to log.

    Sensitive keys are masked at any nesting level (a change record nests
    the row under ``new``), long strings are shortened and anything
    deeper than a change record is summarized.
    """
    return _redact(value, max_string, 0)


def _redact(value: Any, max_string: int, depth: int) -> Any:
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, Mapping):
        if depth >= _MAX_DEPTH:
            return f"<object:{len(value)} keys>"
        return {
            key: "<redacted>" if str(key).lower() in _REDACTED_KEYS else _redact(item, max_string, depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, list):
        if depth >= _MAX_DEPTH:
            return f"<list:{len(value)} items>"
        return [_redact(item, max_string, depth + 1) for item in value]
    return value
