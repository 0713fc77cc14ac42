"""Normalization helpers.

Centralizes defensive parsing and placeholder handling.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Placeholder strings upstream rows use for "not available".
_SENTINELS = frozenset({"", "--", "null"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1e11


def is_sentinel(value: Any) -> bool:
    """Return ``True`` for ``None`` and placeholder strings."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip() in _SENTINELS


def blank_sentinels(values: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *values* with placeholder strings replaced by ``None``.

    Keys are kept so that "present but empty" stays distinguishable from
    "missing".
    """
    return {key: (None if is_sentinel(value) else value) for key, value in values.items()}


def safe_float(value: Any) -> float | None:
    if is_sentinel(value) or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def coerce_coordinate(value: Any, *, name: str, limit: float) -> float | None:
    """Parse a latitude/longitude value.

    ``None`` passes through as "absent".  Anything else must be a finite
    number within ``-limit..limit``; otherwise :class:`ValueError` is raised.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got bool")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(result):
        raise ValueError(f"{name} must be finite, got {result}")
    if not -limit <= result <= limit:
        raise ValueError(f"{name} must be between {-limit} and {limit}, got {result}")
    return result


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an upstream timestamp to an aware UTC datetime.

    Accepts ISO-8601 strings (the backing store's ``timestamptz`` format),
    epoch seconds and epoch milliseconds.  Returns ``None`` for empty or
    unparseable values.
    """
    if is_sentinel(value) or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if isinstance(value, str):
        text = value.strip()
        numeric = safe_float(text)
        if numeric is not None:
            return _from_epoch(numeric)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


def _from_epoch(ts: float) -> datetime | None:
    if not math.isfinite(ts) or ts <= 0:
        return None
    if ts > _MS_THRESHOLD:
        ts /= 1000.0
    try:
        return datetime.fromtimestamp(ts, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None
