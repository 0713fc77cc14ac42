"""Deterministic state merge policy.

This module intentionally contains *no* payload parsing.  The
ingestion/Pydantic boundary is responsible for producing validated events.
"""

from __future__ import annotations

from datetime import datetime


def should_accept_update(
    *,
    current_updated_at: datetime | None,
    incoming_updated_at: datetime,
) -> bool:
    """Decide whether an incoming event should be applied.

    Policy: the whole event (position and status) is accepted only when it
    is strictly newer than the held state.  Equal timestamps are treated as
    replays and rejected.
    """
    if current_updated_at is None:
        return True
    return incoming_updated_at > current_updated_at
