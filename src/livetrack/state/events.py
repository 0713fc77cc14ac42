"""Normalized location events.

Snapshot reads and change-feed pushes are both converted into these
events. Only the state/store layer is allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from livetrack.models._base import UtcTimestamp
from livetrack.models.location import (
    ENTITY_ID_ALIASES,
    UPDATED_AT_ALIASES,
    LocationFields,
    OrderStatus,
    coerce_status,
)


class LocationSource(StrEnum):
    SNAPSHOT = "snapshot"
    FEED = "feed"


class LocationEvent(LocationFields):
    """A normalized update to apply to the location store.

    Coordinates and status are optional; ``updated_at`` is required so the
    store can enforce ordering.
    """

    entity_id: str = Field(..., validation_alias=ENTITY_ID_ALIASES, description="Order id")
    source: LocationSource = LocationSource.FEED
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: UtcTimestamp = Field(..., validation_alias=UPDATED_AT_ALIASES)
    status: OrderStatus | None = None

    @field_validator("entity_id", mode="before")
    @classmethod
    def _normalize_entity_id(cls, value: Any) -> str:
        text = "" if value is None else str(value).strip()
        if not text:
            raise ValueError("entity_id must be non-empty")
        return text

    @field_validator("status", mode="before")
    @classmethod
    def _check_status(cls, value: Any) -> OrderStatus | None:
        return coerce_status(value)

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_complete(self) -> bool:
        """Whether the event carries every field a fresh state needs."""
        return self.position is not None and self.status is not None
