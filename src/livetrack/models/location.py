"""Tracked location model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator

from livetrack.ingestion.normalize import coerce_coordinate
from livetrack.models._base import TrackingBaseModel, TrackingEnum, UtcTimestamp


class OrderStatus(TrackingEnum):
    """Delivery status of an order.  Unknown upstream values map to ``UNKNOWN``."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"


LATITUDE_ALIASES = AliasChoices("latitude", "lat")
LONGITUDE_ALIASES = AliasChoices("longitude", "lng", "lon")
UPDATED_AT_ALIASES = AliasChoices("updated_at", "updatedAt")
ENTITY_ID_ALIASES = AliasChoices("entity_id", "id")


def coerce_status(value: Any) -> OrderStatus | None:
    if value is None:
        return None
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        raise ValueError(f"status must be a string, got {type(value).__name__}")
    return OrderStatus(value)


class LocationFields(TrackingBaseModel):
    """Coordinate handling shared by snapshots and change events.

    Coordinates are optional but must come as a pair; each present value
    must be a finite number within geographic range.
    """

    latitude: float | None = Field(default=None, validation_alias=LATITUDE_ALIASES)
    longitude: float | None = Field(default=None, validation_alias=LONGITUDE_ALIASES)

    @field_validator("latitude", mode="before")
    @classmethod
    def _check_latitude(cls, value: Any) -> float | None:
        return coerce_coordinate(value, name="latitude", limit=90.0)

    @field_validator("longitude", mode="before")
    @classmethod
    def _check_longitude(cls, value: Any) -> float | None:
        return coerce_coordinate(value, name="longitude", limit=180.0)

    @model_validator(mode="after")
    def _check_pair(self) -> LocationFields:
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be given together")
        return self

    @property
    def position(self) -> tuple[float, float] | None:
        """``(latitude, longitude)`` or ``None`` when no fix is known."""
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


class TrackedLocation(LocationFields):
    """Last-known state of one tracked order.

    Parameters
    ----------
    entity_id : str
        Order id.
    latitude : float or None
        Latitude in degrees; ``None`` until a courier position is known.
    longitude : float or None
        Longitude in degrees; ``None`` until a courier position is known.
    status : OrderStatus
        Delivery status.
    updated_at : datetime
        Row update time (UTC).
    raw : dict
        Row as received.
    """

    entity_id: str = Field(..., validation_alias=ENTITY_ID_ALIASES)
    # Both keys must be present in a snapshot, even when null.
    latitude: float | None = Field(..., validation_alias=LATITUDE_ALIASES)
    longitude: float | None = Field(..., validation_alias=LONGITUDE_ALIASES)
    status: OrderStatus
    updated_at: UtcTimestamp = Field(..., validation_alias=UPDATED_AT_ALIASES)

    @field_validator("entity_id", mode="before")
    @classmethod
    def _normalize_entity_id(cls, value: Any) -> str:
        if value is None:
            raise ValueError("entity_id must be non-empty")
        text = str(value).strip()
        if not text:
            raise ValueError("entity_id must be non-empty")
        return text

    @field_validator("status", mode="before")
    @classmethod
    def _check_status(cls, value: Any) -> OrderStatus | None:
        return coerce_status(value)

    @property
    def status_raw(self) -> str:
        """Status string as sent upstream (differs from ``status`` for unknown values)."""
        value = self.raw.get("status")
        if isinstance(value, str) and value.strip() and OrderStatus(value) is self.status:
            return value
        return self.status.value
