"""Base model and enum for backing-store rows.

Every row model inherits from :class:`TrackingBaseModel` which provides:

* frozen, alias-aware configuration shared by snapshots and events.
* A ``model_validator(mode="before")`` that blanks placeholder strings
  (``""``, ``"--"``, ``"null"``) to ``None``.
* A ``raw`` dict that captures the original payload.

Status enums inherit from :class:`TrackingEnum` which adds an ``UNKNOWN``
member and a ``_missing_`` hook that returns ``UNKNOWN`` for any value
without a mapped member.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from livetrack.ingestion.normalize import blank_sentinels, parse_timestamp

UtcTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces ISO strings and epoch s/ms to UTC datetimes."""


class TrackingEnum(enum.StrEnum):
    """Base for upstream string enums.

    Every subclass **must** define ``UNKNOWN``.  Values upstream sends
    that have no mapped member resolve to ``UNKNOWN`` instead of raising.
    """

    @classmethod
    def _missing_(cls, value: object) -> TrackingEnum:
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        unknown: TrackingEnum = cls["UNKNOWN"]
        return unknown


class TrackingBaseModel(BaseModel):
    """Base for backing-store row models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, repr=False)
    """Original row as received."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Blank placeholder strings and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = blank_sentinels(values)
        # Keep the caller's raw= when constructing with kwargs.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
