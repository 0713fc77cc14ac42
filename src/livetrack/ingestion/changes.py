"""Change-feed ingestion helpers.

This module translates decoded change-feed payloads into normalized
location events.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from livetrack._constants import ROW_EVENT_TYPES
from livetrack.exceptions import TrackingValidationError
from livetrack.state.events import LocationEvent, LocationSource


class _ChangeEnvelope(BaseModel):
    """Minimal Pydantic envelope for row change records."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    event_type: str = Field(..., validation_alias=AliasChoices("eventType", "event_type", "type"))
    new: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("new", "record"))
    commit_timestamp: str | None = None


def extract_row(payload: dict[str, Any]) -> tuple[dict[str, Any], str | None] | None:
    """Pull the changed row out of a payload.

    Returns ``(row, commit_timestamp)`` or ``None`` when the payload is not
    a row insert/update (e.g. a delete).  A payload without an envelope is
    treated as the row itself.
    """
    if not any(key in payload for key in ("eventType", "event_type", "type")):
        return payload, None
    try:
        envelope = _ChangeEnvelope.model_validate(payload)
    except ValidationError:
        return None
    if envelope.event_type.upper() not in ROW_EVENT_TYPES or not envelope.new:
        return None
    return envelope.new, envelope.commit_timestamp


def build_event_from_change(*, entity_id: str, payload: dict[str, Any]) -> LocationEvent | None:
    """Build a location event from a change-feed payload.

    Returns ``None`` for payloads that carry no row update.

    Raises
    ------
    TrackingValidationError
        The row is malformed or its coordinates are out of range.
    """
    extracted = extract_row(payload)
    if extracted is None:
        return None
    row, commit_timestamp = extracted

    data = dict(row)
    data.setdefault("id", entity_id)
    # Fall back to the commit time when the row has no update timestamp.
    if commit_timestamp and data.get("updated_at") is None and data.get("updatedAt") is None:
        data["updated_at"] = commit_timestamp
    data["source"] = LocationSource.FEED
    data["raw"] = row

    try:
        return LocationEvent.model_validate(data)
    except ValidationError as exc:
        raise TrackingValidationError(
            f"Invalid change event: {exc.error_count()} error(s): {exc.errors()[0]['msg']}",
            entity_id=entity_id,
        ) from exc

