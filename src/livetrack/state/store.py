"""In-memory location store.

This is the only component allowed to merge snapshots and change events.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError

from livetrack._redact import redact_for_log
from livetrack.exceptions import TrackingValidationError
from livetrack.models.location import TrackedLocation
from livetrack.state.events import LocationEvent
from livetrack.state.policy import should_accept_update

_logger = logging.getLogger(__name__)

Observer = Callable[[TrackedLocation], None]


def _summarize(exc: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc']) or '<row>'}: {err['msg']}" for err in exc.errors())


class LocationStore:
    """Last-known state of one tracked order.

    The store is owned by exactly one consumer.  Snapshots are applied
    unconditionally through :meth:`initialize`; change events go through
    :meth:`apply_update`, which validates, enforces ``updated_at`` ordering
    and never raises.
    """

    def __init__(self, entity_id: str | None = None) -> None:
        self._entity_id = entity_id
        self._state: TrackedLocation | None = None
        self._observers: list[Observer] = []

    @property
    def entity_id(self) -> str | None:
        return self._entity_id

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    def read(self) -> TrackedLocation | None:
        """Current state, or ``None`` when not yet initialized."""
        return self._state

    def add_observer(self, observer: Observer) -> Callable[[], None]:
        """Register *observer*; returns a callable that unregisters it."""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def initialize(self, snapshot: TrackedLocation | Mapping[str, Any]) -> TrackedLocation:
        """Replace the state with a just-fetched snapshot.

        Raises
        ------
        TrackingValidationError
            The snapshot lacks required fields or carries invalid values.
        """
        if isinstance(snapshot, TrackedLocation):
            state = snapshot
        else:
            data = dict(snapshot)
            if self._entity_id is not None and "id" not in data:
                data.setdefault("entity_id", self._entity_id)
            try:
                state = TrackedLocation.model_validate(data)
            except ValidationError as exc:
                raise TrackingValidationError(
                    f"Invalid snapshot: {_summarize(exc)}",
                    entity_id=self._entity_id,
                ) from exc

        if self._entity_id is not None and state.entity_id != self._entity_id:
            raise TrackingValidationError(
                f"Snapshot is for {state.entity_id!r}, store tracks {self._entity_id!r}",
                entity_id=self._entity_id,
            )

        self._entity_id = state.entity_id
        self._state = state
        _logger.debug("Location store initialized entity=%s updated_at=%s", state.entity_id, state.updated_at)
        self._notify(state)
        return state

    def apply_update(self, event: LocationEvent | Mapping[str, Any]) -> bool:
        """Apply a change event if it is valid and newer than the held state.

        Returns ``True`` when the state changed.  Invalid, stale and
        mismatched events are dropped with a diagnostic.
        """
        if not isinstance(event, LocationEvent):
            data = dict(event)
            if self._entity_id is not None and "id" not in data:
                data.setdefault("entity_id", self._entity_id)
            try:
                event = LocationEvent.model_validate(data)
            except ValidationError as exc:
                _logger.warning(
                    "Dropped invalid location update entity=%s: %s payload=%s",
                    self._entity_id,
                    _summarize(exc),
                    redact_for_log(data),
                )
                return False

        if self._entity_id is not None and event.entity_id != self._entity_id:
            _logger.warning(
                "Dropped location update for entity=%s; store tracks entity=%s",
                event.entity_id,
                self._entity_id,
            )
            return False

        current = self._state
        if not should_accept_update(
            current_updated_at=current.updated_at if current is not None else None,
            incoming_updated_at=event.updated_at,
        ):
            _logger.debug(
                "Ignored stale location update entity=%s incoming=%s held=%s",
                event.entity_id,
                event.updated_at,
                current.updated_at if current is not None else None,
            )
            return False

        if current is None:
            if not event.is_complete:
                _logger.warning(
                    "Dropped partial location update before initialization entity=%s",
                    event.entity_id,
                )
                return False
            updated = TrackedLocation(
                entity_id=event.entity_id,
                latitude=event.latitude,
                longitude=event.longitude,
                status=event.status,
                updated_at=event.updated_at,
                raw=event.raw,
            )
        else:
            # Merge rows so fields a partial push omits, like the upstream status text, survive.
            patch: dict[str, Any] = {"updated_at": event.updated_at, "raw": {**current.raw, **event.raw}}
            if event.position is not None:
                patch["latitude"] = event.latitude
                patch["longitude"] = event.longitude
            if event.status is not None:
                patch["status"] = event.status
            updated = current.model_copy(update=patch)

        self._entity_id = updated.entity_id
        self._state = updated
        _logger.debug(
            "Applied %s location update entity=%s position=%s status=%s",
            event.source,
            updated.entity_id,
            updated.position,
            updated.status,
        )
        self._notify(updated)
        return True

    def _notify(self, state: TrackedLocation) -> None:
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                _logger.warning("Location observer failed entity=%s", state.entity_id, exc_info=True)
