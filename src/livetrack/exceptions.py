"""Custom exception hierarchy for livetrack."""

from __future__ import annotations


class TrackingError(Exception):
    """Base exception for all livetrack errors."""


class TrackingConfigError(TrackingError):
    """Invalid or missing configuration."""


class TrackingValidationError(TrackingError):
    """Snapshot or change event is malformed or out of range.

    Raised by :meth:`LocationStore.initialize` for a bad snapshot.  Bad
    change events are dropped and logged instead of raised.
    """

    def __init__(self, message: str, *, entity_id: str | None = None) -> None:
        self.entity_id = entity_id
        super().__init__(message)


class TrackingChannelError(TrackingError):
    """Push channel could not be established or was dropped by the transport."""

    def __init__(self, message: str, *, entity_id: str | None = None) -> None:
        self.entity_id = entity_id
        super().__init__(message)


class TrackingFetchError(TrackingError):
    """Initial snapshot could not be loaded.

    Kept distinct from :class:`TrackingChannelError` so a consumer can tell
    "never loaded" apart from "was loaded, then lost live updates".
    """


class TrackingNotFoundError(TrackingFetchError):
    """The backing store has no record for the requested entity id."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"No record found for entity {entity_id!r}")


class TrackingTransportError(TrackingFetchError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)
