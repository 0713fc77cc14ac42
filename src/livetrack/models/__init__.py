"""Data models for tracked rows and map views."""

from livetrack.models._base import TrackingBaseModel, TrackingEnum, UtcTimestamp
from livetrack.models.location import LocationFields, OrderStatus, TrackedLocation
from livetrack.models.map_view import MapMarker, MapView

__all__ = [
    "LocationFields",
    "MapMarker",
    "MapView",
    "OrderStatus",
    "TrackedLocation",
    "TrackingBaseModel",
    "TrackingEnum",
    "UtcTimestamp",
]
