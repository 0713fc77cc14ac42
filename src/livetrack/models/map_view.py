"""Map render contract models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

Coordinate = tuple[float, float]


class MapMarker(BaseModel):
    """Single marker drawn on the map."""

    model_config = ConfigDict(frozen=True)

    position: Coordinate
    label: str


class MapView(BaseModel):
    """Everything a map widget needs to draw one frame.

    Parameters
    ----------
    center : tuple of float
        ``(latitude, longitude)`` of the viewport center.
    zoom : int
        Zoom level.
    marker : MapMarker or None
        Zero or one marker.
    """

    model_config = ConfigDict(frozen=True)

    center: Coordinate
    zoom: int = 13
    marker: MapMarker | None = None
