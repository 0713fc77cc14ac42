"""Map renderer boundary.

The map widget itself is an external collaborator.  This module defines the
contract it must satisfy and the adapter that turns store state into
render calls.
"""

from __future__ import annotations

import logging
from typing import Protocol

from livetrack.config import DEFAULT_CENTER
from livetrack.models.location import TrackedLocation
from livetrack.models.map_view import Coordinate, MapMarker, MapView

_logger = logging.getLogger(__name__)


class MapRenderer(Protocol):
    """Draws a viewport.  Re-invoked on every state change; keeps no state of its own."""

    def render(self, view: MapView) -> None:
        ...


def marker_label(state: TrackedLocation) -> str:
    return f"Order #{state.entity_id}\nStatus: {state.status_raw}"


def build_map_view(
    state: TrackedLocation | None,
    *,
    default_center: Coordinate = DEFAULT_CENTER,
    zoom: int = 13,
) -> MapView:
    """Project *state* onto the render contract.

    Without a state or without coordinates the neutral default view is
    returned: centered on *default_center*, no marker.
    """
    if state is None or state.position is None:
        return MapView(center=default_center, zoom=zoom)
    position = state.position
    return MapView(
        center=position,
        zoom=zoom,
        marker=MapMarker(position=position, label=marker_label(state)),
    )


class RendererBinding:
    """Store observer that re-renders on every change until disabled."""

    def __init__(
        self,
        renderer: MapRenderer,
        *,
        default_center: Coordinate = DEFAULT_CENTER,
        zoom: int = 13,
    ) -> None:
        self._renderer = renderer
        self._default_center = default_center
        self._zoom = zoom
        self._enabled = True

    @property
    def enabled(self) -> bool:
        return self._enabled

    def disable(self) -> None:
        self._enabled = False

    def render(self, state: TrackedLocation | None) -> None:
        if not self._enabled:
            return
        self._renderer.render(build_map_view(state, default_center=self._default_center, zoom=self._zoom))

    __call__ = render


class LoggingMapRenderer:
    """Renderer that writes each frame to a logger.  Handy for scripts and debugging."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self._logger = logger or _logger
        self._level = level

    def render(self, view: MapView) -> None:
        if view.marker is None:
            self._logger.log(self._level, "map center=%s zoom=%d (no marker)", view.center, view.zoom)
            return
        self._logger.log(
            self._level,
            "map center=%s zoom=%d marker=%r",
            view.center,
            view.zoom,
            view.marker.label,
        )
