"""High-level async client wiring the HTTP and MQTT adapters together."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from livetrack._mqtt import MqttChangeFeed
from livetrack._transport import RestSnapshotSource
from livetrack.config import TrackingConfig
from livetrack.exceptions import TrackingError
from livetrack.render import MapRenderer
from livetrack.tracker import LiveTracker, StatusCallback, TrackingHandle, TrackingView

_logger = logging.getLogger(__name__)


class TrackingClient:
    """Async client for live order tracking.

    Usage::

        async with TrackingClient(config, renderer=my_map) as client:
            handle = await client.observe_entity("order-1")
            ...
            handle.stop()
    """

    def __init__(
        self,
        config: TrackingConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        renderer: MapRenderer | None = None,
        on_status_change: StatusCallback | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._renderer = renderer
        self._on_status_change = on_status_change
        self._tracker: LiveTracker | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TrackingClient:
        loop = asyncio.get_running_loop()
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._tracker = LiveTracker(
            RestSnapshotSource(self._config, self._http_session),
            MqttChangeFeed(self._config, loop=loop, logger=_logger),
            renderer=self._renderer,
            reconnect=self._config.reconnect_policy(),
            default_center=self._config.default_center,
            zoom=self._config.map_zoom,
            on_status_change=self._on_status_change,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._tracker is not None:
            self._tracker.stop_all()
            self._tracker = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _require_tracker(self) -> LiveTracker:
        if self._tracker is None:
            raise TrackingError("Client not initialized. Use 'async with TrackingClient(...) as client:'")
        return self._tracker

    async def observe_entity(self, entity_id: str) -> TrackingHandle:
        """Start tracking one order.  See :meth:`LiveTracker.observe_entity`."""
        return await self._require_tracker().observe_entity(entity_id)

    def view(self) -> TrackingView:
        """Create a view that shows one order at a time."""
        return TrackingView(self._require_tracker())
