"""Change feed subscriber.

Bridges a push channel scoped to one entity id into location events and
owns the subscription lifecycle::

    unattached -> attaching -> attached -> detaching -> unattached
                  attaching -> unattached   (open failure)

Every attach takes a fresh generation number and the channel callbacks
close over it.  ``detach`` bumps the generation, so anything the transport
delivers late for a torn-down channel is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from livetrack._mqtt import ChangeFeed, FeedChannel
from livetrack._redact import redact_for_log
from livetrack.exceptions import TrackingChannelError, TrackingValidationError
from livetrack.ingestion.changes import build_event_from_change
from livetrack.state.events import LocationEvent

_logger = logging.getLogger(__name__)

EventCallback = Callable[[LocationEvent], None]
ChannelLostCallback = Callable[[str, TrackingChannelError], None]


class SubscriptionState(StrEnum):
    UNATTACHED = "unattached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"


class ChangeFeedSubscriber:
    """Keeps at most one live channel and forwards its events in delivery order."""

    def __init__(
        self,
        feed: ChangeFeed,
        *,
        on_channel_lost: ChannelLostCallback | None = None,
    ) -> None:
        self._feed = feed
        self._on_channel_lost = on_channel_lost
        self._state = SubscriptionState.UNATTACHED
        self._entity_id: str | None = None
        self._on_event: EventCallback | None = None
        self._channel: FeedChannel | None = None
        self._generation = 0

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def entity_id(self) -> str | None:
        """Entity id of the current (attaching or attached) subscription."""
        return self._entity_id

    async def attach(self, entity_id: str, on_event: EventCallback) -> None:
        """Open a channel for *entity_id*.

        A no-op when already attached (or attaching) to the same id.  Any
        subscription to a different id is detached first.

        Raises
        ------
        TrackingChannelError
            The transport could not establish the channel.  The subscriber
            is left unattached; retrying is up to the caller.
        """
        entity_id = entity_id.strip()
        if not entity_id:
            raise ValueError("entity_id must be non-empty")

        if self._entity_id == entity_id and self._state in (
            SubscriptionState.ATTACHING,
            SubscriptionState.ATTACHED,
        ):
            return

        self.detach()

        self._generation += 1
        generation = self._generation
        self._state = SubscriptionState.ATTACHING
        self._entity_id = entity_id
        self._on_event = on_event
        _logger.debug("Attaching change feed entity=%s generation=%d", entity_id, generation)

        def _on_payload(payload: dict[str, Any]) -> None:
            self._deliver(generation, entity_id, payload)

        def _on_lost(reason: str) -> None:
            self._lost(generation, entity_id, reason)

        try:
            channel = await self._feed.open(entity_id, on_payload=_on_payload, on_lost=_on_lost)
        except (TrackingChannelError, asyncio.CancelledError):
            self._abandon(generation)
            raise
        except Exception as exc:
            self._abandon(generation)
            raise TrackingChannelError(f"Could not open channel: {exc}", entity_id=entity_id) from exc

        if generation != self._generation:
            # Detached (or re-attached elsewhere) while the open was in flight.
            _logger.debug("Discarding channel opened for stale subscription entity=%s", entity_id)
            self._close_quietly(channel, entity_id)
            return

        self._channel = channel
        self._state = SubscriptionState.ATTACHED
        _logger.debug("Change feed attached entity=%s", entity_id)

    def detach(self) -> None:
        """Release the current channel.  A no-op when not attached."""
        if self._state == SubscriptionState.UNATTACHED:
            return

        entity_id = self._entity_id
        self._generation += 1
        channel = self._channel
        self._channel = None
        self._state = SubscriptionState.DETACHING
        try:
            if channel is not None:
                self._close_quietly(channel, entity_id)
        finally:
            self._state = SubscriptionState.UNATTACHED
            self._entity_id = None
            self._on_event = None
            _logger.debug("Change feed detached entity=%s", entity_id)

    def _abandon(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._state = SubscriptionState.UNATTACHED
        self._entity_id = None
        self._on_event = None

    @staticmethod
    def _close_quietly(channel: FeedChannel, entity_id: str | None) -> None:
        try:
            channel.close()
        except Exception:
            _logger.warning("Closing change feed channel failed entity=%s", entity_id, exc_info=True)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._state in (
            SubscriptionState.ATTACHING,
            SubscriptionState.ATTACHED,
        )

    def _deliver(self, generation: int, entity_id: str, payload: dict[str, Any]) -> None:
        if not self._is_current(generation):
            _logger.debug("Discarded late change event for detached subscription entity=%s", entity_id)
            return

        try:
            event = build_event_from_change(entity_id=entity_id, payload=payload)
        except TrackingValidationError as exc:
            _logger.warning(
                "Dropped invalid change event entity=%s: %s payload=%s",
                entity_id,
                exc,
                redact_for_log(payload),
            )
            return
        if event is None:
            _logger.debug("Ignored non-row change event entity=%s", entity_id)
            return
        if event.entity_id != entity_id:
            _logger.warning(
                "Dropped change event for entity=%s on channel for entity=%s",
                event.entity_id,
                entity_id,
            )
            return

        callback = self._on_event
        if callback is None:
            return
        try:
            callback(event)
        except Exception:
            _logger.warning("Change event handler failed entity=%s", entity_id, exc_info=True)

    def _lost(self, generation: int, entity_id: str, reason: str) -> None:
        if not self._is_current(generation):
            return
        _logger.warning("Change feed lost entity=%s reason=%s", entity_id, reason)
        self.detach()
        if self._on_channel_lost is not None:
            self._on_channel_lost(entity_id, TrackingChannelError(f"Channel lost: {reason}", entity_id=entity_id))
