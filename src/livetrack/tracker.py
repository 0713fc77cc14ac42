"""Consumer-facing live tracking API.

``LiveTracker.observe_entity`` wires the three pieces together for one
order: snapshot read -> :class:`LocationStore` -> :class:`ChangeFeedSubscriber`,
with an optional :class:`MapRenderer` re-invoked on every store change.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum

from livetrack._mqtt import ChangeFeed
from livetrack._transport import SnapshotSource
from livetrack.config import DEFAULT_CENTER, ReconnectPolicy
from livetrack.exceptions import (
    TrackingChannelError,
    TrackingError,
    TrackingFetchError,
    TrackingValidationError,
)
from livetrack.models.location import TrackedLocation
from livetrack.models.map_view import Coordinate
from livetrack.render import MapRenderer, RendererBinding
from livetrack.state.events import LocationEvent
from livetrack.state.store import LocationStore
from livetrack.subscriber import ChangeFeedSubscriber, SubscriptionState

_logger = logging.getLogger(__name__)


class TrackingStatus(StrEnum):
    LOADING = "loading"
    LIVE = "live"
    CHANNEL_ERROR = "channel_error"
    STOPPED = "stopped"


StatusCallback = Callable[["TrackingHandle"], None]


class TrackingHandle:
    """Live view of one tracked order.

    Returned by :meth:`LiveTracker.observe_entity`.  ``current_state`` always
    holds the last-known-good state, also while the channel is down.  Call
    :meth:`stop` on every exit path of the owning scope.
    """

    def __init__(
        self,
        entity_id: str,
        *,
        store: LocationStore,
        feed: ChangeFeed,
        binding: RendererBinding | None,
        reconnect: ReconnectPolicy,
        on_status_change: StatusCallback | None = None,
        on_stop: Callable[[TrackingHandle], None] | None = None,
    ) -> None:
        self._entity_id = entity_id
        self._store = store
        self._subscriber = ChangeFeedSubscriber(feed, on_channel_lost=self._channel_lost)
        self._binding = binding
        self._reconnect = reconnect
        self._on_status_change = on_status_change
        self._on_stop = on_stop
        self._status = TrackingStatus.LOADING
        self._last_error: TrackingError | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._version = 0
        self._waiters: list[asyncio.Event] = []
        self._resume_lock = asyncio.Lock()
        self._removers = [store.add_observer(self._on_state)]
        if binding is not None:
            self._removers.append(store.add_observer(binding))

    @property
    def entity_id(self) -> str:
        return self._entity_id

    @property
    def current_state(self) -> TrackedLocation | None:
        return self._store.read()

    @property
    def status(self) -> TrackingStatus:
        return self._status

    @property
    def subscription_state(self) -> SubscriptionState:
        return self._subscriber.state

    @property
    def last_error(self) -> TrackingError | None:
        """Most recent channel error, if any."""
        return self._last_error

    @property
    def is_stopped(self) -> bool:
        return self._status == TrackingStatus.STOPPED

    def stop(self) -> None:
        """Tear down tracking.

        Detaches the change feed before returning, so no event delivered
        afterwards reaches the store or the renderer.
        """
        if self.is_stopped:
            return
        self._set_status(TrackingStatus.STOPPED)
        self._subscriber.detach()
        if self._binding is not None:
            self._binding.disable()
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()
        for remove in self._removers:
            remove()
        self._removers.clear()
        for waiter in self._waiters:
            waiter.set()
        if self._on_stop is not None:
            self._on_stop(self)
        _logger.debug("Tracking stopped entity=%s", self._entity_id)

    async def wait_for_update(self, timeout: float) -> bool:
        """Wait until the state changes; ``False`` on timeout or stop."""
        if self.is_stopped or timeout <= 0:
            return False
        baseline = self._version
        waiter = asyncio.Event()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter.wait(), timeout)
        except TimeoutError:
            return False
        finally:
            self._waiters = [cand for cand in self._waiters if cand is not waiter]
        return self._version != baseline

    async def resume(self) -> bool:
        """Attach the change feed, or re-attach it after a channel error.

        Returns ``True`` when the handle is live again.  Concurrent calls
        wait for the attach already in flight.
        """
        async with self._resume_lock:
            if self.is_stopped:
                return False
            if self._status == TrackingStatus.LIVE and self._subscriber.state is SubscriptionState.ATTACHED:
                return True
            try:
                await self._subscriber.attach(self._entity_id, self._apply_event)
            except TrackingChannelError as exc:
                self._channel_failed(exc)
                return False
            if self.is_stopped or self._subscriber.state is not SubscriptionState.ATTACHED:
                return False
            self._last_error = None
            self._set_status(TrackingStatus.LIVE)
            return True

    def _apply_event(self, event: LocationEvent) -> None:
        if self.is_stopped:
            return
        self._store.apply_update(event)

    def _on_state(self, _state: TrackedLocation) -> None:
        self._version += 1
        waiters = self._waiters
        self._waiters = []
        for waiter in waiters:
            waiter.set()

    def _set_status(self, status: TrackingStatus) -> None:
        if status == self._status:
            return
        self._status = status
        if self._on_status_change is not None:
            try:
                self._on_status_change(self)
            except Exception:
                _logger.warning("Status callback failed entity=%s", self._entity_id, exc_info=True)

    def _channel_failed(self, exc: TrackingChannelError) -> None:
        if self.is_stopped:
            return
        _logger.warning("Live updates unavailable entity=%s: %s", self._entity_id, exc)
        self._last_error = exc
        self._set_status(TrackingStatus.CHANNEL_ERROR)

    def _channel_lost(self, entity_id: str, exc: TrackingChannelError) -> None:
        if self.is_stopped or entity_id != self._entity_id:
            return
        self._channel_failed(exc)
        if self._reconnect.max_attempts <= 0:
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        for attempt in range(1, self._reconnect.max_attempts + 1):
            delay = self._reconnect.delay(attempt)
            _logger.debug("Reconnecting entity=%s attempt=%d in %.1fs", self._entity_id, attempt, delay)
            await asyncio.sleep(delay)
            if self.is_stopped:
                return
            if await self.resume():
                _logger.info("Change feed restored entity=%s attempt=%d", self._entity_id, attempt)
                return
        _logger.warning(
            "Giving up reconnecting entity=%s after %d attempts",
            self._entity_id,
            self._reconnect.max_attempts,
        )


class LiveTracker:
    """Builds tracking handles from injected backing-service collaborators.

    Parameters
    ----------
    snapshot_source : SnapshotSource
        Point read of one row by id.
    change_feed : ChangeFeed
        Subscribe-by-id push channel.
    renderer : MapRenderer or None
        Map widget re-invoked on every state change.
    reconnect : ReconnectPolicy
        Backoff used after a channel is lost.
    default_center, zoom
        Map defaults for the neutral view.
    on_status_change : callable or None
        Called with the handle whenever its status changes.
    """

    def __init__(
        self,
        snapshot_source: SnapshotSource,
        change_feed: ChangeFeed,
        *,
        renderer: MapRenderer | None = None,
        reconnect: ReconnectPolicy | None = None,
        default_center: Coordinate = DEFAULT_CENTER,
        zoom: int = 13,
        on_status_change: StatusCallback | None = None,
    ) -> None:
        self._source = snapshot_source
        self._feed = change_feed
        self._renderer = renderer
        self._reconnect = reconnect or ReconnectPolicy()
        self._default_center = default_center
        self._zoom = zoom
        self._on_status_change = on_status_change
        self._handles: set[TrackingHandle] = set()

    @property
    def active_handles(self) -> frozenset[TrackingHandle]:
        return frozenset(self._handles)

    async def observe_entity(
        self,
        entity_id: str,
        *,
        still_relevant: Callable[[], bool] | None = None,
        on_created: Callable[[TrackingHandle], None] | None = None,
    ) -> TrackingHandle:
        """Start tracking *entity_id*.

        The snapshot is loaded and rendered before this returns.  A channel
        failure does not raise; the handle reports ``channel_error`` and
        keeps the snapshot.  When *still_relevant* returns ``False`` once the
        snapshot arrives, the snapshot is discarded and the handle is
        returned already stopped.  *on_created* receives the handle before
        any I/O starts, so the caller can stop it while this call is still
        pending.

        Raises
        ------
        TrackingNotFoundError
            No row exists for *entity_id*; no subscription is attempted.
        TrackingFetchError
            The snapshot could not be loaded or failed validation.
        """
        entity_id = entity_id.strip()
        if not entity_id:
            raise ValueError("entity_id must be non-empty")

        store = LocationStore(entity_id)
        binding = None
        if self._renderer is not None:
            binding = RendererBinding(self._renderer, default_center=self._default_center, zoom=self._zoom)

        handle = TrackingHandle(
            entity_id,
            store=store,
            feed=self._feed,
            binding=binding,
            reconnect=self._reconnect,
            on_status_change=self._on_status_change,
            on_stop=self._handles.discard,
        )
        self._handles.add(handle)

        try:
            if on_created is not None:
                on_created(handle)
            await self._load_snapshot(handle, store, still_relevant)
        except BaseException:
            handle.stop()
            raise
        if handle.is_stopped:
            return handle

        try:
            await handle.resume()
        except asyncio.CancelledError:
            handle.stop()
            raise
        return handle

    async def _load_snapshot(
        self,
        handle: TrackingHandle,
        store: LocationStore,
        still_relevant: Callable[[], bool] | None,
    ) -> None:
        entity_id = handle.entity_id
        try:
            row = await self._source.fetch_snapshot(entity_id)
        except TrackingFetchError:
            raise
        except Exception as exc:
            raise TrackingFetchError(f"Failed to fetch snapshot for {entity_id!r}: {exc}") from exc

        # Stopped while the read was in flight: the result is no longer relevant.
        if handle.is_stopped:
            _logger.debug("Discarding late snapshot entity=%s", entity_id)
            return
        if still_relevant is not None and not still_relevant():
            _logger.debug("Discarding superseded snapshot entity=%s", entity_id)
            handle.stop()
            return

        try:
            store.initialize(row)
        except TrackingValidationError as exc:
            raise TrackingFetchError(f"Invalid snapshot for {entity_id!r}: {exc}") from exc

    def stop_all(self) -> None:
        """Stop every live handle."""
        for handle in list(self._handles):
            handle.stop()


class TrackingView:
    """Shows one order at a time, switching cleanly between ids.

    Switching stops the previous handle before the new snapshot is
    requested, and a slow load for an id that has since been replaced is
    discarded instead of displayed.  A handle still being set up by an
    unfinished :meth:`show` is stopped by :meth:`close` as well.
    """

    def __init__(self, tracker: LiveTracker) -> None:
        self._tracker = tracker
        self._handle: TrackingHandle | None = None
        self._pending: TrackingHandle | None = None
        self._token = 0

    @property
    def handle(self) -> TrackingHandle | None:
        return self._handle

    async def show(self, entity_id: str) -> TrackingHandle | None:
        """Track *entity_id*, replacing whatever was shown.

        Returns ``None`` when another :meth:`show` or :meth:`close` superseded
        this call before it finished.
        """
        current = self._handle
        if current is not None and current.entity_id == entity_id.strip() and not current.is_stopped:
            return current

        self.close()
        token = self._token

        def _created(created: TrackingHandle) -> None:
            if token == self._token:
                self._pending = created

        try:
            handle = await self._tracker.observe_entity(
                entity_id,
                still_relevant=lambda: token == self._token,
                on_created=_created,
            )
        finally:
            if token == self._token:
                self._pending = None
        if token != self._token or handle.is_stopped:
            handle.stop()
            return None
        self._handle = handle
        return handle

    def close(self) -> None:
        """Stop the shown handle and invalidate any in-flight :meth:`show`."""
        self._token += 1
        for handle in (self._pending, self._handle):
            if handle is not None:
                handle.stop()
        self._pending = None
        self._handle = None
