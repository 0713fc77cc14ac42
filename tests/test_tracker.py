from __future__ import annotations

import asyncio
from typing import Any

import pytest

from livetrack.config import DEFAULT_CENTER, ReconnectPolicy
from livetrack.exceptions import (
    TrackingChannelError,
    TrackingFetchError,
    TrackingNotFoundError,
    TrackingTransportError,
)
from livetrack.models.location import OrderStatus
from livetrack.subscriber import SubscriptionState
from livetrack.tracker import LiveTracker, TrackingHandle, TrackingStatus, TrackingView


def _push(feed: Any, entity_id: str, updated_at: int, **fields: Any) -> None:
    feed.latest(entity_id).push({"eventType": "UPDATE", "new": {"id": entity_id, "updated_at": updated_at, **fields}})


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _tracker(source: Any, feed: Any, renderer: Any = None, **kwargs: Any) -> LiveTracker:
    kwargs.setdefault("reconnect", ReconnectPolicy(initial_delay=0.0, max_delay=0.0, max_attempts=3))
    return LiveTracker(source, feed, renderer=renderer, **kwargs)


@pytest.mark.asyncio
async def test_snapshot_then_live_update_then_invalid_update(source: Any, feed: Any, renderer: Any) -> None:
    tracker = _tracker(source, feed, renderer)

    handle = await tracker.observe_entity("order-1")

    assert handle.status is TrackingStatus.LIVE
    assert handle.subscription_state is SubscriptionState.ATTACHED
    assert handle.current_state is not None
    assert handle.current_state.position == (12.9, 77.5)
    assert len(renderer.views) == 1
    first = renderer.views[0]
    assert first.center == (12.9, 77.5)
    assert first.marker is not None
    assert first.marker.label == "Order #order-1\nStatus: accepted"

    _push(feed, "order-1", 150, latitude=12.95, longitude=77.55, status="in_transit")

    assert handle.current_state.position == (12.95, 77.55)
    assert handle.current_state.status is OrderStatus.IN_TRANSIT
    assert len(renderer.views) == 2
    assert renderer.views[1].marker is not None
    assert renderer.views[1].marker.label == "Order #order-1\nStatus: in_transit"

    _push(feed, "order-1", 160, latitude=12.95, longitude=200.0)

    assert handle.current_state.position == (12.95, 77.55)
    assert len(renderer.views) == 2

    handle.stop()


@pytest.mark.asyncio
async def test_stale_push_is_not_rendered(source: Any, feed: Any, renderer: Any) -> None:
    tracker = _tracker(source, feed, renderer)
    handle = await tracker.observe_entity("order-1")

    _push(feed, "order-1", 90, latitude=1.0, longitude=1.0, status="delivered")

    assert handle.current_state is not None
    assert handle.current_state.status is OrderStatus.ACCEPTED
    assert len(renderer.views) == 1
    handle.stop()


@pytest.mark.asyncio
async def test_stop_releases_channel_and_ignores_late_events(source: Any, feed: Any, renderer: Any) -> None:
    tracker = _tracker(source, feed, renderer)
    handle = await tracker.observe_entity("order-1")
    channel = feed.latest("order-1")
    before = handle.current_state

    handle.stop()
    channel.push({"eventType": "UPDATE", "new": {"id": "order-1", "updated_at": 999, "status": "delivered"}})

    assert channel.closed is True
    assert handle.is_stopped
    assert handle.subscription_state is SubscriptionState.UNATTACHED
    assert handle.current_state is before
    assert len(renderer.views) == 1
    assert tracker.active_handles == frozenset()

    handle.stop()


@pytest.mark.asyncio
async def test_missing_entity_raises_without_subscribing(source: Any, feed: Any, renderer: Any) -> None:
    tracker = _tracker(source, feed, renderer)

    with pytest.raises(TrackingNotFoundError):
        await tracker.observe_entity("order-404")

    assert feed.open_calls == []
    assert renderer.views == []
    assert tracker.active_handles == frozenset()


@pytest.mark.asyncio
async def test_transport_failure_surfaces_as_fetch_error(source: Any, feed: Any) -> None:
    source.error = TrackingTransportError("HTTP 503 from /rest/v1/orders", status_code=503)
    tracker = _tracker(source, feed)

    with pytest.raises(TrackingFetchError) as excinfo:
        await tracker.observe_entity("order-1")

    assert excinfo.value is source.error
    assert feed.open_calls == []


@pytest.mark.asyncio
async def test_unexpected_source_failure_is_wrapped(source: Any, feed: Any) -> None:
    source.error = RuntimeError("socket closed")
    tracker = _tracker(source, feed)

    with pytest.raises(TrackingFetchError) as excinfo:
        await tracker.observe_entity("order-1")

    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_invalid_snapshot_is_a_fetch_error(source: Any, feed: Any) -> None:
    source.rows["order-3"] = {"id": "order-3", "latitude": 12.9, "longitude": 77.5, "updated_at": 100}
    tracker = _tracker(source, feed)

    with pytest.raises(TrackingFetchError):
        await tracker.observe_entity("order-3")

    assert feed.open_calls == []


@pytest.mark.asyncio
async def test_snapshot_without_position_renders_default_view(source: Any, feed: Any, renderer: Any) -> None:
    source.rows["order-5"] = {
        "id": "order-5",
        "latitude": None,
        "longitude": None,
        "status": "pending",
        "updated_at": 100,
    }
    tracker = _tracker(source, feed, renderer)

    handle = await tracker.observe_entity("order-5")

    assert renderer.views[0].center == DEFAULT_CENTER
    assert renderer.views[0].marker is None
    handle.stop()


@pytest.mark.asyncio
async def test_channel_failure_keeps_snapshot_and_can_resume(source: Any, feed: Any, renderer: Any) -> None:
    feed.failures = 1
    tracker = _tracker(source, feed, renderer)

    handle = await tracker.observe_entity("order-1")

    assert handle.status is TrackingStatus.CHANNEL_ERROR
    assert isinstance(handle.last_error, TrackingChannelError)
    assert handle.current_state is not None
    assert handle.current_state.position == (12.9, 77.5)
    assert len(renderer.views) == 1

    assert await handle.resume() is True
    assert handle.status is TrackingStatus.LIVE
    assert handle.last_error is None
    handle.stop()


@pytest.mark.asyncio
async def test_lost_channel_reconnects_with_backoff(source: Any, feed: Any) -> None:
    statuses: list[TrackingStatus] = []
    tracker = _tracker(source, feed, on_status_change=lambda h: statuses.append(h.status))
    handle = await tracker.observe_entity("order-1")

    feed.failures = 1
    feed.latest("order-1").drop("connection reset")
    assert handle.status is TrackingStatus.CHANNEL_ERROR

    await _settle()

    assert handle.status is TrackingStatus.LIVE
    assert feed.open_calls == ["order-1", "order-1", "order-1"]
    assert statuses == [TrackingStatus.LIVE, TrackingStatus.CHANNEL_ERROR, TrackingStatus.LIVE]

    _push(feed, "order-1", 150, status="in_transit")
    assert handle.current_state is not None
    assert handle.current_state.status is OrderStatus.IN_TRANSIT
    handle.stop()


@pytest.mark.asyncio
async def test_reconnect_gives_up_after_max_attempts(source: Any, feed: Any) -> None:
    tracker = _tracker(source, feed, reconnect=ReconnectPolicy(initial_delay=0.0, max_delay=0.0, max_attempts=2))
    handle = await tracker.observe_entity("order-1")

    feed.failures = 10
    feed.latest("order-1").drop()
    await _settle()

    assert handle.status is TrackingStatus.CHANNEL_ERROR
    assert len(feed.open_calls) == 3
    assert handle.current_state is not None
    handle.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_reconnect(source: Any, feed: Any) -> None:
    tracker = _tracker(source, feed, reconnect=ReconnectPolicy(initial_delay=60.0, max_delay=60.0, max_attempts=3))
    handle = await tracker.observe_entity("order-1")

    feed.latest("order-1").drop()
    await _settle(3)
    handle.stop()
    await _settle(3)

    assert handle.status is TrackingStatus.STOPPED
    assert feed.open_calls == ["order-1"]


@pytest.mark.asyncio
async def test_disabled_reconnect_stays_in_channel_error(source: Any, feed: Any) -> None:
    tracker = _tracker(source, feed, reconnect=ReconnectPolicy(max_attempts=0))
    handle = await tracker.observe_entity("order-1")

    feed.latest("order-1").drop()
    await _settle()

    assert handle.status is TrackingStatus.CHANNEL_ERROR
    assert feed.open_calls == ["order-1"]
    handle.stop()


@pytest.mark.asyncio
async def test_wait_for_update(source: Any, feed: Any) -> None:
    tracker = _tracker(source, feed)
    handle = await tracker.observe_entity("order-1")

    waiter = asyncio.create_task(handle.wait_for_update(1.0))
    await asyncio.sleep(0)
    _push(feed, "order-1", 150, status="delivered")
    assert await waiter is True

    assert await handle.wait_for_update(0.01) is False
    handle.stop()
    assert await handle.wait_for_update(1.0) is False


@pytest.mark.asyncio
async def test_cancelled_observe_leaves_nothing_running(source: Any, feed: Any) -> None:
    source.gates["order-1"] = asyncio.Event()
    tracker = _tracker(source, feed)

    task = asyncio.create_task(tracker.observe_entity("order-1"))
    await _settle(3)
    assert len(tracker.active_handles) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert tracker.active_handles == frozenset()
    assert feed.open_calls == []


@pytest.mark.asyncio
async def test_stop_all(source: Any, feed: Any) -> None:
    tracker = _tracker(source, feed)
    first = await tracker.observe_entity("order-1")
    second = await tracker.observe_entity("order-2")

    tracker.stop_all()

    assert first.is_stopped and second.is_stopped
    assert all(channel.closed for channel in feed.channels)


@pytest.mark.asyncio
async def test_failing_status_callback_is_isolated(source: Any, feed: Any) -> None:
    def _boom(_handle: TrackingHandle) -> None:
        raise RuntimeError("ui gone")

    tracker = _tracker(source, feed, on_status_change=_boom)
    handle = await tracker.observe_entity("order-1")

    assert handle.status is TrackingStatus.LIVE
    handle.stop()


class TestTrackingView:
    @pytest.mark.asyncio
    async def test_switch_discards_superseded_snapshot(self, source: Any, feed: Any, renderer: Any) -> None:
        source.gates["order-1"] = asyncio.Event()
        view = TrackingView(_tracker(source, feed, renderer))

        slow = asyncio.create_task(view.show("order-1"))
        await _settle(3)
        fast = await view.show("order-2")

        source.gates["order-1"].set()
        assert await slow is None

        assert fast is not None
        assert view.handle is fast
        assert fast.status is TrackingStatus.LIVE
        assert feed.open_calls == ["order-2"]
        assert [v.marker.label for v in renderer.views if v.marker is not None] == [
            "Order #order-2\nStatus: pending"
        ]
        view.close()

    @pytest.mark.asyncio
    async def test_switch_stops_previous_handle(self, source: Any, feed: Any, renderer: Any) -> None:
        view = TrackingView(_tracker(source, feed, renderer))

        first = await view.show("order-1")
        assert await view.show("order-1") is first
        second = await view.show("order-2")

        assert first is not None and first.is_stopped
        assert feed.latest("order-1").closed is True
        _push(feed, "order-1", 500, status="delivered")

        assert second is not None and second.status is TrackingStatus.LIVE
        assert renderer.views[-1].marker is not None
        assert renderer.views[-1].marker.label.startswith("Order #order-2")

        view.close()
        assert second.is_stopped
        assert view.handle is None


@pytest.mark.asyncio
async def test_concurrent_resume_waits_for_attach_in_flight(source: Any, feed: Any) -> None:
    feed.failures = 1
    tracker = _tracker(source, feed, reconnect=ReconnectPolicy(max_attempts=0))
    handle = await tracker.observe_entity("order-1")
    assert handle.status is TrackingStatus.CHANNEL_ERROR

    feed.gate = asyncio.Event()
    first = asyncio.create_task(handle.resume())
    second = asyncio.create_task(handle.resume())
    await _settle(5)

    assert handle.status is TrackingStatus.CHANNEL_ERROR
    assert handle.subscription_state is SubscriptionState.ATTACHING

    feed.gate.set()
    assert await first is True
    assert await second is True
    assert handle.status is TrackingStatus.LIVE
    assert feed.open_calls == ["order-1", "order-1"]
    handle.stop()


class TestTrackingViewClose:
    @pytest.mark.asyncio
    async def test_close_stops_handle_still_attaching(self, source: Any, feed: Any, renderer: Any) -> None:
        feed.gate = asyncio.Event()
        tracker = _tracker(source, feed, renderer)
        view = TrackingView(tracker)

        pending = asyncio.create_task(view.show("order-1"))
        await _settle(5)
        assert len(renderer.views) == 1
        assert feed.open_calls == ["order-1"]

        view.close()
        feed.payload_callbacks[0](
            {
                "eventType": "UPDATE",
                "new": {"id": "order-1", "updated_at": 500, "latitude": 1.0, "longitude": 2.0, "status": "delivered"},
            }
        )
        feed.gate.set()

        assert await pending is None
        assert len(renderer.views) == 1
        assert tracker.active_handles == frozenset()
        assert all(channel.closed for channel in feed.channels)
