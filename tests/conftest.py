from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from livetrack.exceptions import TrackingChannelError, TrackingNotFoundError
from livetrack.models.map_view import MapView


@dataclass
class FakeChannel:
    entity_id: str
    on_payload: Callable[[dict[str, Any]], None]
    on_lost: Callable[[str], None]
    closed: bool = False

    def close(self) -> None:
        self.closed = True

    def push(self, payload: dict[str, Any]) -> None:
        # Delivers even after close, like a transport with events in flight.
        self.on_payload(payload)

    def drop(self, reason: str = "connection reset") -> None:
        self.on_lost(reason)


@dataclass
class FakeChangeFeed:
    channels: list[FakeChannel] = field(default_factory=list)
    open_calls: list[str] = field(default_factory=list)
    payload_callbacks: list[Callable[[dict[str, Any]], None]] = field(default_factory=list)
    failures: int = 0
    gate: asyncio.Event | None = None

    async def open(
        self,
        entity_id: str,
        *,
        on_payload: Callable[[dict[str, Any]], None],
        on_lost: Callable[[str], None],
    ) -> FakeChannel:
        self.open_calls.append(entity_id)
        # The transport may deliver before the subscription is acknowledged.
        self.payload_callbacks.append(on_payload)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise TrackingChannelError("broker refused subscription", entity_id=entity_id)
        channel = FakeChannel(entity_id=entity_id, on_payload=on_payload, on_lost=on_lost)
        self.channels.append(channel)
        return channel

    def latest(self, entity_id: str) -> FakeChannel:
        return [ch for ch in self.channels if ch.entity_id == entity_id][-1]


@dataclass
class FakeSnapshotSource:
    rows: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    error: Exception | None = None
    gates: dict[str, asyncio.Event] = field(default_factory=dict)

    async def fetch_snapshot(self, entity_id: str) -> dict[str, Any]:
        self.calls.append(entity_id)
        gate = self.gates.get(entity_id)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        row = self.rows.get(entity_id)
        if row is None:
            raise TrackingNotFoundError(entity_id)
        return dict(row)


@dataclass
class RecordingRenderer:
    views: list[MapView] = field(default_factory=list)

    def render(self, view: MapView) -> None:
        self.views.append(view)


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def source() -> FakeSnapshotSource:
    return FakeSnapshotSource(
        rows={
            "order-1": {
                "id": "order-1",
                "latitude": 12.9,
                "longitude": 77.5,
                "status": "accepted",
                "updated_at": 100,
            },
            "order-2": {
                "id": "order-2",
                "latitude": 13.0,
                "longitude": 77.6,
                "status": "pending",
                "updated_at": 100,
            },
        }
    )


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()
