"""Change-feed channels over MQTT.

Each open channel is one paho-mqtt client subscribed to the topic of a
single row.  The paho network thread hands decoded payloads to the asyncio
loop with ``call_soon_threadsafe``; nothing in this module touches the
location store directly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from livetrack.config import TrackingConfig
from livetrack.exceptions import TrackingChannelError

PayloadCallback = Callable[[dict[str, Any]], None]
LostCallback = Callable[[str], None]


class FeedChannel(Protocol):
    """An open push channel for one entity id."""

    def close(self) -> None:
        ...


class ChangeFeed(Protocol):
    """Structural subscribe-by-id interface used by the subscriber.

    ``open`` must resolve only once the channel is live, and must raise
    :class:`TrackingChannelError` when it cannot be established.
    ``on_payload`` and ``on_lost`` are always invoked on the event loop.
    """

    async def open(
        self,
        entity_id: str,
        *,
        on_payload: PayloadCallback,
        on_lost: LostCallback,
    ) -> FeedChannel:
        ...


def decode_payload(payload: bytes) -> dict[str, Any]:
    """Decode an MQTT payload into a JSON object."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("Change payload is not a JSON object")
    return parsed


class MqttChannel:
    """Threaded paho-mqtt client that emits parsed payloads onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        config: TrackingConfig,
        topic: str,
        on_payload: PayloadCallback,
        on_lost: LostCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._config = config
        self._topic = topic
        self._on_payload = on_payload
        self._on_lost = on_lost
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._ready: asyncio.Future[None] = loop.create_future()

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def is_running(self) -> bool:
        """Whether the channel is actively running."""
        return self._running

    def _resolve_ready(self, error: Exception | None) -> None:
        if self._ready.done():
            return
        if error is None:
            self._ready.set_result(None)
        else:
            self._ready.set_exception(error)

    def _emit_lost(self, reason: str) -> None:
        if self._running:
            self._on_lost(reason)

    def _emit_payload(self, payload: dict[str, Any]) -> None:
        if self._running:
            self._on_payload(payload)

    def start(self) -> None:
        """Connect and start the network loop.  Blocking; run in an executor."""
        config = self._config
        client_id = f"livetrack-{secrets.token_hex(6)}"
        self._logger.debug(
            "MQTT channel start requested host=%s port=%s topic=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            self._topic,
            client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                self._loop.call_soon_threadsafe(
                    self._resolve_ready,
                    TrackingChannelError(f"Broker refused connection: {reason_code}"),
                )
                return
            self._logger.debug("MQTT connected reason=%s; subscribing topic=%s", reason_code, self._topic)
            c.subscribe(self._topic, qos=1)

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_codes: list[Any],
            _properties: Any,
        ) -> None:
            if any(rc.is_failure for rc in reason_codes):
                error: Exception | None = TrackingChannelError(f"Subscription to {self._topic} refused")
            else:
                error = None
            self._loop.call_soon_threadsafe(self._resolve_ready, error)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                payload = decode_payload(msg.payload)
            except Exception:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._loop.call_soon_threadsafe(self._emit_payload, payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if not self._running:
                return
            self._logger.debug("MQTT disconnected: %s", reason_code)
            self._loop.call_soon_threadsafe(
                self._resolve_ready,
                TrackingChannelError(f"Disconnected before subscription: {reason_code}"),
            )
            self._loop.call_soon_threadsafe(self._emit_lost, str(reason_code))

        client.on_connect = on_connect
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._client = client
        self._running = True
        try:
            client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        except OSError as exc:
            self._client = None
            self._running = False
            raise TrackingChannelError(f"Cannot reach broker {config.mqtt_host}:{config.mqtt_port}: {exc}") from exc
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    async def wait_ready(self, timeout: float) -> None:
        """Wait for the subscription acknowledgement."""
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except TimeoutError as exc:
            raise TrackingChannelError(f"Timed out subscribing to {self._topic}") from exc

    def close(self) -> None:
        """Stop and disconnect the client if running.  Safe to call twice."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        if not self._ready.done():
            self._ready.cancel()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested topic=%s", self._topic)
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


class MqttChangeFeed:
    """Opens one :class:`MqttChannel` per entity id."""

    def __init__(
        self,
        config: TrackingConfig,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._logger = logger or logging.getLogger(__name__)

    async def open(
        self,
        entity_id: str,
        *,
        on_payload: PayloadCallback,
        on_lost: LostCallback,
    ) -> MqttChannel:
        loop = self._loop or asyncio.get_running_loop()
        channel = MqttChannel(
            loop=loop,
            config=self._config,
            topic=self._config.topic_for(entity_id),
            on_payload=on_payload,
            on_lost=on_lost,
            logger=self._logger,
        )
        try:
            await loop.run_in_executor(None, channel.start)
            await channel.wait_ready(self._config.mqtt_connect_timeout)
        except BaseException:
            await loop.run_in_executor(None, channel.close)
            raise
        return channel
