"""Client configuration for livetrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from livetrack.exceptions import TrackingConfigError

#: Fallback map center used when an order has no coordinates yet.
DEFAULT_CENTER: tuple[float, float] = (12.943060699936739, 77.54281118013748)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_center(value: str) -> tuple[float, float]:
    lat_text, sep, lon_text = value.partition(",")
    if not sep:
        raise TrackingConfigError(f"LIVETRACK_DEFAULT_CENTER must be 'lat,lon', got {value!r}")
    try:
        return float(lat_text), float(lon_text)
    except ValueError as exc:
        raise TrackingConfigError(f"LIVETRACK_DEFAULT_CENTER is not numeric: {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff for re-attaching a lost change-feed channel.

    The delay starts at *initial_delay* and doubles per attempt up to
    *max_delay*.  At most *max_attempts* attempts are made per loss;
    ``0`` disables reconnects.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay(self, attempt: int) -> float:
        """Delay before reconnect *attempt* (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.initial_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclasses.dataclass(frozen=True)
class TrackingConfig:
    """Tracking configuration.

    Parameters
    ----------
    base_url : str
        Backing service base URL (e.g. ``"https://<project>.supabase.co"``).
    api_key : str
        Anonymous API key sent as ``apikey`` and bearer token.
    table : str
        Table holding the tracked rows.
    http_timeout : float
        Total timeout in seconds for a snapshot fetch.
    mqtt_host : str
        Change-feed broker host.
    mqtt_port : int
        Change-feed broker port.
    mqtt_tls : bool
        Enable TLS towards the broker.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_connect_timeout : float
        Seconds to wait for the broker to acknowledge a subscription.
    topic_prefix : str
        Topic prefix; rows are published on ``<prefix>/<table>/<id>``.
    default_center : tuple of float
        Map center used when no coordinates are known.
    map_zoom : int
        Zoom level passed to the map renderer.
    reconnect_initial_delay : float
        First delay in seconds before re-attaching a lost channel.
    reconnect_max_delay : float
        Cap for the exponential reconnect delay.
    reconnect_max_attempts : int
        Maximum reconnect attempts per loss.  ``0`` disables reconnects.
    """

    base_url: str
    api_key: str
    table: str = "orders"
    http_timeout: float = 10.0
    mqtt_host: str = "localhost"
    mqtt_port: int = 8883
    mqtt_tls: bool = True
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 60
    mqtt_connect_timeout: float = 10.0
    topic_prefix: str = "realtime"
    default_center: tuple[float, float] = DEFAULT_CENTER
    map_zoom: int = 13
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_max_attempts: int = 5

    def __post_init__(self) -> None:
        if not self.table.strip():
            raise TrackingConfigError("table must be non-empty")
        if self.reconnect_initial_delay < 0 or self.reconnect_max_delay < 0:
            raise TrackingConfigError("reconnect delays must be non-negative")
        if self.reconnect_max_attempts < 0:
            raise TrackingConfigError("reconnect_max_attempts must be non-negative")

    def topic_for(self, entity_id: str) -> str:
        """Change-feed topic carrying updates for one row."""
        return f"{self.topic_prefix}/{self.table}/{entity_id}"

    def reconnect_policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            initial_delay=self.reconnect_initial_delay,
            max_delay=self.reconnect_max_delay,
            max_attempts=self.reconnect_max_attempts,
        )

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackingConfig:
        """Create configuration from environment variables.

        Reads ``LIVETRACK_URL``, ``LIVETRACK_API_KEY`` and optional
        ``LIVETRACK_*`` variables. Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "LIVETRACK_URL": "base_url",
            "LIVETRACK_API_KEY": "api_key",
            "LIVETRACK_TABLE": "table",
            "LIVETRACK_MQTT_HOST": "mqtt_host",
            "LIVETRACK_MQTT_USERNAME": "mqtt_username",
            "LIVETRACK_MQTT_PASSWORD": "mqtt_password",
            "LIVETRACK_TOPIC_PREFIX": "topic_prefix",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "LIVETRACK_HTTP_TIMEOUT": ("http_timeout", float),
            "LIVETRACK_MQTT_PORT": ("mqtt_port", int),
            "LIVETRACK_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "LIVETRACK_MQTT_CONNECT_TIMEOUT": ("mqtt_connect_timeout", float),
            "LIVETRACK_MAP_ZOOM": ("map_zoom", int),
            "LIVETRACK_RECONNECT_INITIAL_DELAY": ("reconnect_initial_delay", float),
            "LIVETRACK_RECONNECT_MAX_DELAY": ("reconnect_max_delay", float),
            "LIVETRACK_RECONNECT_MAX_ATTEMPTS": ("reconnect_max_attempts", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = cast(val)
            except ValueError as exc:
                raise TrackingConfigError(f"{env_key} is not a valid {cast.__name__}: {val!r}") from exc

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("LIVETRACK_MQTT_TLS"), True)

        center_env = env.get("LIVETRACK_DEFAULT_CENTER")
        if center_env is not None and "default_center" not in overrides:
            config_kwargs["default_center"] = _env_center(center_env)

        config_kwargs.update(overrides)

        missing = [name for name in ("base_url", "api_key") if not config_kwargs.get(name)]
        if missing:
            raise TrackingConfigError(f"Missing required configuration: {', '.join(missing)}")

        return cls(**config_kwargs)
