"""livetrack - Async live order tracking over a hosted change feed."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("livetrack")
except PackageNotFoundError:
    __version__ = "0+local"
from livetrack.client import TrackingClient
from livetrack.config import ReconnectPolicy, TrackingConfig
from livetrack.exceptions import (
    TrackingChannelError,
    TrackingConfigError,
    TrackingError,
    TrackingFetchError,
    TrackingNotFoundError,
    TrackingTransportError,
    TrackingValidationError,
)
from livetrack.models import MapMarker, MapView, OrderStatus, TrackedLocation
from livetrack.render import LoggingMapRenderer, MapRenderer, build_map_view
from livetrack.state.events import LocationEvent, LocationSource
from livetrack.state.store import LocationStore
from livetrack.subscriber import ChangeFeedSubscriber, SubscriptionState
from livetrack.tracker import LiveTracker, TrackingHandle, TrackingStatus, TrackingView

__all__ = [
    "__version__",
    "ChangeFeedSubscriber",
    "LiveTracker",
    "LocationEvent",
    "LocationSource",
    "LocationStore",
    "LoggingMapRenderer",
    "MapMarker",
    "MapRenderer",
    "MapView",
    "OrderStatus",
    "ReconnectPolicy",
    "SubscriptionState",
    "TrackedLocation",
    "TrackingChannelError",
    "TrackingClient",
    "TrackingConfig",
    "TrackingConfigError",
    "TrackingError",
    "TrackingFetchError",
    "TrackingHandle",
    "TrackingNotFoundError",
    "TrackingStatus",
    "TrackingTransportError",
    "TrackingValidationError",
    "TrackingView",
    "build_map_view",
]
