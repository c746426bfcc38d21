"""shadowsync.

Keeps a local, merged view of remote device-shadow documents in sync and
serializes desired-state updates to them.
"""

from importlib.metadata import PackageNotFoundError, version

from shadowsync._aws import AwsShadowClient, shadow_topic
from shadowsync._broadcast import Broadcast, Unsubscribe
from shadowsync._clock import ClockPort, SystemClock
from shadowsync._connection import (
    MockShadowConnection,
    NullShadowConnection,
    ShadowConnection,
    ShadowListener,
)
from shadowsync._correlation import CorrelationRegistry
from shadowsync._device import DeviceInfo, ShadowDevice
from shadowsync._document import Document, merge
from shadowsync._errors import (
    ConnectionUnavailableError,
    RequestFailedError,
    ShadowSyncError,
)
from shadowsync._events import (
    DeltaEvent,
    ForeignChangeEvent,
    Lifecycle,
    LifecycleEvent,
    ResponseStatus,
    ShadowEvent,
    ShadowState,
    StatusEvent,
    TimeoutEvent,
)
from shadowsync._logging import JsonFormatter, configure_logging
from shadowsync._mqtt import (
    LifecycleCallback,
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
)
from shadowsync._rest_iot import (
    MAX_IOT_VALUE,
    Product,
    RestIot,
    convert_from_percentage,
    convert_to_percentage,
    select_touch_ring_routine,
    touch_ring_routines,
)
from shadowsync._serializer import (
    DEFAULT_REQUEST_TIMEOUT,
    PendingRequest,
    UpdateOutcome,
    UpdateResult,
    UpdateSerializer,
)
from shadowsync._session import ShadowSession
from shadowsync._settings import LoggingSettings, MqttSettings, Settings, ShadowSettings

try:
    __version__ = version("shadowsync")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Documents
    "Document",
    "merge",
    # Device
    "DeviceInfo",
    "ShadowDevice",
    "ShadowSession",
    # Updates
    "DEFAULT_REQUEST_TIMEOUT",
    "PendingRequest",
    "UpdateOutcome",
    "UpdateResult",
    "UpdateSerializer",
    # Correlation
    "CorrelationRegistry",
    # Broadcast
    "Broadcast",
    "Unsubscribe",
    # Connections
    "AwsShadowClient",
    "MockShadowConnection",
    "NullShadowConnection",
    "ShadowConnection",
    "ShadowListener",
    "shadow_topic",
    # Events
    "DeltaEvent",
    "ForeignChangeEvent",
    "Lifecycle",
    "LifecycleEvent",
    "ResponseStatus",
    "ShadowEvent",
    "ShadowState",
    "StatusEvent",
    "TimeoutEvent",
    # Errors
    "ConnectionUnavailableError",
    "RequestFailedError",
    "ShadowSyncError",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "LifecycleCallback",
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    # Rest IoT
    "MAX_IOT_VALUE",
    "Product",
    "RestIot",
    "convert_from_percentage",
    "convert_to_percentage",
    "select_touch_ring_routine",
    "touch_ring_routines",
    # Settings
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    "ShadowSettings",
]
