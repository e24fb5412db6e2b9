"""wallbridge.

Polls Tesla Wall Connector telemetry and mirrors it onto identity-stable
home-automation accessories over MQTT.
"""

from importlib.metadata import PackageNotFoundError, version

from wallbridge._accessory import (
    CONTACT_SENSOR,
    CONTACT_SENSOR_STATE,
    ENERGY,
    NAME,
    AccessoryStatus,
    Characteristic,
    Origin,
    PlatformAccessory,
    Service,
)
from wallbridge._app import Bridge
from wallbridge._clock import ClockPort, SystemClock
from wallbridge._errors import ErrorPayload, ErrorPublisher, build_error_payload
from wallbridge._exceptions import (
    BrokerUnavailableError,
    ConfigError,
    RegistryError,
    TelemetryError,
    WallbridgeError,
)
from wallbridge._health import (
    DeviceStatus,
    HealthReporter,
    HeartbeatPayload,
    build_will_config,
)
from wallbridge._host import PLATFORM_NAME, PLUGIN_NAME, HostPort, MqttHost
from wallbridge._identity import IDENTITY_NAMESPACE, identity_for
from wallbridge._logging import JsonFormatter, configure_logging
from wallbridge._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttConnection,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    WillConfig,
    topic_matches,
)
from wallbridge._platform import PlatformController, TelemetryFactory
from wallbridge._registry import AccessoryRegistry
from wallbridge._settings import (
    DeviceConfig,
    LoggingSettings,
    MqttSettings,
    Settings,
    load_device_config,
)
from wallbridge._sync import UNKNOWN_STATE, DeviceStateSync, PublishedState, SyncState
from wallbridge._telemetry import (
    LifetimeSnapshot,
    TelemetryPort,
    VitalsSnapshot,
    WallConnectorClient,
)

try:
    __version__ = version("wallbridge")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Bridge
    "Bridge",
    # Identity
    "IDENTITY_NAMESPACE",
    "identity_for",
    # Accessories
    "CONTACT_SENSOR",
    "CONTACT_SENSOR_STATE",
    "ENERGY",
    "NAME",
    "AccessoryRegistry",
    "AccessoryStatus",
    "Characteristic",
    "Origin",
    "PlatformAccessory",
    "Service",
    # Host
    "PLATFORM_NAME",
    "PLUGIN_NAME",
    "HostPort",
    "MqttHost",
    # Sync
    "UNKNOWN_STATE",
    "DeviceStateSync",
    "PlatformController",
    "PublishedState",
    "SyncState",
    "TelemetryFactory",
    # Telemetry
    "LifetimeSnapshot",
    "TelemetryPort",
    "VitalsSnapshot",
    "WallConnectorClient",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttConnection",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "WillConfig",
    "topic_matches",
    # Errors
    "BrokerUnavailableError",
    "ConfigError",
    "ErrorPayload",
    "ErrorPublisher",
    "RegistryError",
    "TelemetryError",
    "WallbridgeError",
    "build_error_payload",
    # Health
    "DeviceStatus",
    "HealthReporter",
    "HeartbeatPayload",
    "build_will_config",
    # Settings
    "DeviceConfig",
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    "load_device_config",
]
