"""Bridge configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files with the ``WALLBRIDGE_`` prefix.  Nested models use ``__`` as
the delimiter in env var names, e.g. ``WALLBRIDGE_MQTT__HOST=broker``.
The device list is a JSON array::

    WALLBRIDGE_DEVICES='[{"name": "Garage", "ip": "10.0.0.42"}]'

Device entries accept the host platform's historical key names
(``ip``, ``pollIntervalMs``, ``pollInterval``) next to the Python
field names.  Missing keys are filled from defaults exactly once, when
the :class:`DeviceConfig` is validated; nothing downstream reads raw
optional values.

Durations are in **seconds**, except ``poll_interval_ms`` which keeps
the unit of the platform's config surface.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from wallbridge._exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_NAME = "Tesla Wall Connector"
DEFAULT_DEVICE_ADDRESS = "192.168.122.146"
DEFAULT_POLL_INTERVAL_MS = 300_000

# config-surface key -> DeviceConfig field
_DEFAULTABLE_KEYS = {"ip": "address", "pollIntervalMs": "poll_interval_ms"}

# -------------------------------------------------------------------
# Device configuration
# -------------------------------------------------------------------


class DeviceConfig(BaseModel):
    """One wall connector to poll.  Frozen once validated.

    Example::

        DeviceConfig.model_validate({"ip": "10.0.0.42"})
        # -> name="Tesla Wall Connector", address="10.0.0.42",
        #    poll_interval_ms=300000
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(
        default=DEFAULT_DEVICE_NAME,
        min_length=1,
        description="Accessory display name.",
    )
    address: str = Field(
        default=DEFAULT_DEVICE_ADDRESS,
        min_length=1,
        validation_alias=AliasChoices("address", "ip"),
        description="Host name or IP address of the wall connector.",
    )
    poll_interval_ms: Annotated[int, Field(gt=0)] = Field(
        default=DEFAULT_POLL_INTERVAL_MS,
        validation_alias=AliasChoices(
            "poll_interval_ms",
            "pollIntervalMs",
            "pollInterval",
        ),
        description="Milliseconds between polls (fixed, no backoff).",
    )
    request_timeout_s: Annotated[float, Field(gt=0)] = Field(
        default=10.0,
        description=(
            "Total timeout for a single HTTP request.  Keeps a hung "
            "fetch from holding the in-flight guard forever."
        ),
    )

    @property
    def poll_interval_s(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000

    @property
    def base_url(self) -> str:
        """Root URL of the device's local API."""
        return f"http://{self.address}"


def report_default_substitutions(config: DeviceConfig) -> list[str]:
    """Log and return the optional device keys that fell back to defaults.

    A defaulted address looks exactly like a deliberate one once the
    config is loaded, so the substitution is surfaced at INFO.
    """
    defaulted: list[str] = []
    for key, field_name in _DEFAULTABLE_KEYS.items():
        if field_name in config.model_fields_set:
            continue
        defaulted.append(key)
        logger.info(
            "Device '%s': '%s' not configured, using default %r",
            config.name,
            key,
            getattr(config, field_name),
        )
    return defaulted


def load_device_config(raw: Mapping[str, Any]) -> DeviceConfig:
    """Validate a raw host-provided mapping into a :class:`DeviceConfig`.

    Raises:
        ConfigError: If a value is present but invalid (e.g. a
            non-positive poll interval).
    """
    try:
        config = DeviceConfig.model_validate(dict(raw))
    except ValidationError as exc:
        msg = f"Invalid device configuration: {exc}"
        raise ConfigError(msg) from exc
    report_default_substitutions(config)
    return config


# -------------------------------------------------------------------
# Infrastructure sub-models (BaseModel, nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        WALLBRIDGE_MQTT__HOST=broker.local
        WALLBRIDGE_MQTT__PORT=1883
        WALLBRIDGE_MQTT__USERNAME=user
        WALLBRIDGE_MQTT__PASSWORD=secret
        WALLBRIDGE_MQTT__TOPIC_PREFIX=garage
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'{name}-{hex8}' at startup."
        ),
    )
    qos: Literal[0, 1, 2] = Field(
        default=1,
        description="QoS used for subscriptions.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    connect_timeout: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description=(
            "Seconds to wait for the first broker connection at "
            "startup before giving up."
        ),
    )
    topic_prefix: str = Field(
        default="",
        description=(
            "Root prefix for all MQTT topics. "
            "When empty, falls back to the bridge name."
        ),
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    ``format`` selects ``"json"`` (one JSON object per line, for
    container log aggregators) or ``"text"`` (timestamped lines for a
    terminal).
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the bridge.

    Example ``.env``::

        WALLBRIDGE_DEVICES=[{"ip": "10.0.0.42", "pollIntervalMs": 60000}]
        WALLBRIDGE_MQTT__HOST=broker.local
        WALLBRIDGE_LOGGING__LEVEL=DEBUG
        WALLBRIDGE_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="WALLBRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    devices: list[DeviceConfig] = Field(
        default_factory=lambda: [DeviceConfig()],
        min_length=1,
        description="Wall connectors to bridge, one accessory each.",
    )
    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    heartbeat_interval: Annotated[float, Field(gt=0)] | None = Field(
        default=60.0,
        description="Seconds between bridge heartbeats; ``None`` disables.",
    )
    cache_restore_window: Annotated[float, Field(ge=0)] = Field(
        default=1.0,
        description=(
            "Seconds to collect retained accessory descriptors from "
            "the broker before discovery runs."
        ),
    )
