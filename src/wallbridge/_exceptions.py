"""Exception hierarchy for wallbridge."""

from __future__ import annotations


class WallbridgeError(Exception):
    """Base exception for all wallbridge errors."""


class ConfigError(WallbridgeError):
    """Invalid device configuration."""


class TelemetryError(WallbridgeError):
    """A telemetry fetch failed (network, non-200, invalid JSON, schema).

    Raised by the HTTP client and contained inside the polling loop,
    where it degrades to a "no data" result for that endpoint.
    """

    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
        status_code: int | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class RegistryError(WallbridgeError):
    """An accessory with the same identity is already registered."""


class BrokerUnavailableError(WallbridgeError):
    """The MQTT broker could not be reached at startup.

    The accessory cache lives on the broker, so the bridge cannot tell
    cached accessories from new ones without it.
    """
