"""Structured error publication.

Converts exceptions into structured JSON payloads and publishes them
to MQTT error topics so that an unattended bridge's failures are
observable remotely.

Topic layout::

    {prefix}/error              <- all errors (always published)
    {prefix}/{device}/error     <- per-device errors (when device is known)

Payload schema::

    {
        "error_type": "fetch_failure",
        "message": "Request to http://10.0.0.42/api/1/vitals failed: ...",
        "device": "0b5c...-uuid" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {"endpoint": "/api/1/vitals", "status_code": 503}
    }

Publication is not retained (errors are events), QoS 1, and
fire-and-forget: failures are logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from wallbridge._exceptions import ConfigError, RegistryError, TelemetryError
from wallbridge._mqtt import MqttPort

logger = logging.getLogger(__name__)

DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    TelemetryError: "fetch_failure",
    RegistryError: "registry_error",
    ConfigError: "config_error",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


def _details_for(error: Exception) -> dict[str, object]:
    if isinstance(error, TelemetryError):
        details: dict[str, object] = {"endpoint": error.endpoint}
        if error.status_code is not None:
            details["status_code"] = error.status_code
        return details
    return {}


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    The type lookup walks the exception's MRO, so subclasses of a
    mapped type inherit its ``error_type``.  Unmapped exceptions fall
    back to ``"error"``.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to machine-readable
            ``error_type`` strings.  Defaults to
            :data:`DEFAULT_ERROR_TYPES`.
        device: Optional device key to include in the payload.
        details: Extra context merged over the details derived from
            the exception (endpoint and status code for telemetry
            errors).
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.
    """
    resolved_map = error_type_map if error_type_map is not None else DEFAULT_ERROR_TYPES
    error_type = next(
        (resolved_map[cls] for cls in type(error).__mro__ if cls in resolved_map),
        "error",
    )
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details={**_details_for(error), **(details or {})},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Publishes structured error payloads to MQTT.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix for error topics (e.g. ``"wallbridge"``).
        error_type_map: Mapping from exception types to type strings.
        clock: Optional callable returning a :class:`~datetime.datetime`
            for deterministic testing.
    """

    mqtt: MqttPort
    topic_prefix: str
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    async def publish(self, error: Exception, *, device: str | None = None) -> None:
        """Build an error payload and publish it.

        Always publishes to ``{topic_prefix}/error``; also to
        ``{topic_prefix}/{device}/error`` when *device* is given.
        Failures at any stage are logged and swallowed.
        """
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                device=device,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception(
                "Failed to build error payload for %r (device=%s)",
                error,
                device,
            )
            return

        logger.warning(
            "Publishing error: %s (type=%s, device=%s)",
            payload.message,
            payload.error_type,
            device,
        )
        await self._safe_publish(f"{self.topic_prefix}/error", payload_json)
        if device is not None:
            await self._safe_publish(f"{self.topic_prefix}/{device}/error", payload_json)

    async def _safe_publish(self, topic: str, payload: str) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", topic)
