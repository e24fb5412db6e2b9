"""Bridge heartbeat and per-device availability.

Topic layout::

    {prefix}/status                  <- bridge heartbeat (retained JSON)
    {prefix}/{device}/availability   <- "online" / "offline" (retained)

Heartbeat payload schema::

    {
        "status": "online",
        "uptime_s": 3600,
        "version": "0.1.0",
        "devices": {
            "0b5c...": {"status": "ok", "consecutive_failures": 0},
            "9e1f...": {"status": "stale", "consecutive_failures": 4}
        }
    }

A device is ``"stale"`` while its polls keep failing; its published
state is then the last good one.  The broker publishes ``"offline"`` to
``{prefix}/status`` via the LWT from :func:`build_will_config` if the
bridge disappears without a clean shutdown.

All publication is retained, QoS 1 and fire-and-forget.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field

from wallbridge._clock import ClockPort
from wallbridge._mqtt import MqttPort, WillConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    """Status snapshot for a single device."""

    status: str = "ok"
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    """Bridge-level status snapshot ready for publication."""

    status: str
    uptime_s: float
    version: str
    devices: dict[str, DeviceStatus] = field(default_factory=dict)

    def to_json(self) -> str:
        data: dict[str, object] = {
            "status": self.status,
            "uptime_s": self.uptime_s,
            "version": self.version,
            "devices": {
                name: device.to_dict() for name, device in self.devices.items()
            },
        }
        return json.dumps(data)


def build_will_config(topic_prefix: str) -> WillConfig:
    """LWT targeting ``{topic_prefix}/status`` with payload ``"offline"``."""
    return WillConfig(
        topic=f"{topic_prefix}/status",
        payload="offline",
        qos=1,
        retain=True,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class HealthReporter:
    """Publishes bridge heartbeats and per-device availability.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing.
    topic_prefix:
        Base prefix for health topics.
    version:
        Bridge version included in heartbeats.
    clock:
        Monotonic clock for uptime measurement.
    """

    mqtt: MqttPort
    topic_prefix: str
    version: str
    clock: ClockPort
    _start_time: float = field(init=False, repr=False)
    _devices: dict[str, DeviceStatus] = field(
        init=False,
        default_factory=dict,
        repr=False,
    )

    def __post_init__(self) -> None:
        self._start_time = self.clock.now()

    @property
    def devices(self) -> dict[str, DeviceStatus]:
        """Snapshot of tracked device statuses."""
        return dict(self._devices)

    def set_device_status(
        self,
        device: str,
        status: str = "ok",
        *,
        consecutive_failures: int = 0,
    ) -> None:
        """Update or add a device's status in the internal tracker."""
        self._devices[device] = DeviceStatus(
            status=status,
            consecutive_failures=consecutive_failures,
        )

    async def publish_device_available(self, device: str) -> None:
        """Publish ``"online"`` for *device* and start tracking it."""
        await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "online")
        self.set_device_status(device)

    async def publish_heartbeat(self) -> None:
        """Publish the JSON heartbeat to ``{prefix}/status``."""
        payload = HeartbeatPayload(
            status="online",
            uptime_s=self.clock.now() - self._start_time,
            version=self.version,
            devices=dict(self._devices),
        )
        topic = f"{self.topic_prefix}/status"
        logger.debug("Publishing heartbeat to %s", topic)
        await self._safe_publish(topic, payload.to_json())

    async def shutdown(self) -> None:
        """Publish ``"offline"`` for every device and the bridge itself."""
        logger.info("Health reporter shutting down, publishing offline")
        for device in list(self._devices):
            await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "offline")
        await self._safe_publish(f"{self.topic_prefix}/status", "offline")
        self._devices.clear()

    async def _safe_publish(self, topic: str, payload: str) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Failed to publish health to %s", topic)
