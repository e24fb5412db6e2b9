"""Host platform port and the MQTT host adapter.

The host owns accessory persistence and makes characteristic values
visible to the outside world.  The bridge talks to it through
:class:`HostPort`:

- ``restore_cache(registry)``: hand every persisted accessory to the
  registry before discovery runs.
- ``register_accessories(plugin_id, platform_id, accessories)``:
  persist and expose newly created accessories.
- ``update_characteristic(...)``: push a new value; fire-and-forget
  from the caller's point of view.

:class:`MqttHost` implements the port on top of an MQTT broker.
Retained accessory descriptors are the persisted cache::

    {prefix}/{identity}/accessory                     <- descriptor JSON (retained)
    {prefix}/{identity}/{service}/{characteristic}    <- value JSON (retained)
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from wallbridge._accessory import PlatformAccessory, Service
from wallbridge._exceptions import RegistryError
from wallbridge._mqtt import MqttMessageHandler, MqttPort, topic_matches
from wallbridge._registry import AccessoryRegistry

logger = logging.getLogger(__name__)

PLUGIN_NAME = "wallbridge"
PLATFORM_NAME = "TeslaWallConnector"

# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


@runtime_checkable
class HostPort(Protocol):
    """Boundary to the home-automation host."""

    async def restore_cache(self, registry: AccessoryRegistry) -> None: ...

    async def register_accessories(
        self,
        plugin_id: str,
        platform_id: str,
        accessories: Sequence[PlatformAccessory],
    ) -> None: ...

    async def update_characteristic(
        self,
        accessory: PlatformAccessory,
        service: Service,
        characteristic: str,
        value: object,
    ) -> None: ...


# ---------------------------------------------------------------------------
# MQTT adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttHost:
    """:class:`HostPort` backed by retained MQTT messages.

    Args:
        mqtt: MQTT port used for publishing and (when it supports
            inbound delivery) cache restoration.
        topic_prefix: Root prefix, e.g. ``"wallbridge"``.
        restore_window: Seconds to collect retained descriptors after
            subscribing.  Retained messages arrive right after the
            subscription, so a short window is enough.
    """

    mqtt: MqttPort
    topic_prefix: str
    restore_window: float = 1.0
    _collected: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _collecting: bool = field(default=False, init=False, repr=False)

    @property
    def _descriptor_filter(self) -> str:
        return f"{self.topic_prefix}/+/accessory"

    def accessory_topic(self, accessory: PlatformAccessory) -> str:
        return f"{self.topic_prefix}/{accessory.identity}/accessory"

    def characteristic_topic(
        self,
        accessory: PlatformAccessory,
        service: Service,
        characteristic: str,
    ) -> str:
        return f"{self.topic_prefix}/{accessory.identity}/{service.subtype}/{characteristic}"

    async def restore_cache(self, registry: AccessoryRegistry) -> None:
        """Restore retained accessory descriptors into *registry*.

        Payloads that do not parse are logged and skipped; an empty
        retained payload is a cleared descriptor and is ignored.
        """
        if not isinstance(self.mqtt, MqttMessageHandler):
            logger.info("MQTT adapter cannot receive messages; accessory cache is empty")
            return

        self._collecting = True
        self.mqtt.on_message(self._collect)
        try:
            await self.mqtt.subscribe(self._descriptor_filter)
            await asyncio.sleep(self.restore_window)
        finally:
            self._collecting = False

        for topic, payload in sorted(self._collected.items()):
            self._restore_one(registry, topic, payload)
        self._collected.clear()
        logger.info("Restored %d cached accessories", len(registry))

    async def register_accessories(
        self,
        plugin_id: str,
        platform_id: str,
        accessories: Sequence[PlatformAccessory],
    ) -> None:
        """Publish a retained descriptor for each accessory."""
        for accessory in accessories:
            descriptor = accessory.to_descriptor()
            descriptor["plugin"] = plugin_id
            descriptor["platform"] = platform_id
            await self.mqtt.publish(
                self.accessory_topic(accessory),
                json.dumps(descriptor),
                retain=True,
                qos=1,
            )
            logger.info(
                "Registered accessory %r (%s)",
                accessory.display_name,
                accessory.identity,
            )

    async def update_characteristic(
        self,
        accessory: PlatformAccessory,
        service: Service,
        characteristic: str,
        value: object,
    ) -> None:
        """Set the value locally and publish it retained."""
        service.set_characteristic(characteristic, value)
        await self.mqtt.publish(
            self.characteristic_topic(accessory, service, characteristic),
            json.dumps(value),
            retain=True,
            qos=1,
        )

    async def _collect(self, topic: str, payload: str) -> None:
        if not self._collecting:
            return
        if not topic_matches(self._descriptor_filter, topic):
            return
        self._collected[topic] = payload

    @staticmethod
    def _restore_one(registry: AccessoryRegistry, topic: str, payload: str) -> None:
        if not payload:
            return
        try:
            accessory = PlatformAccessory.from_descriptor(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable accessory descriptor on %s: %s", topic, exc)
            return
        try:
            registry.restore(accessory)
        except RegistryError:
            logger.warning("Duplicate cached accessory %s on %s", accessory.identity, topic)
