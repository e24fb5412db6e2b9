"""Device discovery and accessory cache reconciliation.

:class:`PlatformController` runs once, after the host has restored its
accessory cache into the :class:`~wallbridge._registry.AccessoryRegistry`.
For each configured device it derives the identity from the address
and either reuses the cached accessory or creates and registers a new
one, then starts a :class:`~wallbridge._sync.DeviceStateSync` for it.

Cached accessories are never registered again, so repeated starts
against the same host cache cannot create duplicates.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime

from wallbridge._accessory import AccessoryStatus, PlatformAccessory
from wallbridge._clock import ClockPort
from wallbridge._errors import ErrorPublisher
from wallbridge._health import HealthReporter
from wallbridge._host import PLATFORM_NAME, PLUGIN_NAME, HostPort
from wallbridge._identity import identity_for
from wallbridge._registry import AccessoryRegistry
from wallbridge._settings import DeviceConfig
from wallbridge._sync import DeviceStateSync
from wallbridge._telemetry import TelemetryPort

logger = logging.getLogger(__name__)

TelemetryFactory = Callable[[DeviceConfig], TelemetryPort]
"""Builds the telemetry client for one device."""


class PlatformController:
    """Resolves configured devices to accessories and starts their syncs."""

    def __init__(
        self,
        devices: Sequence[DeviceConfig],
        registry: AccessoryRegistry,
        host: HostPort,
        telemetry_factory: TelemetryFactory,
        *,
        clock: ClockPort | None = None,
        wall_clock: Callable[[], datetime] | None = None,
        error_publisher: ErrorPublisher | None = None,
        health_reporter: HealthReporter | None = None,
        plugin_id: str = PLUGIN_NAME,
        platform_id: str = PLATFORM_NAME,
    ) -> None:
        self._devices = list(devices)
        self._registry = registry
        self._host = host
        self._telemetry_factory = telemetry_factory
        self._clock = clock
        self._wall_clock = wall_clock
        self._error_publisher = error_publisher
        self._health_reporter = health_reporter
        self._plugin_id = plugin_id
        self._platform_id = platform_id
        self._syncs: list[DeviceStateSync] = []
        self._discovered = False

    @property
    def syncs(self) -> list[DeviceStateSync]:
        return list(self._syncs)

    async def discover(self) -> list[DeviceStateSync]:
        """Resolve every configured device and start polling it.

        Returns:
            The started syncs, one per distinct identity.

        Raises:
            RuntimeError: If discovery already ran.
            Exception: Whatever the host raises from
                ``register_accessories``.  The failed accessory is not
                added to the registry.
        """
        if self._discovered:
            msg = "Discovery already ran for this platform"
            raise RuntimeError(msg)
        self._discovered = True

        seen: set[uuid.UUID] = set()
        for config in self._devices:
            identity = identity_for(config.address)
            if identity in seen:
                logger.warning(
                    "Device %r at %s duplicates an earlier entry, skipping",
                    config.name,
                    config.address,
                )
                continue
            seen.add(identity)
            sync = await self._activate(config, identity)
            sync.start()
            self._syncs.append(sync)
        return list(self._syncs)

    async def stop(self) -> None:
        """Stop every sync started by :meth:`discover`."""
        for sync in self._syncs:
            await sync.stop()

    async def _activate(self, config: DeviceConfig, identity: uuid.UUID) -> DeviceStateSync:
        accessory = self._registry.get(identity)
        if accessory is not None:
            logger.info("Restoring existing accessory from cache: %s", accessory.display_name)
            sync = self._build_sync(accessory, config)
        else:
            logger.info("Adding new accessory: %s", config.name)
            accessory = PlatformAccessory(
                display_name=config.name,
                identity=identity,
                context={"address": config.address},
            )
            # Services are attached by the sync before the host sees the accessory.
            sync = self._build_sync(accessory, config)
            await self._host.register_accessories(
                self._plugin_id,
                self._platform_id,
                [accessory],
            )
            # Only registered accessories enter the registry.
            self._registry.add(accessory)
            accessory.status = AccessoryStatus.REGISTERED
        accessory.status = AccessoryStatus.ACTIVE
        return sync

    def _build_sync(self, accessory: PlatformAccessory, config: DeviceConfig) -> DeviceStateSync:
        return DeviceStateSync(
            accessory,
            config,
            self._telemetry_factory(config),
            self._host,
            clock=self._clock,
            wall_clock=self._wall_clock,
            error_publisher=self._error_publisher,
            health_reporter=self._health_reporter,
        )
