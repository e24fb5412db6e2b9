"""Bridge orchestrator: the composition root.

:class:`Bridge` wires settings, logging, MQTT, the host adapter and the
telemetry clients together and runs the lifecycle::

    1. Bootstrap   settings, logging, MQTT, health and error services,
                   wait for the broker
    2. Restore     host accessory cache -> AccessoryRegistry
    3. Discover    PlatformController resolves devices, starts syncs
    4. Run         heartbeat loop, block until SIGTERM / SIGINT
    5. Tear down   stop syncs, publish offline, close HTTP and MQTT

Typical usage::

    from wallbridge import Bridge

    Bridge(version="0.1.0").run()

Every collaborator can be injected into :meth:`Bridge.run` for tests.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid
from collections.abc import Callable
from datetime import datetime

import aiohttp

from wallbridge._clock import ClockPort, SystemClock
from wallbridge._errors import ErrorPublisher
from wallbridge._health import HealthReporter, build_will_config
from wallbridge._host import HostPort, MqttHost
from wallbridge._logging import configure_logging
from wallbridge._exceptions import BrokerUnavailableError
from wallbridge._mqtt import MqttClient, MqttConnection, MqttLifecycle, MqttPort
from wallbridge._platform import PlatformController, TelemetryFactory
from wallbridge._registry import AccessoryRegistry
from wallbridge._settings import DeviceConfig, Settings, report_default_substitutions
from wallbridge._telemetry import WallConnectorClient

logger = logging.getLogger(__name__)


class Bridge:
    """Runs one bridge process for the configured wall connectors."""

    def __init__(
        self,
        name: str = "wallbridge",
        version: str = "0.0.0",
        *,
        description: str = "Tesla Wall Connector to MQTT bridge",
        settings_class: type[Settings] = Settings,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            name: Bridge name, used as default MQTT topic prefix and
                client ID stem.
            version: Version string for logs and heartbeats.
            description: Short description for CLI help text.
            settings_class: Settings class to instantiate at startup.
        """
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class
        self._controller: PlatformController | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def description(self) -> str:
        return self._description

    @property
    def settings_class(self) -> type[Settings]:
        return self._settings_class

    @property
    def controller(self) -> PlatformController | None:
        """The platform controller of the current run, once discovery ran."""
        return self._controller

    # --- Entrypoints -------------------------------------------------------

    def run(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        host: HostPort | None = None,
        telemetry_factory: TelemetryFactory | None = None,
        clock: ClockPort | None = None,
        wall_clock: Callable[[], datetime] | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        """Run the bridge until SIGTERM / SIGINT (blocking).

        All arguments are optional overrides for programmatic and test
        use; see :meth:`run_async`.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self.run_async(
                    settings=settings,
                    mqtt=mqtt,
                    host=host,
                    telemetry_factory=telemetry_factory,
                    clock=clock,
                    wall_clock=wall_clock,
                    shutdown_event=shutdown_event,
                ),
            )

    def cli(self) -> None:
        """Run with command-line parsing (see :mod:`wallbridge._cli`)."""
        from wallbridge._cli import build_cli

        build_cli(self)(standalone_mode=True)

    async def run_async(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        host: HostPort | None = None,
        telemetry_factory: TelemetryFactory | None = None,
        clock: ClockPort | None = None,
        wall_clock: Callable[[], datetime] | None = None,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        """Async lifecycle.

        Args:
            settings: Override settings (skip env / ``.env`` loading).
            mqtt: Override MQTT client.  When ``None``, a real
                :class:`MqttClient` is created from settings.
            host: Override host adapter.  When ``None``, an
                :class:`MqttHost` on the MQTT client is used.
            telemetry_factory: Override telemetry client construction.
                When ``None``, every device gets a
                :class:`WallConnectorClient` on one shared aiohttp
                session.
            clock: Override the monotonic clock (e.g. ``FakeClock``).
            wall_clock: Override the timestamp source for published state.
            shutdown_event: Override shutdown event (skip signal handlers).

        Raises:
            BrokerUnavailableError: If the MQTT adapter reports no broker
                connection within ``mqtt.connect_timeout``.
        """
        # --- Phase 1: Bootstrap ---
        resolved_settings = settings if settings is not None else self._settings_class()
        prefix = resolved_settings.mqtt.topic_prefix or self._name
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        logger.info("Starting %s v%s", self._name, self._version)
        for device in resolved_settings.devices:
            report_default_substitutions(device)

        resolved_clock = clock if clock is not None else SystemClock()
        mqtt = self._create_mqtt(mqtt, resolved_settings, prefix)
        health_reporter = HealthReporter(
            mqtt=mqtt,
            topic_prefix=prefix,
            version=self._version,
            clock=resolved_clock,
        )
        error_publisher = ErrorPublisher(mqtt=mqtt, topic_prefix=prefix)
        shutdown_event = self._install_signal_handlers(shutdown_event)

        async with contextlib.AsyncExitStack() as stack:
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.start()
                stack.push_async_callback(mqtt.stop)
            if isinstance(mqtt, MqttConnection):
                await self._await_broker(mqtt, resolved_settings)

            if telemetry_factory is None:
                session = await stack.enter_async_context(aiohttp.ClientSession())
                telemetry_factory = _http_telemetry_factory(session)

            # --- Phase 2: Restore host cache ---
            registry = AccessoryRegistry()
            if host is None:
                host = MqttHost(
                    mqtt=mqtt,
                    topic_prefix=prefix,
                    restore_window=resolved_settings.cache_restore_window,
                )
            await host.restore_cache(registry)

            # --- Phase 3: Discover ---
            controller = PlatformController(
                resolved_settings.devices,
                registry,
                host,
                telemetry_factory,
                clock=resolved_clock,
                wall_clock=wall_clock,
                error_publisher=error_publisher,
                health_reporter=health_reporter,
            )
            self._controller = controller
            stack.push_async_callback(health_reporter.shutdown)
            stack.push_async_callback(controller.stop)
            syncs = await controller.discover()
            for sync in syncs:
                await health_reporter.publish_device_available(sync.device_id)

            # --- Phase 4: Run ---
            await health_reporter.publish_heartbeat()
            heartbeat_task = self._start_heartbeat_task(
                health_reporter,
                resolved_settings.heartbeat_interval,
                resolved_clock,
            )
            try:
                await shutdown_event.wait()
            finally:
                # --- Phase 5: Tear down (rest unwinds via the exit stack) ---
                if heartbeat_task is not None:
                    heartbeat_task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await heartbeat_task

        logger.info("Shutdown complete")

    # --- run_async helpers -------------------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        settings: Settings,
        prefix: str,
    ) -> MqttPort:
        """Return the injected client or build a real one.

        Without a configured ``client_id`` one is generated from the
        bridge name and a short random suffix.
        """
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self._name}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(prefix))

    @staticmethod
    async def _await_broker(mqtt: MqttConnection, settings: Settings) -> None:
        """Block until the broker is connected, before the cache is restored.

        Raises:
            BrokerUnavailableError: If no connection is made within
                ``settings.mqtt.connect_timeout`` seconds.
        """
        timeout = settings.mqtt.connect_timeout
        if await mqtt.wait_connected(timeout):
            return
        msg = (
            f"MQTT broker {settings.mqtt.host}:{settings.mqtt.port} "
            f"not reachable within {timeout:g}s"
        )
        raise BrokerUnavailableError(msg)

    @staticmethod
    def _install_signal_handlers(shutdown_event: asyncio.Event | None) -> asyncio.Event:
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    @staticmethod
    def _start_heartbeat_task(
        health_reporter: HealthReporter,
        interval: float | None,
        clock: ClockPort,
    ) -> asyncio.Task[None] | None:
        if interval is None:
            return None
        return asyncio.create_task(_heartbeat_loop(health_reporter, interval, clock))


async def _heartbeat_loop(
    health_reporter: HealthReporter,
    interval: float,
    clock: ClockPort,
) -> None:
    """Publish heartbeats at a fixed interval until cancelled.

    Sleeps first: the initial heartbeat is published before this task
    starts.
    """
    while True:
        await clock.sleep(interval)
        await health_reporter.publish_heartbeat()


def _http_telemetry_factory(session: aiohttp.ClientSession) -> TelemetryFactory:
    def factory(config: DeviceConfig) -> WallConnectorClient:
        return WallConnectorClient(
            config.base_url,
            session,
            timeout=config.request_timeout_s,
        )

    return factory
