"""Per-device state synchronization: poll, merge, publish.

One :class:`DeviceStateSync` owns the polling loop for one accessory.
Each tick runs *merge-then-publish*:

1. Fetch vitals and lifetime concurrently.
2. Each fetch fails soft: any error is logged and becomes ``None``.
3. Publish only when **both** results are present.  Otherwise the
   previous :class:`PublishedState` stays authoritative.
4. Replace the published state in one assignment, then push
   ``ContactSensorState`` to the host.

Scheduling is a recurring task with fixed deadlines
``start + k * interval`` for ``k >= 1``, so the first tick fires one
interval after :meth:`DeviceStateSync.start`.  A tick whose
predecessor is still in flight is skipped, so two merges never race
for the published state.  The interval never adapts; repeated
failures only show up in logs, error reports and the health status.

Lifecycle::

    INITIALIZED --start()--> POLLING --stop()--> STOPPED
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from wallbridge._accessory import (
    CONTACT_SENSOR,
    CONTACT_SENSOR_STATE,
    ENERGY,
    NAME,
    PlatformAccessory,
    Service,
)
from wallbridge._clock import ClockPort, SystemClock
from wallbridge._errors import ErrorPublisher
from wallbridge._health import HealthReporter
from wallbridge._host import HostPort
from wallbridge._settings import DeviceConfig
from wallbridge._telemetry import TelemetryPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class SyncState(enum.StrEnum):
    """Lifecycle of a :class:`DeviceStateSync`."""

    INITIALIZED = "initialized"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class PublishedState:
    """State last published for an accessory.

    Only ever replaced as a whole.  ``tick`` is the number of the poll
    that produced it; a completed poll never overwrites a newer one.
    """

    contactor_closed: bool | None = None
    last_update_at: datetime | None = None
    tick: int = 0

    @property
    def known(self) -> bool:
        return self.last_update_at is not None


UNKNOWN_STATE = PublishedState()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class DeviceStateSync:
    """Keeps one accessory's published state in step with its device.

    Constructing a sync attaches the accessory's services (an
    ``Energy`` placeholder and a contact sensor); :meth:`start` begins
    polling.

    Args:
        accessory: The accessory this sync publishes to.
        config: Validated device configuration.
        telemetry: Fetch capability for the device.
        host: Receives characteristic updates.
        clock: Monotonic clock pacing the loop.
        wall_clock: Source of ``last_update_at`` timestamps.
        error_publisher: Optional structured error reporting.
        health_reporter: Optional per-device health tracking.
    """

    def __init__(
        self,
        accessory: PlatformAccessory,
        config: DeviceConfig,
        telemetry: TelemetryPort,
        host: HostPort,
        *,
        clock: ClockPort | None = None,
        wall_clock: Callable[[], datetime] | None = None,
        error_publisher: ErrorPublisher | None = None,
        health_reporter: HealthReporter | None = None,
    ) -> None:
        self._accessory = accessory
        self._config = config
        self._telemetry = telemetry
        self._host = host
        self._clock = clock if clock is not None else SystemClock()
        self._wall_clock = wall_clock or (lambda: datetime.now(UTC))
        self._error_publisher = error_publisher
        self._health_reporter = health_reporter
        self._log = logging.LoggerAdapter(logger, {"device": accessory.display_name})

        self._energy_service, self._status_service = self._attach_services()

        self._state = UNKNOWN_STATE
        self._lifecycle = SyncState.INITIALIZED
        self._scheduler: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._ticks = 0
        self._fetch_attempts = 0
        self._skipped_ticks = 0
        self._consecutive_failures = 0
        self._reported_errors: set[type[Exception]] = set()

    # -- Read-only properties -----------------------------------------------

    @property
    def accessory(self) -> PlatformAccessory:
        return self._accessory

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def device_id(self) -> str:
        """Topic-safe device key (the accessory identity)."""
        return str(self._accessory.identity)

    @property
    def state(self) -> PublishedState:
        """The currently published state."""
        return self._state

    @property
    def lifecycle(self) -> SyncState:
        return self._lifecycle

    @property
    def fetch_attempts(self) -> int:
        """Number of vitals/lifetime fetch pairs attempted so far."""
        return self._fetch_attempts

    @property
    def skipped_ticks(self) -> int:
        """Ticks skipped because the previous poll was still running."""
        return self._skipped_ticks

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def status_service(self) -> Service:
        return self._status_service

    @property
    def energy_service(self) -> Service:
        return self._energy_service

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        """Start polling: the first tick fires one interval from now.

        Raises:
            RuntimeError: If the sync was already started.
        """
        if self._lifecycle is not SyncState.INITIALIZED:
            msg = f"Sync for {self._accessory.display_name!r} is {self._lifecycle}"
            raise RuntimeError(msg)
        self._lifecycle = SyncState.POLLING
        self._scheduler = asyncio.create_task(
            self._schedule(),
            name=f"wallbridge-sync-{self.device_id}",
        )
        self._log.info(
            "Polling %s every %.0fs",
            self._config.base_url,
            self._config.poll_interval_s,
        )

    async def stop(self) -> None:
        """Cancel the scheduler and any in-flight poll.  Idempotent."""
        if self._lifecycle is SyncState.STOPPED:
            return
        self._lifecycle = SyncState.STOPPED
        tasks = [t for t in (self._scheduler, self._inflight) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._scheduler = None
        self._inflight = None
        self._log.info("Stopped polling")

    async def poll_once(self) -> bool:
        """Run a single merge-then-publish outside the schedule.

        Returns:
            ``True`` if the tick published new state.
        """
        self._ticks += 1
        return await self._poll(self._ticks)

    # -- Scheduling ---------------------------------------------------------

    async def _schedule(self) -> None:
        interval = self._config.poll_interval_s
        next_at = self._clock.now()
        while True:
            next_at += interval
            await self._clock.sleep(max(next_at - self._clock.now(), 0.0))
            self._launch_tick()

    def _launch_tick(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            self._skipped_ticks += 1
            self._log.warning(
                "Previous poll still running after %.0fs, skipping this tick",
                self._config.poll_interval_s,
            )
            return
        self._ticks += 1
        self._inflight = asyncio.create_task(self._run_tick(self._ticks))

    async def _run_tick(self, tick: int) -> None:
        try:
            await self._poll(tick)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Unexpected bug; the loop must survive it.
            self._log.exception("Poll %d failed unexpectedly", tick)

    # -- Merge-then-publish -------------------------------------------------

    async def _poll(self, tick: int) -> bool:
        self._fetch_attempts += 1
        (vitals, vitals_error), (lifetime, lifetime_error) = await asyncio.gather(
            self._fetch_soft("vitals", self._telemetry.fetch_vitals),
            self._fetch_soft("lifetime stats", self._telemetry.fetch_lifetime),
        )

        if vitals is None or lifetime is None:
            self._log.debug("Poll %d incomplete, keeping previous state", tick)
            error = vitals_error or lifetime_error
            if error is not None:
                await self._record_failure(error)
            return False

        if tick <= self._state.tick:
            self._log.debug("Poll %d finished after poll %d, discarded", tick, self._state.tick)
            await self._record_success()
            return False

        # Lifetime counters are fetched but not published yet.
        self._state = PublishedState(
            contactor_closed=vitals.contactor_closed,
            last_update_at=self._wall_clock(),
            tick=tick,
        )
        await self._push(self._state)
        await self._record_success()
        return True

    async def _fetch_soft[T](
        self,
        label: str,
        fetch: Callable[[], Awaitable[T]],
    ) -> tuple[T | None, Exception | None]:
        try:
            return await fetch(), None
        except Exception as exc:
            self._log.warning("Error fetching %s: %s", label, exc)
            return None, exc

    async def _push(self, state: PublishedState) -> None:
        try:
            await self._host.update_characteristic(
                self._accessory,
                self._status_service,
                CONTACT_SENSOR_STATE,
                state.contactor_closed,
            )
        except Exception:
            self._log.exception("Failed to update %s", CONTACT_SENSOR_STATE)

    async def _record_failure(self, error: Exception) -> None:
        self._consecutive_failures += 1
        if self._health_reporter is not None:
            self._health_reporter.set_device_status(
                self.device_id,
                "stale",
                consecutive_failures=self._consecutive_failures,
            )
        # Report once per failure streak and error type.
        if type(error) in self._reported_errors:
            return
        self._reported_errors.add(type(error))
        if self._error_publisher is not None:
            await self._error_publisher.publish(error, device=self.device_id)

    async def _record_success(self) -> None:
        if self._consecutive_failures:
            self._log.info(
                "Device reachable again after %d failed polls",
                self._consecutive_failures,
            )
        self._consecutive_failures = 0
        self._reported_errors.clear()
        if self._health_reporter is not None:
            self._health_reporter.set_device_status(self.device_id, "ok")

    # -- Setup --------------------------------------------------------------

    def _attach_services(self) -> tuple[Service, Service]:
        energy = self._accessory.ensure_service(ENERGY, "Energy", "energy")
        energy.set_characteristic(NAME, "Wall Connector Energy")
        status = self._accessory.ensure_service(CONTACT_SENSOR, subtype="contactsensor")
        status.set_characteristic(NAME, "Wall Connector Status")
        return energy, status
