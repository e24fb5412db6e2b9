"""Integration tests: full bridge lifecycle against the mock broker.

Each test drives :class:`~wallbridge.testing.BridgeHarness` through
startup, a stretch of fake time and shutdown, then inspects what a
broker subscriber would have seen.

Test Techniques Used:
    - Scenario Testing: first start, restart, outage and recovery
    - Clock Injection: FakeClock compresses hours into microseconds
    - State-based Testing: retained topics as the observable outcome
"""

from __future__ import annotations

import json

import pytest

from wallbridge._accessory import Origin
from wallbridge._exceptions import TelemetryError
from wallbridge._identity import identity_for
from wallbridge._telemetry import LifetimeSnapshot, VitalsSnapshot
from wallbridge.testing import BridgeHarness, MockMqttClient

pytestmark = [pytest.mark.integration, pytest.mark.usefixtures("restore_root_logger")]

ADDRESS = "10.0.0.42"
IDENTITY = identity_for(ADDRESS)
ACCESSORY_TOPIC = f"testbridge/{IDENTITY}/accessory"
STATE_TOPIC = f"testbridge/{IDENTITY}/contactsensor/ContactSensorState"


def _harness(mqtt: MockMqttClient | None = None) -> BridgeHarness:
    return BridgeHarness.create(
        mqtt_client=mqtt,
        devices=[{"name": "Garage", "ip": ADDRESS, "pollIntervalMs": 300_000}],
    )


def _states(mqtt: MockMqttClient) -> list[bool]:
    return [json.loads(p) for p, _, _ in mqtt.get_messages_for(STATE_TOPIC)]


class TestRestart:
    """A restarted bridge finds its accessory in the broker's retained state.

    Technique: Scenario Testing across two bridge runs sharing one broker.
    """

    async def test_restart_reuses_cached_accessory(self) -> None:
        first = _harness()
        async with first.running():
            pass

        first.mqtt.reset()
        second = _harness(first.mqtt)
        async with second.running():
            controller = second.bridge.controller
            assert controller is not None
            [sync] = controller.syncs
            assert sync.accessory.origin is Origin.CACHED
            assert sync.accessory.identity == IDENTITY

        assert second.mqtt.get_messages_for(ACCESSORY_TOPIC) == []
        assert ACCESSORY_TOPIC in second.mqtt.retained

    async def test_restart_keeps_polling(self) -> None:
        first = _harness()
        async with first.running():
            pass
        first.mqtt.reset()

        second = _harness(first.mqtt)
        async with second.running():
            await second.clock.advance(300)
            second.telemetry[ADDRESS].vitals = VitalsSnapshot(contactor_closed=True)
            await second.clock.advance(300)

        assert _states(second.mqtt) == [False, True]
        assert json.loads(second.mqtt.retained[STATE_TOPIC]) is True


class TestCadence:
    """Technique: Clock Injection over a 15 minute window."""

    async def test_fifteen_minutes_is_three_polls(self) -> None:
        harness = _harness()

        async with harness.running():
            await harness.clock.advance(900)

        telemetry = harness.telemetry[ADDRESS]
        assert telemetry.vitals_calls == 3
        assert telemetry.lifetime_calls == 3
        assert len(_states(harness.mqtt)) == 3


class TestOutage:
    """The device drops off the network and comes back.

    Technique: Scenario Testing with scripted telemetry.
    """

    async def test_partial_failure_publishes_nothing(self) -> None:
        harness = _harness()

        async with harness.running():
            await harness.clock.advance(300)
            telemetry = harness.telemetry[ADDRESS]
            telemetry.vitals = VitalsSnapshot(contactor_closed=True)
            telemetry.script_lifetime(TelemetryError("HTTP 500", endpoint="/api/1/lifetime"))
            await harness.clock.advance(300)

        assert _states(harness.mqtt) == [False]

    async def test_outage_reported_once_and_marked_stale(self) -> None:
        harness = _harness()

        async with harness.running():
            await harness.clock.advance(300)
            telemetry = harness.telemetry[ADDRESS]
            telemetry.vitals = TelemetryError("refused", endpoint="/api/1/vitals")
            await harness.clock.advance(900)
            heartbeat = json.loads(harness.mqtt.retained["testbridge/status"])

            telemetry.vitals = VitalsSnapshot(contactor_closed=True)
            telemetry.lifetime = LifetimeSnapshot(alert_count=0)
            await harness.clock.advance(300)
            recovered = json.loads(harness.mqtt.retained["testbridge/status"])

        errors = harness.mqtt.get_messages_for(f"testbridge/{IDENTITY}/error")
        assert len(errors) == 1
        assert json.loads(errors[0][0])["details"] == {"endpoint": "/api/1/vitals"}
        assert heartbeat["devices"][str(IDENTITY)] == {
            "status": "stale",
            "consecutive_failures": 3,
        }
        assert recovered["devices"][str(IDENTITY)]["status"] == "ok"
        assert _states(harness.mqtt) == [False, True]


class TestDefaults:
    """Technique: Specification-based Testing of default substitution."""

    async def test_default_device_address(self) -> None:
        harness = BridgeHarness.create()

        async with harness.running():
            pass

        default_id = identity_for("192.168.122.146")
        descriptor = json.loads(harness.mqtt.retained[f"testbridge/{default_id}/accessory"])
        assert descriptor["display_name"] == "Tesla Wall Connector"
        assert descriptor["context"] == {"address": "192.168.122.146"}
        assert "192.168.122.146" in harness.telemetry
