"""Unit tests for wallbridge._telemetry: models and HTTP client.

Test Techniques Used:
    - In-process Server: aiohttp.test_utils.TestServer plays the
      wall connector's local API
    - Error Condition Testing: non-200, malformed JSON, missing
      fields, timeouts and refused connections all become
      TelemetryError
    - Resource Ownership: borrowed sessions stay open
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest
from aiohttp import test_utils, web

from wallbridge._exceptions import TelemetryError
from wallbridge._telemetry import (
    LIFETIME_ENDPOINT,
    VITALS_ENDPOINT,
    LifetimeSnapshot,
    TelemetryPort,
    VitalsSnapshot,
    WallConnectorClient,
)
from wallbridge.testing import FakeTelemetryClient

VITALS_PAYLOAD: dict[str, Any] = {
    "contactor_closed": True,
    "vehicle_connected": True,
    "session_s": 812,
    "grid_v": 233.1,
    "grid_hz": 49.98,
    "vehicle_current_a": 15.8,
    "session_energy_wh": 3060.0,
    "evse_state": 11,
    "uptime_s": 123456,
    "handle_temp_c": 22.1,
    "config_status": 5,
}

LIFETIME_PAYLOAD: dict[str, Any] = {
    "contactor_cycles": 310,
    "alert_count": 2,
    "charge_starts": 305,
    "energy_wh": 1234567.5,
    "uptime_s": 98765432,
}


class FakeWallConnector:
    """Scriptable stand-in for the device's HTTP API."""

    def __init__(self) -> None:
        self.responses: dict[str, tuple[int, Any]] = {
            VITALS_ENDPOINT: (200, VITALS_PAYLOAD),
            LIFETIME_ENDPOINT: (200, LIFETIME_PAYLOAD),
        }
        self.delay = 0.0
        self.hits: list[str] = []

    async def handle(self, request: web.Request) -> web.Response:
        self.hits.append(request.path)
        if self.delay:
            await asyncio.sleep(self.delay)
        status, body = self.responses[request.path]
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(VITALS_ENDPOINT, self.handle)
        app.router.add_get(LIFETIME_ENDPOINT, self.handle)
        return app


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def device() -> FakeWallConnector:
    return FakeWallConnector()


@pytest.fixture
async def server(device: FakeWallConnector) -> AsyncIterator[test_utils.TestServer]:
    async with test_utils.TestServer(device.app()) as srv:
        yield srv


@pytest.fixture
async def client(server: test_utils.TestServer) -> AsyncIterator[WallConnectorClient]:
    wc = WallConnectorClient(str(server.make_url("/")), timeout=2.0)
    yield wc
    await wc.close()


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestModels:
    """Response model parsing.

    Technique: Specification-based Testing.
    """

    def test_vitals_requires_contactor_closed(self) -> None:
        with pytest.raises(ValueError):
            VitalsSnapshot.model_validate({"vehicle_connected": True})

    def test_vitals_keeps_unknown_fields(self) -> None:
        vitals = VitalsSnapshot.model_validate(VITALS_PAYLOAD)

        assert vitals.contactor_closed is True
        assert vitals.model_extra == {"config_status": 5}

    def test_lifetime_fields_are_optional(self) -> None:
        assert LifetimeSnapshot.model_validate({}).energy_wh is None


# ---------------------------------------------------------------------------
# WallConnectorClient
# ---------------------------------------------------------------------------


class TestWallConnectorClient:
    """HTTP client against an in-process device.

    Technique: In-process Server with scripted responses.
    """

    def test_satisfies_telemetry_port(self) -> None:
        assert isinstance(WallConnectorClient("http://10.0.0.42"), TelemetryPort)
        assert isinstance(FakeTelemetryClient(), TelemetryPort)

    def test_base_url_trailing_slash_stripped(self) -> None:
        assert WallConnectorClient("http://10.0.0.42/").base_url == "http://10.0.0.42"

    async def test_fetch_vitals(
        self,
        client: WallConnectorClient,
        device: FakeWallConnector,
    ) -> None:
        vitals = await client.fetch_vitals()

        assert vitals.contactor_closed is True
        assert vitals.grid_v == 233.1
        assert device.hits == [VITALS_ENDPOINT]

    async def test_fetch_lifetime(
        self,
        client: WallConnectorClient,
        device: FakeWallConnector,
    ) -> None:
        lifetime = await client.fetch_lifetime()

        assert lifetime.energy_wh == 1234567.5
        assert device.hits == [LIFETIME_ENDPOINT]

    async def test_non_200_raises_with_status(
        self,
        client: WallConnectorClient,
        device: FakeWallConnector,
    ) -> None:
        device.responses[VITALS_ENDPOINT] = (503, "busy")

        with pytest.raises(TelemetryError) as exc_info:
            await client.fetch_vitals()

        assert exc_info.value.status_code == 503
        assert exc_info.value.endpoint == VITALS_ENDPOINT

    async def test_malformed_json_raises(
        self,
        client: WallConnectorClient,
        device: FakeWallConnector,
    ) -> None:
        device.responses[VITALS_ENDPOINT] = (200, "{not json")

        with pytest.raises(TelemetryError, match="Invalid JSON"):
            await client.fetch_vitals()

    async def test_non_object_json_raises(
        self,
        client: WallConnectorClient,
        device: FakeWallConnector,
    ) -> None:
        device.responses[LIFETIME_ENDPOINT] = (200, [1, 2, 3])

        with pytest.raises(TelemetryError, match="Expected a JSON object"):
            await client.fetch_lifetime()

    async def test_missing_required_field_raises(
        self,
        client: WallConnectorClient,
        device: FakeWallConnector,
    ) -> None:
        device.responses[VITALS_ENDPOINT] = (200, {"vehicle_connected": False})

        with pytest.raises(TelemetryError, match="Unexpected payload"):
            await client.fetch_vitals()

    async def test_timeout_raises(
        self,
        server: test_utils.TestServer,
        device: FakeWallConnector,
    ) -> None:
        device.delay = 1.0
        wc = WallConnectorClient(str(server.make_url("/")), timeout=0.05)
        try:
            with pytest.raises(TelemetryError, match="failed"):
                await wc.fetch_vitals()
        finally:
            await wc.close()

    async def test_connection_refused_raises(self) -> None:
        wc = WallConnectorClient("http://127.0.0.1:1", timeout=1.0)
        try:
            with pytest.raises(TelemetryError) as exc_info:
                await wc.fetch_vitals()
        finally:
            await wc.close()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientError)

    async def test_borrowed_session_is_not_closed(self, server: test_utils.TestServer) -> None:
        async with aiohttp.ClientSession() as session:
            wc = WallConnectorClient(str(server.make_url("/")), session)
            await wc.fetch_vitals()
            await wc.close()

            assert not session.closed
