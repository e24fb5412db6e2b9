"""Wall connector telemetry: response models, port, and HTTP adapter.

The wall connector serves two unauthenticated JSON endpoints over plain
HTTP::

    GET http://<address>/api/1/vitals     instantaneous readings
    GET http://<address>/api/1/lifetime   cumulative counters

:class:`WallConnectorClient` wraps both behind :class:`TelemetryPort`
and turns every way a request can go wrong (connection error, timeout,
non-200, malformed JSON, missing fields) into a single
:class:`~wallbridge._exceptions.TelemetryError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError

from wallbridge._exceptions import TelemetryError

logger = logging.getLogger(__name__)

VITALS_ENDPOINT = "/api/1/vitals"
LIFETIME_ENDPOINT = "/api/1/lifetime"

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class VitalsSnapshot(BaseModel):
    """Instantaneous device readings.

    Only ``contactor_closed`` feeds published state.  The other known
    fields are typed for convenience; unknown fields are kept as extras
    so firmware additions pass through untouched.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    contactor_closed: bool
    vehicle_connected: bool | None = None
    session_s: int | None = None
    grid_v: float | None = None
    grid_hz: float | None = None
    vehicle_current_a: float | None = None
    session_energy_wh: float | None = None
    evse_state: int | None = None
    uptime_s: int | None = None
    handle_temp_c: float | None = None
    pcba_temp_c: float | None = None
    mcu_temp_c: float | None = None


class LifetimeSnapshot(BaseModel):
    """Cumulative device counters.  Fetched every tick, not yet published."""

    model_config = ConfigDict(extra="allow", frozen=True)

    contactor_cycles: int | None = None
    contactor_cycles_loaded: int | None = None
    alert_count: int | None = None
    thermal_foldbacks: int | None = None
    charge_starts: int | None = None
    energy_wh: float | None = None
    connector_cycles: int | None = None
    uptime_s: int | None = None
    charging_time_s: int | None = None


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


@runtime_checkable
class TelemetryPort(Protocol):
    """Fetch capability for one device.

    Implementations raise :class:`TelemetryError` on failure; the
    polling loop relies on nothing else escaping.
    """

    async def fetch_vitals(self) -> VitalsSnapshot: ...

    async def fetch_lifetime(self) -> LifetimeSnapshot: ...


# ---------------------------------------------------------------------------
# HTTP adapter
# ---------------------------------------------------------------------------


class WallConnectorClient:
    """aiohttp-backed :class:`TelemetryPort` for one wall connector.

    The session is owned by the caller so that several devices can
    share one connection pool; :meth:`close` is a no-op for borrowed
    sessions.
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch_vitals(self) -> VitalsSnapshot:
        data = await self._get_json(VITALS_ENDPOINT)
        return self._parse(VitalsSnapshot, data, VITALS_ENDPOINT)

    async def fetch_lifetime(self) -> LifetimeSnapshot:
        data = await self._get_json(LIFETIME_ENDPOINT)
        return self._parse(LifetimeSnapshot, data, LIFETIME_ENDPOINT)

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # -- internals ----------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _get_json(self, endpoint: str) -> Any:
        url = f"{self._base_url}{endpoint}"
        logger.debug("GET %s", url)
        try:
            async with self._get_session().get(url, timeout=self._timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise TelemetryError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        endpoint=endpoint,
                        status_code=resp.status,
                    )
                return await resp.json(content_type=None)
        except TelemetryError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TelemetryError(
                f"Request to {url} failed: {exc!r}",
                endpoint=endpoint,
            ) from exc
        except ValueError as exc:
            raise TelemetryError(
                f"Invalid JSON from {endpoint}: {exc}",
                endpoint=endpoint,
            ) from exc

    @staticmethod
    def _parse[M: BaseModel](model: type[M], data: Any, endpoint: str) -> M:
        if not isinstance(data, dict):
            msg = f"Expected a JSON object from {endpoint}, got {type(data).__name__}"
            raise TelemetryError(msg, endpoint=endpoint)
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            msg = f"Unexpected payload from {endpoint}: {exc}"
            raise TelemetryError(msg, endpoint=endpoint) from exc
