"""Monotonic clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock for measuring elapsed
time and for the sleeps that pace the polling loop.

**Why monotonic?** time.monotonic() is immune to NTP adjustments and
manual system-clock changes, so poll deadlines computed as
``start + k * interval`` never jump.  The epoch is arbitrary; only
*differences* between now() calls are meaningful (PEP 418).

Sleeping goes through the same port so that tests can drive the
polling cadence with a fake clock instead of real time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock and sleeper for the polling scheduler.

    The default implementation wraps ``time.monotonic()`` and
    ``asyncio.sleep()``.  Tests inject
    :class:`~wallbridge.testing.FakeClock`, whose ``advance()`` wakes
    due sleepers deterministically.
    """

    def now(self) -> float:
        """Return monotonic time in seconds.

        Returns:
            A float representing seconds from an arbitrary epoch.
            Only the *difference* between two calls is meaningful.
        """
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for *seconds* of this clock's time."""
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()``.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).

    Usage::

        clock = SystemClock()
        start = clock.now()
        await clock.sleep(1.5)
        elapsed = clock.now() - start
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        """Sleep on the running event loop."""
        await asyncio.sleep(seconds)
