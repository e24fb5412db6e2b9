"""Public test-support utilities for wallbridge.

Re-exports test doubles and factories so that test suites can import
everything from a single ``wallbridge.testing`` namespace instead of
reaching into private modules.

Provided symbols:

- :class:`BridgeHarness`: Bridge wired to the doubles below.
- :class:`FakeClock`: deterministic clock whose sleeps wake on ``advance()``.
- :class:`FakeTelemetryClient`: scripted telemetry with call counters.
- :class:`MockMqttClient`: in-memory MQTT double with retained messages.
- :class:`RecordingHost`: in-memory host with a seedable cache.
- :func:`make_settings`: ``Settings`` without env or ``.env`` files.
"""

from wallbridge._mqtt import MockMqttClient
from wallbridge.testing._clock import FakeClock, settle
from wallbridge.testing._harness import FIXED_NOW, BridgeHarness
from wallbridge.testing._host import RecordingHost
from wallbridge.testing._settings import make_settings
from wallbridge.testing._telemetry import FakeTelemetryClient

__all__ = [
    "FIXED_NOW",
    "BridgeHarness",
    "FakeClock",
    "FakeTelemetryClient",
    "MockMqttClient",
    "RecordingHost",
    "make_settings",
    "settle",
]
