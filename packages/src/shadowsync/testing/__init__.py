"""Public test-support utilities for shadowsync.

Re-exports test doubles and factories so that consumer test suites can
import everything from ``shadowsync.testing``:

- :class:`MockShadowConnection` — shadow transport double that records
  requests and emits events on demand.
- :class:`NullShadowConnection` — permanently connected, never sends.
- :class:`MockMqttClient` — in-memory MQTT double.
- :class:`FakeClock` — deterministic clock for timing tests.
- :func:`make_settings` — ``Settings`` without ``.env`` files.
"""

from shadowsync._connection import MockShadowConnection, NullShadowConnection
from shadowsync._mqtt import MockMqttClient
from shadowsync.testing._clock import FakeClock
from shadowsync.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "MockMqttClient",
    "MockShadowConnection",
    "NullShadowConnection",
    "make_settings",
]
