"""Monotonic clock port and system adapter.

Pending shadow requests are stamped with the time they were issued so
results can report how long the round trip took.  Wall-clock time is
the wrong source for that: NTP steps would make requests appear to
finish before they started.  ``time.monotonic()`` only moves forward
(PEP 418); its epoch is arbitrary, so only differences are meaningful.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock for timing measurements.

    The default implementation wraps ``time.monotonic()``.  Tests
    inject a deterministic fake clock for reproducible timing.
    """

    def now(self) -> float:
        """Return monotonic time in seconds.

        Returns:
            A float representing seconds from an arbitrary epoch.
            Only the *difference* between two calls is meaningful.
        """
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()``.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()
