"""Monotonic clock port and system adapter.

Every deadline in bsnbridge (keep-alive window, poll cooldown, token
expiry) is a point on a monotonic timeline rather than a wall-clock
timestamp.  Deadlines are compared against ``now()``; nothing ever
accumulates sleep durations, so scheduler jitter cannot make a
deadline drift.

``time.monotonic()`` is immune to NTP adjustments and manual
system-clock changes.  Its epoch is arbitrary; only *differences*
between ``now()`` calls are meaningful (PEP 418).
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic clock used for liveness, cooldown and token deadlines.

    The default implementation wraps ``time.monotonic()``.  Tests
    inject :class:`~bsnbridge.testing.FakeClock` to move time forward
    deterministically.
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()``.

    Satisfies :class:`ClockPort` via structural subtyping.
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()
