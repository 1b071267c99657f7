from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time source.

    The verification engine never reads wall time directly; everything that
    schedules, throttles or timestamps goes through this interface.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


def now_ms(clock: Clock) -> float:
    return clock.now() * 1000.0
