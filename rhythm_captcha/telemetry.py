from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass

from .clock import Clock, now_ms


@dataclass(frozen=True, slots=True)
class TelemetryConfig:
    min_interval_ms: float = 30.0
    max_samples: int = 150
    micro_movement_max: float = 3.0
    hesitation_pause_ms: float = 200.0
    hesitation_min_distance: float = 5.0


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    x: float
    y: float
    timestamp_ms: float


class TelemetryCollector:
    """Bounded pointer/tap telemetry for one verification attempt.

    Pointer samples are throttled: an event arriving less than
    ``min_interval_ms`` after the last *accepted* sample is dropped, the first
    one of a burst is kept. Positions and velocities share a FIFO window of
    ``max_samples`` entries and stay index-aligned.

    Tap and click timestamps are unbounded; the challenge itself bounds them.
    Nothing here validates its input.
    """

    def __init__(self, *, clock: Clock, config: TelemetryConfig | None = None) -> None:
        cfg = config or TelemetryConfig()
        if cfg.max_samples <= 0:
            raise ValueError("max_samples must be > 0")
        if cfg.min_interval_ms < 0.0:
            raise ValueError("min_interval_ms must be >= 0")

        self._clock = clock
        self._cfg = cfg
        self._started_at_ms = now_ms(clock)

        self._positions: deque[TelemetrySample] = deque(maxlen=cfg.max_samples)
        self._velocities: deque[float] = deque(maxlen=cfg.max_samples)
        self._taps: list[float] = []
        self._clicks: list[float] = []

        self._micro_movements = 0
        self._hesitations = 0
        self._accepted = 0
        self._last: TelemetrySample | None = None

    @property
    def started_at_ms(self) -> float:
        return self._started_at_ms

    @property
    def micro_movements(self) -> int:
        return self._micro_movements

    @property
    def hesitations(self) -> int:
        return self._hesitations

    @property
    def accepted_count(self) -> int:
        """Pointer samples accepted over the whole session, evicted ones included."""
        return self._accepted

    def positions(self) -> tuple[TelemetrySample, ...]:
        return tuple(self._positions)

    def velocities(self) -> tuple[float, ...]:
        return tuple(self._velocities)

    def taps(self) -> tuple[float, ...]:
        return tuple(self._taps)

    def clicks(self) -> tuple[float, ...]:
        return tuple(self._clicks)

    def elapsed_ms(self) -> float:
        return now_ms(self._clock) - self._started_at_ms

    def track_pointer(self, x: float, y: float) -> bool:
        """Record a pointer position. Returns False when throttled."""

        now = now_ms(self._clock)
        last = self._last
        if last is not None and now - last.timestamp_ms < self._cfg.min_interval_ms:
            return False

        sample = TelemetrySample(x=float(x), y=float(y), timestamp_ms=now)
        if last is None:
            # Nothing to measure displacement against yet.
            velocity = 0.0
        else:
            dt = now - last.timestamp_ms
            dist = math.hypot(sample.x - last.x, sample.y - last.y)
            velocity = dist / dt if dt > 0 else 0.0
            if 0.0 < dist < self._cfg.micro_movement_max:
                self._micro_movements += 1
            if dt > self._cfg.hesitation_pause_ms and dist > self._cfg.hesitation_min_distance:
                self._hesitations += 1

        self._positions.append(sample)
        self._velocities.append(velocity)
        self._accepted += 1
        self._last = sample
        return True

    def track_tap(self, timestamp_ms: float) -> None:
        self._taps.append(float(timestamp_ms))

    def track_click(self, timestamp_ms: float) -> None:
        self._clicks.append(float(timestamp_ms))
