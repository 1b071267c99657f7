from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

SWEET_SPOT = 0.7
ERROR_SPAN = 0.4
HIT_THRESHOLD = 0.3


@dataclass(frozen=True, slots=True)
class PrecisionTarget:
    index: int
    x_pct: float
    y_pct: float
    duration_ms: int
    size: int


_POSITIONS: tuple[tuple[float, float], ...] = (
    (50.0, 35.0),
    (25.0, 60.0),
    (75.0, 50.0),
    (40.0, 75.0),
    (60.0, 28.0),
)

PRECISION_TARGETS: tuple[PrecisionTarget, ...] = tuple(
    PrecisionTarget(index=i, x_pct=x, y_pct=y, duration_ms=2200 - i * 150, size=90 - i * 6)
    for i, (x, y) in enumerate(_POSITIONS)
)


@dataclass(frozen=True, slots=True)
class RingOutcome:
    hit: bool
    timing: float
    clicked: bool


def ring_click_accuracy(progress: float) -> float:
    """Reward clicks near 70% of the shrink; zero beyond 40 points either side."""

    # Rounded so that 0.3 and 1.1 land exactly on the clamp despite float noise.
    error = round(abs(progress - SWEET_SPOT), 9)
    return 1.0 - min(1.0, error / ERROR_SPAN)


def is_ring_hit(accuracy: float) -> bool:
    return accuracy > HIT_THRESHOLD


def click_outcome(elapsed_ms: float, duration_ms: float) -> RingOutcome:
    accuracy = ring_click_accuracy(elapsed_ms / duration_ms)
    return RingOutcome(hit=is_ring_hit(accuracy), timing=accuracy, clicked=True)


def expired_outcome() -> RingOutcome:
    # An unclicked ring keeps timing=1; only the hit count penalises it.
    return RingOutcome(hit=False, timing=1.0, clicked=False)


def precision_accuracy(outcomes: Sequence[RingOutcome], *, rounds: int) -> float:
    if rounds <= 0:
        raise ValueError("rounds must be > 0")
    hits = sum(1 for o in outcomes if o.hit)
    mean_timing = sum(o.timing for o in outcomes) / rounds
    return 0.5 * (hits / rounds) + 0.5 * mean_timing
