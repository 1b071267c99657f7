from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .common import clamp01, round_half_up
from .telemetry import TelemetryCollector, TelemetrySample

MIN_PATH_SAMPLES = 10
MIN_TIMING_EVENTS = 3
MIN_VELOCITY_SAMPLES = 5

PASS_THRESHOLD = 55
CONFIDENCE_CAP = 99
CONFIDENCE_SCALE = 1.1

MAX_PATH_NATURALNESS = 25
MAX_TIMING_HUMANNESS = 25
MAX_BIO_SIGNAL = 15
MAX_VELOCITY_PROFILE = 15
MAX_TASK_ACCURACY = 20


class ChallengeKind(StrEnum):
    RHYTHM = "rhythm"
    PRECISION = "precision"


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    path_naturalness: int
    timing_humanness: int
    bio_signal: int
    velocity_profile: int
    task_accuracy: int

    @property
    def total(self) -> int:
        return (
            self.path_naturalness
            + self.timing_humanness
            + self.bio_signal
            + self.velocity_profile
            + self.task_accuracy
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "path_naturalness": self.path_naturalness,
            "timing_humanness": self.timing_humanness,
            "bio_signal": self.bio_signal,
            "velocity_profile": self.velocity_profile,
            "task_accuracy": self.task_accuracy,
        }


@dataclass(frozen=True, slots=True)
class VerificationDetails:
    """Raw counters shown next to a verdict. Not used for the decision."""

    pointer_samples: int
    micro_movements: int
    hesitations: int
    path_jitter: float
    timing_variance: float
    velocity_naturalness: float


@dataclass(frozen=True, slots=True)
class VerificationResult:
    kind: ChallengeKind
    scores: ScoreBreakdown
    total: int
    is_human: bool
    confidence: int
    total_time_ms: float
    details: VerificationDetails


def path_jitter(positions: Sequence[TelemetrySample]) -> float:
    """Mean absolute heading change over consecutive point triplets (radians)."""

    n = len(positions)
    if n < MIN_PATH_SAMPLES:
        return 0.0
    acc = 0.0
    for i in range(2, n):
        p0, p1, p2 = positions[i - 2], positions[i - 1], positions[i]
        acc += abs(math.atan2(p2.y - p1.y, p2.x - p1.x) - math.atan2(p1.y - p0.y, p1.x - p0.x))
    return acc / (n - 2)


def timing_variance(timestamps_ms: Sequence[float]) -> float:
    """Population standard deviation of inter-event intervals (ms)."""

    if len(timestamps_ms) < MIN_TIMING_EVENTS:
        return 0.0
    intervals = [b - a for a, b in zip(timestamps_ms, timestamps_ms[1:])]
    mean = sum(intervals) / len(intervals)
    return math.sqrt(sum((iv - mean) ** 2 for iv in intervals) / len(intervals))


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def velocity_naturalness(velocities: Sequence[float]) -> float:
    """Fraction of velocity deltas whose sign differs from the previous delta."""

    if len(velocities) < MIN_VELOCITY_SAMPLES:
        return 0.0
    deltas = [b - a for a, b in zip(velocities, velocities[1:])]
    flips = sum(1 for i in range(1, len(deltas)) if _sign(deltas[i]) != _sign(deltas[i - 1]))
    return flips / len(deltas)


def micro_movement_ratio(micro_movements: int, samples: int) -> float:
    return 0.0 if samples <= 0 else micro_movements / samples


def score_path_naturalness(jitter: float, *, samples: int) -> int:
    if samples < MIN_PATH_SAMPLES:
        return 0
    if 0.05 < jitter < 1.5:
        return 25
    if jitter > 0.02:
        return 15
    return 5


def score_timing_humanness(variance: float) -> int:
    if 15.0 < variance < 300.0:
        return 25
    if variance > 5.0:
        return 15
    return 0


def score_bio_signal(ratio: float) -> int:
    if 0.02 < ratio < 0.5:
        return 15
    if ratio > 0.01:
        return 8
    return 0


def score_velocity_profile(naturalness: float) -> int:
    if naturalness > 0.15:
        return 15
    if naturalness > 0.05:
        return 8
    return 2


def score_task_accuracy(accuracy: float) -> int:
    return round_half_up(clamp01(accuracy) * MAX_TASK_ACCURACY)


def confidence_for(total: int) -> int:
    return min(CONFIDENCE_CAP, round_half_up(total * CONFIDENCE_SCALE))


def analyze(
    collector: TelemetryCollector,
    *,
    kind: ChallengeKind,
    accuracy: float,
) -> VerificationResult:
    """Score one session. Reads the collector, never mutates it."""

    kind = ChallengeKind(kind)
    positions = collector.positions()
    velocities = collector.velocities()
    timings = collector.taps() if kind is ChallengeKind.RHYTHM else collector.clicks()

    jitter = path_jitter(positions)
    variance = timing_variance(timings)
    ratio = micro_movement_ratio(collector.micro_movements, len(positions))
    naturalness = velocity_naturalness(velocities)

    scores = ScoreBreakdown(
        path_naturalness=score_path_naturalness(jitter, samples=len(positions)),
        timing_humanness=score_timing_humanness(variance),
        bio_signal=score_bio_signal(ratio),
        velocity_profile=score_velocity_profile(naturalness),
        task_accuracy=score_task_accuracy(accuracy),
    )
    total = scores.total

    return VerificationResult(
        kind=kind,
        scores=scores,
        total=total,
        is_human=total >= PASS_THRESHOLD,
        confidence=confidence_for(total),
        total_time_ms=collector.elapsed_ms(),
        details=VerificationDetails(
            pointer_samples=len(positions),
            micro_movements=collector.micro_movements,
            hesitations=collector.hesitations,
            path_jitter=jitter,
            timing_variance=variance,
            velocity_naturalness=naturalness,
        ),
    )
