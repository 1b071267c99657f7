from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

DEFAULT_TOLERANCE_MS = 250.0
MATCH_WEIGHT = 0.6
TIMING_WEIGHT = 0.4


@dataclass(frozen=True, slots=True)
class RhythmPattern:
    name: str
    beats: tuple[int, ...]  # ms offsets from pattern start

    @property
    def duration_ms(self) -> int:
        return self.beats[-1]


RHYTHM_PATTERNS: tuple[RhythmPattern, ...] = (
    RhythmPattern("4/4 Basic", (0, 600, 1200, 1800, 2400, 3000, 3600, 4200)),
    RhythmPattern("Syncopated", (0, 545, 1090, 1450, 2180, 2725, 3270, 3630, 4360)),
    RhythmPattern("Swing", (0, 632, 948, 1580, 2212, 2528, 3160, 3792, 4108)),
)


@dataclass(frozen=True, slots=True)
class RhythmEvaluation:
    matched: int
    total_beats: int
    mean_error_ms: float | None
    timing_quality: float
    accuracy: float


def evaluate_rhythm(
    beats: Sequence[float],
    taps: Sequence[float],
    *,
    tolerance_ms: float = DEFAULT_TOLERANCE_MS,
) -> RhythmEvaluation:
    """Match each tap to its nearest beat and blend hit ratio with timing quality.

    A tap counts when its nearest beat is strictly closer than the tolerance.
    Several taps may match the same beat.
    """

    if not beats:
        raise ValueError("beats must not be empty")
    if tolerance_ms <= 0.0:
        raise ValueError("tolerance_ms must be > 0")

    matched = 0
    total_error = 0.0
    for tap in taps:
        nearest = min(abs(tap - beat) for beat in beats)
        if nearest < tolerance_ms:
            matched += 1
            total_error += nearest

    if matched == 0:
        mean_error = None
        timing_quality = 0.0
    else:
        mean_error = total_error / matched
        timing_quality = max(0.0, 1.0 - mean_error / tolerance_ms)

    hit_ratio = matched / len(beats)
    return RhythmEvaluation(
        matched=matched,
        total_beats=len(beats),
        mean_error_ms=mean_error,
        timing_quality=timing_quality,
        accuracy=MATCH_WEIGHT * hit_ratio + TIMING_WEIGHT * timing_quality,
    )
