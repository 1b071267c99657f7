from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from .clock import Clock, now_ms
from .common import SeededRng, clamp01
from .precision import (
    PRECISION_TARGETS,
    PrecisionTarget,
    RingOutcome,
    click_outcome,
    expired_outcome,
    precision_accuracy,
)
from .rhythm import RHYTHM_PATTERNS, RhythmEvaluation, RhythmPattern, evaluate_rhythm
from .scheduler import ScheduledTask, Scheduler
from .scoring import ChallengeKind, VerificationResult, analyze
from .telemetry import TelemetryCollector, TelemetryConfig

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    IDLE = "idle"
    SELECT = "select"
    LISTEN = "listen"
    PLAY = "play"
    TARGET = "target"
    CHECKING = "checking"
    RESULT = "result"


class Cue(StrEnum):
    KICK = "kick"  # pattern beat
    TAP = "tap"  # user tap echo
    HIT = "hit"
    MISS = "miss"


class CuePlayer(Protocol):
    def play(self, cue: Cue) -> None: ...


class SilentCuePlayer:
    def play(self, cue: Cue) -> None:
        _ = cue


@dataclass(frozen=True, slots=True)
class CaptchaConfig:
    listen_grace_ms: float = 800.0
    beat_flash_ms: float = 120.0
    settle_ms: float = 300.0
    tap_tolerance_ms: float = 250.0
    ring_count: int = 5
    ring_expiry_gap_ms: float = 400.0
    ring_click_gap_ms: float = 500.0
    checking_ms: float = 2200.0
    hit_cue_threshold: float = 0.5


@dataclass(frozen=True, slots=True)
class RingView:
    index: int
    x_pct: float
    y_pct: float
    size: int
    progress: float


@dataclass(frozen=True, slots=True)
class CaptchaSnapshot:
    """View model for the UI (pure data)."""

    phase: Phase
    kind: ChallengeKind | None
    prompt: str
    pattern_name: str | None
    beat_index: int
    beats_total: int
    taps: int
    ring: RingView | None
    round_index: int
    rounds_total: int
    outcomes: tuple[RingOutcome, ...]
    result: VerificationResult | None
    can_retry: bool


@dataclass(slots=True)
class _ActiveRing:
    target: PrecisionTarget
    started_at_ms: float
    expiry: ScheduledTask


@dataclass(slots=True)
class _Attempt:
    """Everything one attempt owns; ``reset()`` swaps in a new instance."""

    collector: TelemetryCollector
    kind: ChallengeKind | None = None
    pattern: RhythmPattern | None = None
    beat_index: int = -1
    pattern_started_at_ms: float | None = None
    taps: list[float] = field(default_factory=list)
    evaluation_pending: bool = False
    rhythm_evaluation: RhythmEvaluation | None = None
    ring: _ActiveRing | None = None
    round_index: int = 0
    outcomes: list[RingOutcome] = field(default_factory=list)
    task_accuracy: float | None = None
    result: VerificationResult | None = None
    reported: bool = False


class ChallengeOrchestrator:
    """Phase machine for one human-verification flow.

    idle -> select -> (listen -> play | target) -> checking -> result

    Each attempt owns a fresh TelemetryCollector. Timed transitions live in a
    Scheduler that the host drives through ``update()``; ``reset()`` drops
    every pending continuation before the session is replaced.
    ``on_result`` fires exactly once per attempt that reaches RESULT.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        on_result: Callable[[bool], None] | None = None,
        audio: CuePlayer | None = None,
        config: CaptchaConfig | None = None,
        telemetry_config: TelemetryConfig | None = None,
    ) -> None:
        cfg = config or CaptchaConfig()
        if cfg.ring_count <= 0 or cfg.ring_count > len(PRECISION_TARGETS):
            raise ValueError(f"ring_count must be in [1, {len(PRECISION_TARGETS)}]")
        if cfg.tap_tolerance_ms <= 0.0:
            raise ValueError("tap_tolerance_ms must be > 0")
        for name in ("listen_grace_ms", "settle_ms", "ring_expiry_gap_ms", "ring_click_gap_ms", "checking_ms"):
            if getattr(cfg, name) < 0.0:
                raise ValueError(f"{name} must be >= 0")

        self._clock = clock
        self._cfg = cfg
        self._telemetry_cfg = telemetry_config
        self._rng = SeededRng(seed)
        self._on_result = on_result
        self._audio: CuePlayer = audio or SilentCuePlayer()
        self._scheduler = Scheduler(clock=clock)

        self._phase = Phase.IDLE
        self._attempt = self._new_attempt()

    def _new_attempt(self) -> _Attempt:
        return _Attempt(collector=TelemetryCollector(clock=self._clock, config=self._telemetry_cfg))

    # ---- accessors -------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def kind(self) -> ChallengeKind | None:
        return self._attempt.kind

    @property
    def collector(self) -> TelemetryCollector:
        return self._attempt.collector

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def pattern(self) -> RhythmPattern | None:
        return self._attempt.pattern

    @property
    def result(self) -> VerificationResult | None:
        return self._attempt.result

    @property
    def task_accuracy(self) -> float | None:
        return self._attempt.task_accuracy

    @property
    def rhythm_evaluation(self) -> RhythmEvaluation | None:
        return self._attempt.rhythm_evaluation

    def taps(self) -> tuple[float, ...]:
        return tuple(self._attempt.taps)

    def outcomes(self) -> tuple[RingOutcome, ...]:
        return tuple(self._attempt.outcomes)

    def can_retry(self) -> bool:
        return self._phase is Phase.RESULT and self._attempt.result is not None and not self._attempt.result.is_human

    # ---- host loop ---------------------------------------------------------

    def update(self) -> None:
        self._scheduler.run_due()

    def track_pointer(self, x: float, y: float) -> bool:
        return self._attempt.collector.track_pointer(x, y)

    # ---- transitions -------------------------------------------------------

    def begin(self) -> bool:
        if self._phase is not Phase.IDLE:
            return False
        self._set_phase(Phase.SELECT)
        return True

    def select(self, kind: ChallengeKind | str) -> bool:
        kind = ChallengeKind(kind)
        if self._phase is not Phase.SELECT:
            return False
        self._attempt.kind = kind
        if kind is ChallengeKind.RHYTHM:
            self._start_listen()
        else:
            self._start_precision()
        return True

    def replay(self) -> bool:
        """Restart the listen phase with a freshly chosen pattern."""

        if self._phase is not Phase.PLAY or self._attempt.evaluation_pending:
            return False
        self._start_listen()
        return True

    def tap(self) -> bool:
        if self._phase is not Phase.PLAY or self._attempt.evaluation_pending:
            return False
        assert self._attempt.pattern is not None
        assert self._attempt.pattern_started_at_ms is not None

        now = now_ms(self._clock)
        self._audio.play(Cue.TAP)
        self._attempt.collector.track_tap(now)
        self._attempt.collector.track_click(now)
        self._attempt.taps.append(now - self._attempt.pattern_started_at_ms)

        if len(self._attempt.taps) >= len(self._attempt.pattern.beats):
            self._attempt.evaluation_pending = True
            taps = tuple(self._attempt.taps)
            self._scheduler.call_later(self._cfg.settle_ms, lambda: self._evaluate_rhythm(taps))
        return True

    def click_ring(self) -> bool:
        if self._phase is not Phase.TARGET or self._attempt.ring is None:
            return False

        ring = self._attempt.ring
        now = now_ms(self._clock)
        elapsed = now - ring.started_at_ms
        if elapsed >= ring.target.duration_ms:
            # Expired but not yet collected by update(); the click is too late.
            self._scheduler.cancel(ring.expiry)
            self._expire_ring()
            return False

        self._attempt.ring = None
        self._scheduler.cancel(ring.expiry)
        outcome = click_outcome(elapsed, ring.target.duration_ms)
        self._audio.play(Cue.HIT if outcome.timing > self._cfg.hit_cue_threshold else Cue.MISS)
        self._attempt.collector.track_click(now)
        self._record_outcome(outcome, gap_ms=self._cfg.ring_click_gap_ms)
        return True

    def retry(self) -> bool:
        if not self.can_retry():
            return False
        self.reset()
        return True

    def reset(self) -> None:
        """Abandon the attempt: cancel pending work and start over from IDLE."""

        self._scheduler.cancel_all()
        self._attempt = self._new_attempt()
        self._set_phase(Phase.IDLE)

    # ---- rhythm ------------------------------------------------------------

    def _start_listen(self) -> None:
        pattern = self._rng.choice(RHYTHM_PATTERNS)
        self._attempt.pattern = pattern
        self._attempt.beat_index = -1
        self._attempt.taps = []
        self._attempt.pattern_started_at_ms = None
        self._set_phase(Phase.LISTEN)
        logger.debug("Playing rhythm pattern %r", pattern.name)

        for index, offset in enumerate(pattern.beats):
            self._scheduler.call_later(offset, lambda i=index: self._play_beat(i))
        self._scheduler.call_later(pattern.duration_ms + self._cfg.listen_grace_ms, self._start_play)

    def _play_beat(self, index: int) -> None:
        self._audio.play(Cue.KICK)
        self._attempt.beat_index = index
        self._scheduler.call_later(self._cfg.beat_flash_ms, lambda: self._clear_beat(index))

    def _clear_beat(self, index: int) -> None:
        if self._attempt.beat_index == index:
            self._attempt.beat_index = -1

    def _start_play(self) -> None:
        self._attempt.taps = []
        self._attempt.pattern_started_at_ms = now_ms(self._clock)
        self._set_phase(Phase.PLAY)

    def _evaluate_rhythm(self, taps: tuple[float, ...]) -> None:
        assert self._attempt.pattern is not None
        evaluation = evaluate_rhythm(self._attempt.pattern.beats, taps, tolerance_ms=self._cfg.tap_tolerance_ms)
        self._attempt.rhythm_evaluation = evaluation
        logger.debug(
            "Rhythm evaluated: matched=%d/%d accuracy=%.3f",
            evaluation.matched,
            evaluation.total_beats,
            evaluation.accuracy,
        )
        self._start_checking(evaluation.accuracy)

    # ---- precision ---------------------------------------------------------

    def _start_precision(self) -> None:
        self._attempt.outcomes = []
        self._attempt.round_index = 0
        self._set_phase(Phase.TARGET)
        self._spawn_ring(0)

    def _spawn_ring(self, index: int) -> None:
        if index >= self._cfg.ring_count:
            return
        target = PRECISION_TARGETS[index]
        self._attempt.round_index = index
        expiry = self._scheduler.call_later(target.duration_ms, self._expire_ring)
        self._attempt.ring = _ActiveRing(target=target, started_at_ms=now_ms(self._clock), expiry=expiry)

    def _expire_ring(self) -> None:
        if self._attempt.ring is None:
            return
        self._attempt.ring = None
        self._record_outcome(expired_outcome(), gap_ms=self._cfg.ring_expiry_gap_ms)

    def _record_outcome(self, outcome: RingOutcome, *, gap_ms: float) -> None:
        self._attempt.outcomes.append(outcome)
        if len(self._attempt.outcomes) >= self._cfg.ring_count:
            self._start_checking(precision_accuracy(self._attempt.outcomes, rounds=self._cfg.ring_count))
            return
        next_index = self._attempt.round_index + 1
        self._scheduler.call_later(gap_ms, lambda: self._spawn_ring(next_index))

    # ---- verdict -----------------------------------------------------------

    def _start_checking(self, accuracy: float) -> None:
        self._attempt.task_accuracy = clamp01(accuracy)
        self._set_phase(Phase.CHECKING)
        self._scheduler.call_later(self._cfg.checking_ms, self._finish)

    def _finish(self) -> None:
        assert self._attempt.kind is not None
        assert self._attempt.task_accuracy is not None
        self._attempt.result = analyze(self._attempt.collector, kind=self._attempt.kind, accuracy=self._attempt.task_accuracy)
        self._set_phase(Phase.RESULT)
        logger.info(
            "Verification %s: total=%d confidence=%d%% human=%s",
            self._attempt.kind,
            self._attempt.result.total,
            self._attempt.result.confidence,
            self._attempt.result.is_human,
        )
        self._report()

    def _report(self) -> None:
        if self._attempt.reported or self._attempt.result is None:
            return
        self._attempt.reported = True
        if self._on_result is not None:
            self._on_result(self._attempt.result.is_human)

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self._phase:
            logger.debug("Phase %s -> %s", self._phase, phase)
        self._phase = phase

    # ---- view --------------------------------------------------------------

    def current_prompt(self) -> str:
        if self._phase is Phase.IDLE:
            return "I'm not a robot"
        if self._phase is Phase.SELECT:
            return "Choose a challenge: [R]hythm or [P]recision"
        if self._phase is Phase.LISTEN:
            return "Listen to the rhythm..."
        if self._phase is Phase.PLAY:
            assert self._attempt.pattern is not None
            return f"Tap it back ({len(self._attempt.taps)}/{len(self._attempt.pattern.beats)})"
        if self._phase is Phase.TARGET:
            return f"Click each ring as it closes ({len(self._attempt.outcomes)}/{self._cfg.ring_count})"
        if self._phase is Phase.CHECKING:
            return "Analyzing behavior..."
        assert self._attempt.result is not None
        if self._attempt.result.is_human:
            return f"Verified human ({self._attempt.result.confidence}% confidence)"
        return f"Verification failed (score {self._attempt.result.total}/100)"

    def _ring_view(self) -> RingView | None:
        if self._attempt.ring is None:
            return None
        target = self._attempt.ring.target
        progress = (now_ms(self._clock) - self._attempt.ring.started_at_ms) / target.duration_ms
        return RingView(
            index=target.index,
            x_pct=target.x_pct,
            y_pct=target.y_pct,
            size=target.size,
            progress=clamp01(progress),
        )

    def snapshot(self) -> CaptchaSnapshot:
        return CaptchaSnapshot(
            phase=self._phase,
            kind=self._attempt.kind,
            prompt=self.current_prompt(),
            pattern_name=None if self._attempt.pattern is None else self._attempt.pattern.name,
            beat_index=self._attempt.beat_index,
            beats_total=0 if self._attempt.pattern is None else len(self._attempt.pattern.beats),
            taps=len(self._attempt.taps),
            ring=self._ring_view(),
            round_index=self._attempt.round_index,
            rounds_total=self._cfg.ring_count,
            outcomes=tuple(self._attempt.outcomes),
            result=self._attempt.result,
            can_retry=self.can_retry(),
        )
