from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from rhythm_captcha.orchestrator import (
    CaptchaConfig,
    ChallengeOrchestrator,
    Cue,
    Phase,
)
from rhythm_captcha.precision import PRECISION_TARGETS, expired_outcome
from rhythm_captcha.rhythm import RHYTHM_PATTERNS
from rhythm_captcha.scoring import ChallengeKind


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance_ms(self, ms: float) -> None:
        self.t += float(ms) / 1000.0


@dataclass
class RecordingAudio:
    cues: list[Cue] = field(default_factory=list)

    def play(self, cue: Cue) -> None:
        self.cues.append(cue)


def _build(seed: int = 11) -> tuple[FakeClock, ChallengeOrchestrator, list[bool], RecordingAudio]:
    clock = FakeClock()
    verdicts: list[bool] = []
    audio = RecordingAudio()
    orch = ChallengeOrchestrator(clock=clock, seed=seed, on_result=verdicts.append, audio=audio)
    return clock, orch, verdicts, audio


def _step(clock: FakeClock, orch: ChallengeOrchestrator, ms: float) -> None:
    clock.advance_ms(ms)
    orch.update()


def _listen_through(clock: FakeClock, orch: ChallengeOrchestrator) -> None:
    assert orch.pattern is not None
    _step(clock, orch, orch.pattern.duration_ms + 800 + 1)


def _tap_on_beats(clock: FakeClock, orch: ChallengeOrchestrator) -> None:
    assert orch.pattern is not None
    prev = 0
    for beat in orch.pattern.beats:
        _step(clock, orch, beat - prev)
        assert orch.tap() is True
        prev = beat


def test_phase_gates_for_begin_and_select() -> None:
    _, orch, _, _ = _build()
    assert orch.phase is Phase.IDLE
    assert orch.select(ChallengeKind.RHYTHM) is False
    assert orch.tap() is False
    assert orch.click_ring() is False

    assert orch.begin() is True
    assert orch.phase is Phase.SELECT
    assert orch.begin() is False

    with pytest.raises(ValueError):
        orch.select("audio")


def test_listen_plays_every_beat_then_opens_play_after_grace() -> None:
    clock, orch, _, audio = _build()
    orch.begin()
    assert orch.select("rhythm") is True
    assert orch.phase is Phase.LISTEN
    assert orch.pattern in RHYTHM_PATTERNS
    assert orch.tap() is False

    pattern = orch.pattern
    assert pattern is not None
    orch.update()
    assert audio.cues == [Cue.KICK]
    assert orch.snapshot().beat_index == 0
    _step(clock, orch, 121)
    assert orch.snapshot().beat_index == -1

    _step(clock, orch, pattern.duration_ms - 120)
    assert audio.cues.count(Cue.KICK) == len(pattern.beats)
    assert orch.phase is Phase.LISTEN

    _step(clock, orch, 798)
    assert orch.phase is Phase.LISTEN
    _step(clock, orch, 2)
    assert orch.phase is Phase.PLAY


def test_rhythm_completion_scores_once_and_reports_once() -> None:
    clock, orch, verdicts, audio = _build()
    orch.begin()
    orch.select(ChallengeKind.RHYTHM)
    _listen_through(clock, orch)
    _tap_on_beats(clock, orch)
    assert orch.pattern is not None
    beats = len(orch.pattern.beats)

    assert audio.cues.count(Cue.TAP) == beats
    assert len(orch.collector.taps()) == beats
    assert len(orch.collector.clicks()) == beats
    # Extra taps after the last beat are ignored.
    assert orch.tap() is False

    _step(clock, orch, 299)
    assert orch.phase is Phase.PLAY
    _step(clock, orch, 2)
    assert orch.phase is Phase.CHECKING
    assert orch.task_accuracy == pytest.approx(1.0)
    evaluation = orch.rhythm_evaluation
    assert evaluation is not None
    assert evaluation.matched == beats

    _step(clock, orch, 2199)
    assert orch.phase is Phase.CHECKING
    _step(clock, orch, 2)
    assert orch.phase is Phase.RESULT

    result = orch.result
    assert result is not None
    assert result.scores.task_accuracy == 20
    assert result.kind is ChallengeKind.RHYTHM
    # No pointer movement at all: a scripted tapper.
    assert result.is_human is False
    assert verdicts == [False]

    for _ in range(5):
        _step(clock, orch, 100)
        orch.snapshot()
    assert verdicts == [False]


def test_replay_restarts_listen_with_a_fresh_pattern() -> None:
    clock, orch, _, audio = _build()
    orch.begin()
    orch.select(ChallengeKind.RHYTHM)
    _listen_through(clock, orch)
    orch.tap()
    assert len(orch.taps()) == 1

    kicks_before = audio.cues.count(Cue.KICK)
    assert orch.replay() is True
    assert orch.phase is Phase.LISTEN
    assert orch.taps() == ()
    assert orch.pattern in RHYTHM_PATTERNS

    _listen_through(clock, orch)
    assert orch.phase is Phase.PLAY
    assert orch.pattern is not None
    assert audio.cues.count(Cue.KICK) == kicks_before + len(orch.pattern.beats)


def test_replay_is_refused_once_evaluation_is_scheduled() -> None:
    clock, orch, _, _ = _build()
    orch.begin()
    orch.select(ChallengeKind.RHYTHM)
    _listen_through(clock, orch)
    _tap_on_beats(clock, orch)
    assert orch.replay() is False


def test_precision_click_near_seventy_percent_is_a_hit_and_cancels_expiry() -> None:
    clock, orch, _, audio = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    assert orch.phase is Phase.TARGET

    ring = orch.snapshot().ring
    assert ring is not None
    assert ring.index == 0
    assert ring.size == 90

    _step(clock, orch, 1540)
    assert orch.snapshot().ring is not None
    assert orch.snapshot().ring.progress == pytest.approx(0.7)
    assert orch.click_ring() is True
    assert orch.click_ring() is False

    outcomes = orch.outcomes()
    assert len(outcomes) == 1
    assert outcomes[0].hit is True
    assert outcomes[0].timing == pytest.approx(1.0)
    assert audio.cues == [Cue.HIT]
    assert len(orch.collector.clicks()) == 1

    # The cancelled expiry never adds a miss.
    _step(clock, orch, 499)
    assert orch.snapshot().ring is None
    _step(clock, orch, 2)
    ring = orch.snapshot().ring
    assert ring is not None and ring.index == 1
    assert len(orch.outcomes()) == 1


def test_early_click_plays_miss_cue() -> None:
    clock, orch, _, audio = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    _step(clock, orch, 100)
    orch.click_ring()
    assert audio.cues == [Cue.MISS]
    assert orch.outcomes()[0].hit is False


def test_expired_ring_records_one_miss_and_advances_once() -> None:
    clock, orch, _, _ = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)

    _step(clock, orch, PRECISION_TARGETS[0].duration_ms + 1)
    outcomes = orch.outcomes()
    assert len(outcomes) == 1
    assert outcomes[0].hit is False
    assert outcomes[0].timing == 1.0
    assert orch.snapshot().ring is None

    _step(clock, orch, 401)
    ring = orch.snapshot().ring
    assert ring is not None and ring.index == 1
    assert len(orch.outcomes()) == 1


def test_click_after_ring_duration_counts_as_expiry_before_update() -> None:
    clock, orch, _, audio = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)

    # The ring has run out but no update() has collected it yet.
    clock.advance_ms(PRECISION_TARGETS[0].duration_ms + 10)
    assert orch.click_ring() is False
    assert orch.outcomes() == (expired_outcome(),)
    assert orch.collector.clicks() == ()
    assert audio.cues == []
    assert orch.snapshot().ring is None

    # The expiry task was consumed; the next ring follows the expiry gap.
    orch.update()
    assert len(orch.outcomes()) == 1
    _step(clock, orch, 399)
    assert orch.snapshot().ring is None
    _step(clock, orch, 2)
    ring = orch.snapshot().ring
    assert ring is not None and ring.index == 1
    assert len(orch.outcomes()) == 1


def test_reset_mid_precision_clears_every_attempt_field() -> None:
    clock, orch, verdicts, _ = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    orch.track_pointer(10, 10)
    _step(clock, orch, 1540)
    assert orch.click_ring() is True
    _step(clock, orch, 501)
    assert orch.snapshot().round_index == 1
    old_collector = orch.collector

    orch.reset()
    snap = orch.snapshot()
    assert snap.phase is Phase.IDLE
    assert snap.kind is None
    assert snap.ring is None
    assert snap.round_index == 0
    assert snap.outcomes == ()
    assert snap.pattern_name is None
    assert snap.beat_index == -1
    assert snap.taps == 0
    assert orch.task_accuracy is None
    assert orch.rhythm_evaluation is None
    assert orch.collector is not old_collector
    assert orch.collector.clicks() == ()

    # A second attempt runs from scratch and still reports exactly once.
    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    for target in PRECISION_TARGETS:
        _step(clock, orch, target.duration_ms + 1)
        if orch.phase is Phase.TARGET:
            _step(clock, orch, 401)
    assert len(orch.outcomes()) == 5
    _step(clock, orch, 2201)
    assert verdicts == [False]


def test_all_rings_expired_completes_with_half_accuracy() -> None:
    clock, orch, verdicts, _ = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)

    for target in PRECISION_TARGETS:
        assert orch.snapshot().ring is not None
        _step(clock, orch, target.duration_ms + 1)
        if orch.phase is Phase.TARGET:
            _step(clock, orch, 401)

    assert len(orch.outcomes()) == 5
    assert orch.phase is Phase.CHECKING
    assert orch.task_accuracy == pytest.approx(0.5)

    _step(clock, orch, 2201)
    assert orch.phase is Phase.RESULT
    assert orch.result is not None
    assert orch.result.scores.task_accuracy == 10
    assert verdicts == [False]


def test_retry_only_after_failed_verdict_and_gives_a_fresh_session() -> None:
    clock, orch, verdicts, _ = _build()
    assert orch.retry() is False

    orch.begin()
    orch.select(ChallengeKind.RHYTHM)
    # Too few samples for path scoring, constant speed: cannot reach 55.
    for i in range(8):
        orch.track_pointer(i * 3, i)
        clock.advance_ms(62.5)
    _listen_through(clock, orch)
    _tap_on_beats(clock, orch)
    _step(clock, orch, 301)
    assert orch.retry() is False
    _step(clock, orch, 2201)

    assert orch.can_retry() is True
    old_collector = orch.collector
    assert old_collector.positions() != ()

    clock.advance_ms(1000)
    assert orch.retry() is True
    assert orch.phase is Phase.IDLE
    assert orch.result is None
    assert orch.kind is None

    fresh = orch.collector
    assert fresh is not old_collector
    assert fresh.positions() == ()
    assert fresh.velocities() == ()
    assert fresh.taps() == ()
    assert fresh.clicks() == ()
    assert fresh.micro_movements == 0
    assert fresh.hesitations == 0
    assert fresh.started_at_ms == pytest.approx(clock.t * 1000.0)
    assert verdicts == [False]


def test_reset_during_listen_cancels_pending_beats() -> None:
    clock, orch, _, audio = _build()
    orch.begin()
    orch.select(ChallengeKind.RHYTHM)
    orch.update()
    assert audio.cues == [Cue.KICK]

    orch.reset()
    assert orch.scheduler.pending_count() == 0
    _step(clock, orch, 10_000)
    assert audio.cues == [Cue.KICK]
    assert orch.phase is Phase.IDLE


def test_reset_during_checking_never_reports() -> None:
    clock, orch, verdicts, _ = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    for target in PRECISION_TARGETS:
        _step(clock, orch, target.duration_ms + 1)
        if orch.phase is Phase.TARGET:
            _step(clock, orch, 401)
    assert orch.phase is Phase.CHECKING

    orch.reset()
    _step(clock, orch, 5000)
    assert orch.phase is Phase.IDLE
    assert orch.result is None
    assert verdicts == []


def test_reset_during_target_cancels_ring_expiry() -> None:
    clock, orch, _, _ = _build()
    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    _step(clock, orch, 1500)
    orch.reset()

    orch.begin()
    orch.select(ChallengeKind.PRECISION)
    _step(clock, orch, 1000)
    # The first session's expiry would have fired by now if it survived.
    assert orch.outcomes() == ()
    assert orch.snapshot().ring is not None


def test_snapshot_prompts_follow_phase() -> None:
    clock, orch, _, _ = _build()
    assert orch.snapshot().prompt == "I'm not a robot"
    orch.begin()
    snap = orch.snapshot()
    assert snap.phase is Phase.SELECT
    assert "[R]hythm" in snap.prompt
    assert "[P]recision" in snap.prompt
    orch.select(ChallengeKind.PRECISION)
    snap = orch.snapshot()
    assert snap.kind is ChallengeKind.PRECISION
    assert snap.rounds_total == 5
    assert snap.prompt.endswith("(0/5)")


def test_pattern_choice_is_seeded() -> None:
    picks = []
    for _ in range(2):
        _, orch, _, _ = _build(seed=99)
        orch.begin()
        orch.select(ChallengeKind.RHYTHM)
        picks.append(orch.pattern)
    assert picks[0] == picks[1]


def test_config_validation() -> None:
    clock = FakeClock()
    with pytest.raises(ValueError):
        ChallengeOrchestrator(clock=clock, seed=1, config=CaptchaConfig(ring_count=0))
    with pytest.raises(ValueError):
        ChallengeOrchestrator(clock=clock, seed=1, config=CaptchaConfig(ring_count=6))
    with pytest.raises(ValueError):
        ChallengeOrchestrator(clock=clock, seed=1, config=CaptchaConfig(tap_tolerance_ms=0.0))
    with pytest.raises(ValueError):
        ChallengeOrchestrator(clock=clock, seed=1, config=CaptchaConfig(checking_ms=-1.0))
