from __future__ import annotations

import pytest

from rhythm_captcha.precision import (
    PRECISION_TARGETS,
    RingOutcome,
    click_outcome,
    expired_outcome,
    is_ring_hit,
    precision_accuracy,
    ring_click_accuracy,
)


def test_target_table_shrinks_per_index() -> None:
    assert len(PRECISION_TARGETS) == 5
    assert [t.duration_ms for t in PRECISION_TARGETS] == [2200, 2050, 1900, 1750, 1600]
    assert [t.size for t in PRECISION_TARGETS] == [90, 84, 78, 72, 66]
    assert [(t.x_pct, t.y_pct) for t in PRECISION_TARGETS] == [
        (50.0, 35.0),
        (25.0, 60.0),
        (75.0, 50.0),
        (40.0, 75.0),
        (60.0, 28.0),
    ]
    assert [t.index for t in PRECISION_TARGETS] == [0, 1, 2, 3, 4]


def test_sweet_spot_and_clamped_edges() -> None:
    assert ring_click_accuracy(0.7) == 1.0
    assert ring_click_accuracy(0.3) == 0.0
    assert ring_click_accuracy(1.1) == 0.0
    assert ring_click_accuracy(0.0) == 0.0
    assert ring_click_accuracy(0.5) == pytest.approx(0.5)
    assert ring_click_accuracy(0.9) == pytest.approx(0.5)


def test_hit_threshold_is_exclusive() -> None:
    assert is_ring_hit(0.3) is False
    assert is_ring_hit(0.30001) is True
    assert is_ring_hit(0.0) is False


def test_click_outcome_uses_elapsed_over_duration() -> None:
    out = click_outcome(1540.0, 2200.0)
    assert out.clicked is True
    assert out.hit is True
    assert out.timing == pytest.approx(1.0)

    early = click_outcome(200.0, 2000.0)
    assert early.hit is False
    assert early.timing == 0.0


def test_expired_ring_is_a_miss_with_full_timing() -> None:
    assert expired_outcome() == RingOutcome(hit=False, timing=1.0, clicked=False)


def test_overall_accuracy_blends_hits_and_mean_timing() -> None:
    perfect = [RingOutcome(hit=True, timing=1.0, clicked=True)] * 5
    assert precision_accuracy(perfect, rounds=5) == pytest.approx(1.0)

    all_expired = [expired_outcome()] * 5
    assert precision_accuracy(all_expired, rounds=5) == pytest.approx(0.5)

    mixed = [
        RingOutcome(hit=True, timing=0.9, clicked=True),
        RingOutcome(hit=True, timing=0.5, clicked=True),
        RingOutcome(hit=False, timing=0.1, clicked=True),
        expired_outcome(),
        RingOutcome(hit=True, timing=0.8, clicked=True),
    ]
    assert precision_accuracy(mixed, rounds=5) == pytest.approx(0.5 * 0.6 + 0.5 * (3.3 / 5))

    with pytest.raises(ValueError):
        precision_accuracy([], rounds=0)
