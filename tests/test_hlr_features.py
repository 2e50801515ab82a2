# ABOUTME: Tests HLR training-record and live-feature construction.
# ABOUTME: Ensures labels follow the banded recall map and features never see the labeled attempt.

import math
from datetime import datetime, timedelta, timezone

import pytest

from src.common.dedup import unique_reads
from src.common.schemas import FEATURE_KEYS, ItemRecord, ItemSignals, SolveEvent
from src.hlr.features import (
    build_dataset,
    build_features,
    build_live_features,
    build_training_records,
    observed_recall_probability,
    training_records_frame,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _solve(days: float, score: float) -> SolveEvent:
    return SolveEvent(timestamp=T0 + timedelta(days=days), score=score)


@pytest.mark.parametrize(
    "score, expected",
    [
        (100, 0.95),
        (90, 0.875),
        (80, 0.80),
        (70, 0.695),
        (60, 0.60),
        (50, 0.495),
        (40, 0.40),
        (20, 0.245),
        (0, 0.10),
    ],
)
def test_observed_recall_bands(score, expected):
    assert observed_recall_probability(score) == pytest.approx(expected)


def test_observed_recall_is_not_score_over_100():
    assert observed_recall_probability(30) != pytest.approx(0.30)
    assert 0.05 <= observed_recall_probability(0) <= 0.99


def test_training_records_labels_and_features():
    history = [_solve(0, 100), _solve(2, 90), _solve(5, 50)]
    records = build_training_records(history, item_id="q1")

    assert len(records) == 2
    first, second = records

    assert first.item_id == "q1"
    assert first.delta == pytest.approx(2.0)
    assert first.observed_recall == pytest.approx(0.875)
    expected_h = -2.0 / math.log2(0.875)
    assert first.y == pytest.approx(math.log2(expected_h))
    assert first.half_life == pytest.approx(expected_h)

    x = first.x
    assert x.bias == 1.0
    assert x.total_reviews == 1
    assert x.mean_score == 100
    assert x.last_score == 100
    assert x.correct_count == 1
    assert x.incorrect_count == 0
    assert x.correct_ratio == 1.0
    assert x.last_is_correct == 1.0
    assert x.time_since_first_days == 0.0
    assert x.first_solve_quality == 1.0

    assert second.delta == pytest.approx(3.0)
    assert second.x.total_reviews == 2
    assert second.x.mean_score == pytest.approx(95.0)
    assert second.x.last_score == 90
    assert second.x.time_since_first_days == pytest.approx(2.0)


def test_features_only_use_reads_up_to_prev():
    history = [_solve(0, 60), _solve(1, 85), _solve(4, 30), _solve(9, 95)]
    reads = unique_reads(history)
    records = build_training_records(history)

    for idx, record in enumerate(records, start=1):
        prev = reads[idx - 1]
        visible = [r for r in history if r.timestamp <= prev.timestamp]
        assert record.x == build_features(unique_reads(visible), prev.timestamp)


def test_changing_future_attempt_leaves_earlier_features_unchanged():
    base = [_solve(0, 60), _solve(1, 85), _solve(4, 30)]
    altered = [_solve(0, 60), _solve(1, 85), _solve(4, 100)]

    base_records = build_training_records(base)
    altered_records = build_training_records(altered)

    assert [r.x for r in base_records] == [r.x for r in altered_records]
    assert base_records[-1].y != altered_records[-1].y


def test_rapid_resubmits_do_not_create_records():
    history = [
        SolveEvent(timestamp=T0, score=40),
        SolveEvent(timestamp=T0 + timedelta(minutes=1), score=100),
        _solve(3, 90),
    ]
    records = build_training_records(history)
    assert len(records) == 1
    assert records[0].x.total_reviews == 1
    assert records[0].x.last_score == 40


def test_duplicate_timestamps_are_skipped_not_zero_filled():
    history = [_solve(0, 80), _solve(0, 90), _solve(2, 70)]
    records = build_training_records(history, window=timedelta(0))
    assert len(records) == 1
    assert records[0].delta == pytest.approx(2.0)


def test_feature_counts_are_consistent():
    history = [_solve(d, s) for d, s in [(0, 20), (1, 90), (3, 79), (6, 80), (10, 55)]]
    for record in build_training_records(history):
        assert record.x.total_reviews == record.x.correct_count + record.x.incorrect_count


def test_live_features_empty_history():
    assert build_live_features([]) is None


def test_live_features_use_whole_history_and_now():
    history = [_solve(0, 100), _solve(2, 50)]
    now = T0 + timedelta(days=5)
    features = build_live_features(history, now=now)

    assert features.total_reviews == 2
    assert features.last_score == 50
    assert features.incorrect_count == 1
    assert features.last_is_correct == 0.0
    assert features.correct_ratio == pytest.approx(0.5)
    assert features.time_since_first_days == pytest.approx(5.0)


def test_live_features_carry_item_signals():
    history = [SolveEvent(T0, 80)]
    signals = ItemSignals(difficulty_feature=0.5, passive_views=3, rated_passive_views=1, passive_boost=0.2)
    plain = build_live_features(history, now=T0 + timedelta(days=1))
    features = build_live_features(history, now=T0 + timedelta(days=1), signals=signals)
    assert plain.difficulty_feature is None
    assert features.difficulty_feature == 0.5
    assert features.passive_views == 3.0
    assert features.rated_passive_views == 1.0
    assert features.passive_boost == 0.2
    # Training columns are untouched by live-only signals.
    assert features.as_dict() == plain.as_dict()
    assert list(features.as_dict()) == list(FEATURE_KEYS)


def test_build_dataset_and_frame():
    items = [
        ItemRecord("a", (_solve(0, 100), _solve(1, 90), _solve(3, 70))),
        ItemRecord("b", (_solve(0, 50),)),
        ItemRecord("c"),
    ]
    records = build_dataset(items)
    assert [r.item_id for r in records] == ["a", "a"]

    frame = training_records_frame(records)
    assert list(frame.columns) == ["item_id", "y", "delta", "observed_recall", "half_life", *FEATURE_KEYS]
    assert len(frame) == 2
    assert training_records_frame([]).empty
