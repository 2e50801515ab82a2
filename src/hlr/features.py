# ABOUTME: Builds HLR training records and live feature vectors from solve histories.
# ABOUTME: Maps observed scores to recall labels without leaking the labeled attempt.

from __future__ import annotations

import dataclasses
import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from src.common.dedup import DEFAULT_READ_WINDOW, unique_reads
from src.common.schemas import (
    FEATURE_KEYS,
    FeatureVector,
    ItemRecord,
    ItemSignals,
    SolveEvent,
    TrainingRecord,
    ensure_utc,
)

SECONDS_PER_DAY = 86400.0
MIN_OBSERVED_RECALL = 0.05
MAX_OBSERVED_RECALL = 0.99

# (score_low, score_high, p_low, p_high); the top band includes 100.
_RECALL_BANDS = (
    (80.0, 100.0, 0.80, 0.95),
    (60.0, 80.0, 0.60, 0.79),
    (40.0, 60.0, 0.40, 0.59),
    (0.0, 40.0, 0.10, 0.39),
)


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_DAY


def observed_recall_probability(score: float) -> float:
    """
    Map a 0-100 score to the recall probability used as a training label.

    Piecewise-linear per band rather than ``score / 100`` so the label is not
    a rescaled copy of the score features.
    """

    for score_low, score_high, p_low, p_high in _RECALL_BANDS:
        if score >= score_low:
            fraction = (min(score, score_high) - score_low) / (score_high - score_low)
            p = p_low + fraction * (p_high - p_low)
            break
    else:
        p = _RECALL_BANDS[-1][2]
    return min(MAX_OBSERVED_RECALL, max(MIN_OBSERVED_RECALL, p))


def build_features(reads: Sequence[SolveEvent], reference_time: datetime) -> FeatureVector:
    """Feature vector from chronologically sorted reads, aged up to ``reference_time``."""

    if not reads:
        return FeatureVector()

    scores = [read.score for read in reads]
    correct_count = sum(1 for read in reads if read.is_correct)
    total_reviews = len(reads)
    incorrect_count = total_reviews - correct_count
    last = reads[-1]

    return FeatureVector(
        bias=1.0,
        total_reviews=float(total_reviews),
        mean_score=sum(scores) / total_reviews,
        last_score=last.score,
        correct_count=float(correct_count),
        incorrect_count=float(incorrect_count),
        correct_ratio=correct_count / total_reviews,
        last_is_correct=1.0 if last.is_correct else 0.0,
        time_since_first_days=max(0.0, days_between(reads[0].timestamp, reference_time)),
        first_solve_quality=reads[0].score / 100.0,
    )


def build_training_records(
    history: Iterable[SolveEvent],
    item_id: str = "",
    window: timedelta = DEFAULT_READ_WINDOW,
) -> List[TrainingRecord]:
    """Turn one item's history into up to N-1 labeled records over its unique reads."""

    reads = unique_reads(history, window)
    records: List[TrainingRecord] = []
    for idx in range(1, len(reads)):
        prev, curr = reads[idx - 1], reads[idx]
        if curr.timestamp <= prev.timestamp:
            continue
        delta = days_between(prev.timestamp, curr.timestamp)
        p = observed_recall_probability(curr.score)
        half_life = -delta / math.log2(p)
        records.append(
            TrainingRecord(
                item_id=item_id,
                y=math.log2(half_life),
                # Only what was known when ``prev`` was recorded.
                x=build_features(reads[:idx], prev.timestamp),
                delta=delta,
                observed_recall=p,
            )
        )
    return records


def build_live_features(
    history: Iterable[SolveEvent],
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_READ_WINDOW,
    signals: Optional[ItemSignals] = None,
) -> Optional[FeatureVector]:
    """
    Features over the whole history for prediction; ``None`` when nothing was solved.

    ``signals`` folds difficulty ratings and passive views into the vector so
    the model sees one input per item.
    """

    reads = unique_reads(history, window)
    if not reads:
        return None
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    features = build_features(reads, now)
    if signals is None:
        return features
    return dataclasses.replace(
        features,
        difficulty_feature=signals.difficulty_feature,
        passive_views=float(signals.passive_views),
        rated_passive_views=float(signals.rated_passive_views),
        passive_boost=float(signals.passive_boost),
    )


def build_dataset(items: Iterable[ItemRecord], window: timedelta = DEFAULT_READ_WINDOW) -> List[TrainingRecord]:
    records: List[TrainingRecord] = []
    for item in items:
        records.extend(build_training_records(item.solve_history, item_id=item.item_id, window=window))
    return records


def training_records_frame(records: Sequence[TrainingRecord]) -> pd.DataFrame:
    """Flatten records into one row per example with a column per feature."""

    columns = ["item_id", "y", "delta", "observed_recall", "half_life", *FEATURE_KEYS]
    if not records:
        return pd.DataFrame(columns=columns)

    rows = []
    for record in records:
        row = {
            "item_id": record.item_id,
            "y": record.y,
            "delta": record.delta,
            "observed_recall": record.observed_recall,
            "half_life": record.half_life,
        }
        row.update(record.x.as_dict())
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)
