# ABOUTME: Estimates live recall probability from predicted half-life and elapsed time.
# ABOUTME: Flags very recent reviews as short-term memory instead of a numeric estimate.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from src.common.config import RecallConfig
from src.common.dedup import DEFAULT_READ_WINDOW
from src.common.schemas import ItemRecord, ItemSignals, RecallEstimate, SolveEvent, ensure_utc

from .features import build_live_features, days_between
from .model import HalfLifeModel

MIN_RECALL = 0.01
MAX_RECALL = 0.99


def score_weight(last_score: float, config: RecallConfig = RecallConfig()) -> float:
    """Down-weight recall after a poor last attempt; accuracy is not retention."""

    return max(config.min_score_weight, (last_score / 100.0) ** config.score_weight_exponent)


def estimate_recall(
    history: Iterable[SolveEvent],
    model: HalfLifeModel,
    now: Optional[datetime] = None,
    last_solved_at: Optional[datetime] = None,
    config: RecallConfig = RecallConfig(),
    window: timedelta = DEFAULT_READ_WINDOW,
    signals: Optional[ItemSignals] = None,
) -> Optional[RecallEstimate]:
    """
    Current forgetting-curve state for one item, or ``None`` without history.

    Callers must handle ``is_short_term`` explicitly: within the first hour
    after a review ``recall_probability`` is ``None`` rather than a number.
    """

    events = sorted(history, key=lambda e: e.timestamp)
    if not events:
        return None
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

    features = build_live_features(events, now=now, window=window, signals=signals)
    half_life = model.predict(features)
    last_score = events[-1].score
    reviewed_at = ensure_utc(last_solved_at) if last_solved_at is not None else events[-1].timestamp
    elapsed = days_between(reviewed_at, now)

    if elapsed < config.short_term_minutes / (24.0 * 60.0):
        return RecallEstimate(
            half_life_days=half_life,
            recall_probability=None,
            elapsed_days=elapsed,
            last_score=last_score,
            is_short_term=True,
        )

    p_time = 2.0 ** (-elapsed / half_life)
    p = p_time * score_weight(last_score, config)
    return RecallEstimate(
        half_life_days=half_life,
        recall_probability=min(MAX_RECALL, max(MIN_RECALL, p)),
        elapsed_days=elapsed,
        last_score=last_score,
        is_short_term=False,
    )


def estimate_item(
    item: ItemRecord,
    model: HalfLifeModel,
    now: Optional[datetime] = None,
    config: RecallConfig = RecallConfig(),
    window: timedelta = DEFAULT_READ_WINDOW,
    signals: Optional[ItemSignals] = None,
) -> Optional[RecallEstimate]:
    return estimate_recall(
        item.solve_history,
        model,
        now=now,
        last_solved_at=item.last_solved_at,
        config=config,
        window=window,
        signals=signals,
    )
