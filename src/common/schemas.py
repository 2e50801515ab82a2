# ABOUTME: Defines canonical data structures shared by the HLR and review engines.
# ABOUTME: Centralizes solve event, item record, feature, and recall schema definitions.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

CORRECT_SCORE_THRESHOLD = 80.0

FEATURE_KEYS: Tuple[str, ...] = (
    "bias",
    "total_reviews",
    "mean_score",
    "last_score",
    "correct_count",
    "incorrect_count",
    "correct_ratio",
    "last_is_correct",
    "time_since_first_days",
    "first_solve_quality",
)


def clamp_score(score: Optional[float]) -> float:
    """Coerce a raw score into [0, 100]; missing or non-numeric scores count as 0."""

    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return min(100.0, max(0.0, value))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC so they compare with aware ones."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class SolveEvent:
    """One attempt at an item."""

    timestamp: datetime
    score: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        object.__setattr__(self, "score", clamp_score(self.score))

    @property
    def is_correct(self) -> bool:
        return self.score >= CORRECT_SCORE_THRESHOLD


# A solve event promoted to "counted" status after deduplication.
UniqueRead = SolveEvent


@dataclass(frozen=True)
class ItemRecord:
    """Per-item study state consumed by the recall estimator and the scheduler."""

    item_id: str
    solve_history: Tuple[SolveEvent, ...] = ()
    last_solved_at: Optional[datetime] = None
    review_flag: bool = False
    review_exclude: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "solve_history", tuple(self.solve_history))
        object.__setattr__(self, "last_solved_at", ensure_utc(self.last_solved_at))
        # Excluding an item always wins over flagging it.
        if self.review_flag and self.review_exclude:
            object.__setattr__(self, "review_flag", False)

    @property
    def sorted_history(self) -> Tuple[SolveEvent, ...]:
        return tuple(sorted(self.solve_history, key=lambda e: e.timestamp))

    @property
    def has_history(self) -> bool:
        return len(self.solve_history) > 0

    @property
    def latest_score(self) -> Optional[float]:
        history = self.sorted_history
        if not history:
            return None
        return history[-1].score

    @property
    def mean_score(self) -> Optional[float]:
        if not self.solve_history:
            return None
        return sum(e.score for e in self.solve_history) / len(self.solve_history)

    @property
    def last_solved(self) -> Optional[datetime]:
        if self.last_solved_at is not None:
            return self.last_solved_at
        if not self.solve_history:
            return None
        return max(e.timestamp for e in self.solve_history)


@dataclass(frozen=True)
class ItemSignals:
    """Study signals outside the solve history: rated difficulty and passive flashcard views."""

    difficulty_feature: Optional[float] = None
    passive_views: float = 0.0
    rated_passive_views: float = 0.0
    passive_boost: float = 0.0


@dataclass(frozen=True)
class FeatureVector:
    """
    HLR features in the fixed order of FEATURE_KEYS.

    The trailing signal fields are live-only: they never enter training
    arrays, and the model adds them on top of the linear term.
    """

    bias: float = 1.0
    total_reviews: float = 0.0
    mean_score: float = 0.0
    last_score: float = 0.0
    correct_count: float = 0.0
    incorrect_count: float = 0.0
    correct_ratio: float = 0.0
    last_is_correct: float = 0.0
    time_since_first_days: float = 0.0
    first_solve_quality: float = 0.0
    difficulty_feature: Optional[float] = None
    passive_views: float = 0.0
    rated_passive_views: float = 0.0
    passive_boost: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {key: float(getattr(self, key)) for key in FEATURE_KEYS}

    def to_array(self) -> np.ndarray:
        return np.array([getattr(self, key) for key in FEATURE_KEYS], dtype=np.float64)


@dataclass(frozen=True)
class TrainingRecord:
    """Labeled example derived from two adjacent unique reads of one item."""

    item_id: str
    y: float
    x: FeatureVector
    delta: float
    observed_recall: float

    @property
    def half_life(self) -> float:
        return float(2.0 ** self.y)


@dataclass(frozen=True)
class ModelWeights:
    """One scalar per feature name; missing names read as zero."""

    values: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", {str(k): float(v) for k, v in dict(self.values).items()})

    @classmethod
    def from_dict(cls, values: Mapping[str, float]) -> "ModelWeights":
        return cls(values=values)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "ModelWeights":
        return cls(values={key: float(array[idx]) for idx, key in enumerate(FEATURE_KEYS)})

    def get(self, key: str, default: float = 0.0) -> float:
        return self.values.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def as_dict(self) -> Dict[str, float]:
        return dict(self.values)

    def to_array(self) -> np.ndarray:
        return np.array([self.get(key) for key in FEATURE_KEYS], dtype=np.float64)


@dataclass(frozen=True)
class RecallEstimate:
    """Live forgetting-curve state for one item."""

    half_life_days: float
    recall_probability: Optional[float]
    elapsed_days: float
    last_score: float
    is_short_term: bool = False


@dataclass(frozen=True)
class TrainingMeta:
    """Marker persisted next to trained weights to gate retraining."""

    trained_at: datetime
    training_record_count: int
    version: int = 2
