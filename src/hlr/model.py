# ABOUTME: Declares the linear Half-Life Regression model and its weight validation gate.
# ABOUTME: Maps feature vectors to predicted memory half-lives in days.

from __future__ import annotations

import math
from typing import List, Optional, TYPE_CHECKING

from src.common.errors import InvalidWeights
from src.common.schemas import FEATURE_KEYS, FeatureVector, ModelWeights

if TYPE_CHECKING:
    from .store import WeightStore

MIN_HALF_LIFE_DAYS = 1.0
MAX_HALF_LIFE_DAYS = 365.0
BIAS_RANGE = (-2.0, 5.0)
REQUIRED_WEIGHT_KEYS = ("bias", "total_reviews", "last_score", "incorrect_count")

# log2 half-life of 1.0 puts an item with no signal at about two days.
DEFAULT_WEIGHTS = ModelWeights.from_dict(
    {
        "bias": 1.0,
        "total_reviews": 0.1,
        "mean_score": 0.0,
        "last_score": 0.005,
        "correct_count": 0.3,
        "incorrect_count": -0.7,
        "correct_ratio": 0.2,
        "last_is_correct": 0.3,
        "time_since_first_days": 0.01,
        "first_solve_quality": 0.2,
    }
)

# Live-only signal weights; a weight set may override them by name.
SIGNAL_WEIGHTS = {
    "difficulty_feature": -0.8,
    "passive_views": 0.03,
    "rated_passive_views": 0.05,
}


def weight_violations(weights: ModelWeights) -> List[str]:
    """List every validation rule the weights break; empty means acceptable."""

    problems: List[str] = []
    for key in REQUIRED_WEIGHT_KEYS:
        if key not in weights:
            problems.append(f"missing required weight '{key}'")
    for key, value in weights.values.items():
        if not math.isfinite(value):
            problems.append(f"weight '{key}' is not finite")

    bias = weights.get("bias")
    if not BIAS_RANGE[0] <= bias <= BIAS_RANGE[1]:
        problems.append(f"bias {bias:.4f} outside [{BIAS_RANGE[0]}, {BIAS_RANGE[1]}]")
    if weights.get("incorrect_count") > 0:
        problems.append(f"incorrect_count {weights.get('incorrect_count'):.4f} rewards wrong answers")
    if weights.get("correct_count") < 0:
        problems.append(f"correct_count {weights.get('correct_count'):.4f} penalizes correct answers")
    if weights.get("last_score") < 0:
        problems.append(f"last_score {weights.get('last_score'):.4f} is negative")
    return problems


def validate_weights(weights: ModelWeights) -> ModelWeights:
    problems = weight_violations(weights)
    if problems:
        raise InvalidWeights(problems)
    return weights


def next_review_delta(half_life_days: float, target_recall: float = 0.9) -> float:
    """Days until recall decays to ``target_recall`` under p = 2^(-t/h)."""

    if not 0.0 < target_recall < 1.0:
        raise ValueError(f"target_recall must be in (0, 1), got {target_recall}.")
    return -half_life_days * math.log2(target_recall)


class HalfLifeModel:
    """Linear model over log2 half-life."""

    def __init__(self, weights: ModelWeights = DEFAULT_WEIGHTS):
        self.weights = weights

    def log2_half_life(self, features: FeatureVector) -> float:
        values = features.as_dict()
        log2h = sum(self.weights.get(key) * values[key] for key in FEATURE_KEYS)

        # Harder items forget faster; passive views add a little retention.
        if features.difficulty_feature is not None:
            log2h += self._signal_weight("difficulty_feature") * features.difficulty_feature
        log2h += self._signal_weight("passive_views") * features.passive_views
        log2h += self._signal_weight("rated_passive_views") * features.rated_passive_views
        return log2h + features.passive_boost

    def _signal_weight(self, key: str) -> float:
        return self.weights.get(key, SIGNAL_WEIGHTS[key])

    def predict(self, features: FeatureVector) -> float:
        log2h = self.log2_half_life(features)
        low, high = math.log2(MIN_HALF_LIFE_DAYS), math.log2(MAX_HALF_LIFE_DAYS)
        if math.isnan(log2h):
            log2h = low
        log2h = min(high, max(low, log2h))
        return min(MAX_HALF_LIFE_DAYS, max(MIN_HALF_LIFE_DAYS, 2.0 ** log2h))


def load_model(store: Optional["WeightStore"] = None) -> HalfLifeModel:
    """Model using stored trained weights when available, else the defaults."""

    if store is not None:
        weights = store.load_weights()
        if weights is not None:
            return HalfLifeModel(weights)
    return HalfLifeModel(DEFAULT_WEIGHTS)
