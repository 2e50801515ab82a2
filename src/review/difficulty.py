# ABOUTME: Tracks FSRS-style per-item difficulty from self-rated flashcard reviews.
# ABOUTME: Supplies the external difficulty signal used by the HLR review strategy.

from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping, Optional

INITIAL_DIFFICULTY = 5.0
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
ADJUSTMENT_RATE = 0.05


class DifficultyRating(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    SKIP = "skip"


_GRADES: Dict[DifficultyRating, Optional[int]] = {
    DifficultyRating.EASY: 4,
    DifficultyRating.MEDIUM: 3,
    DifficultyRating.HARD: 2,
    DifficultyRating.SKIP: None,
}


def difficulty_feature(difficulty: float) -> float:
    """Rescale a 1-10 difficulty onto [0, 1] for the half-life model."""

    clamped = min(MAX_DIFFICULTY, max(MIN_DIFFICULTY, float(difficulty)))
    return (clamped - MIN_DIFFICULTY) / (MAX_DIFFICULTY - MIN_DIFFICULTY)


class DifficultyTracker:
    """
    Difficulty on a 1-10 scale, nudged multiplicatively per rating.

    ``D' = D * (1 + rate * (grade - 3))`` with easy/medium/hard mapped to
    grades 4/3/2. Skips leave the difficulty unchanged.
    """

    def __init__(self, difficulties: Optional[Mapping[str, float]] = None):
        self.difficulties: Dict[str, float] = {
            str(k): float(v) for k, v in (difficulties or {}).items()
        }

    def difficulty(self, item_id: str) -> float:
        return self.difficulties.get(item_id, INITIAL_DIFFICULTY)

    def feature(self, item_id: str) -> float:
        return difficulty_feature(self.difficulty(item_id))

    def update(self, item_id: str, rating: DifficultyRating | str) -> float:
        grade = _GRADES[DifficultyRating(rating)]
        current = self.difficulty(item_id)
        if grade is None:
            return current
        updated = current * (1 + ADJUSTMENT_RATE * (grade - 3))
        self.difficulties[item_id] = min(MAX_DIFFICULTY, max(MIN_DIFFICULTY, updated))
        return self.difficulties[item_id]

    def distribution(self) -> Dict[str, float]:
        values = list(self.difficulties.values())
        if not values:
            return {"avg": 0.0, "easy": 0, "medium": 0, "hard": 0, "total": 0}
        return {
            "avg": sum(values) / len(values),
            "easy": sum(1 for d in values if d < 4),
            "medium": sum(1 for d in values if 4 <= d <= 6),
            "hard": sum(1 for d in values if d > 6),
            "total": len(values),
        }

    def as_dict(self) -> Dict[str, float]:
        return dict(self.difficulties)

    @classmethod
    def from_dict(cls, payload: Mapping[str, float]) -> "DifficultyTracker":
        return cls(payload)
