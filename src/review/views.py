# ABOUTME: Records passive flashcard views and turns them into half-life signals.
# ABOUTME: Keeps a 30-day view window per item and caps the passive retention boost.

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from src.common.schemas import ItemSignals, ensure_utc

from .difficulty import DifficultyRating

VIEW_RETENTION = timedelta(days=30)
PASSIVE_DECAY_HALF_LIFE_DAYS = 30.0
MAX_PASSIVE_BOOST = 0.3
FULL_CREDIT_MS = 10_000.0

PASSIVE_WEIGHTS: Dict[DifficultyRating, float] = {
    DifficultyRating.EASY: 0.05,
    DifficultyRating.MEDIUM: 0.10,
    DifficultyRating.HARD: 0.15,
    DifficultyRating.SKIP: 0.0,
}

_RATING_SCORES = {DifficultyRating.EASY: 1, DifficultyRating.MEDIUM: 2, DifficultyRating.HARD: 3}


@dataclass(frozen=True)
class PassiveView:
    """One look at an item's answer without a scored attempt."""

    timestamp: datetime
    rating: Optional[DifficultyRating] = None
    answer_viewed: bool = False
    time_spent_ms: float = 0.0


@dataclass
class ViewStats:
    total_views: int = 0
    rated_views: int = 0
    avg_difficulty_score: float = 0.0


class ViewStore:
    """
    Passive views per item.

    Stats count every view ever recorded; the view list itself only keeps
    the last 30 days once ``prune`` runs.
    """

    def __init__(self) -> None:
        self._views: Dict[str, List[PassiveView]] = {}
        self._stats: Dict[str, ViewStats] = {}

    def record(
        self,
        item_id: str,
        rating: Optional[DifficultyRating | str] = None,
        answer_viewed: bool = False,
        time_spent_ms: float = 0.0,
        at: Optional[datetime] = None,
    ) -> PassiveView:
        parsed = DifficultyRating(rating) if rating is not None else None
        view = PassiveView(
            timestamp=ensure_utc(at) if at is not None else datetime.now(timezone.utc),
            rating=parsed,
            answer_viewed=bool(answer_viewed),
            time_spent_ms=max(0.0, float(time_spent_ms)),
        )
        self._views.setdefault(item_id, []).append(view)

        stats = self._stats.setdefault(item_id, ViewStats())
        stats.total_views += 1
        if parsed is not None and parsed is not DifficultyRating.SKIP:
            stats.rated_views += 1
            score = _RATING_SCORES[parsed]
            stats.avg_difficulty_score += (score - stats.avg_difficulty_score) / stats.rated_views
        return view

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop views older than the retention window; returns how many were removed."""

        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        cutoff = now - VIEW_RETENTION
        removed = 0
        for item_id, views in self._views.items():
            kept = [v for v in views if v.timestamp > cutoff]
            removed += len(views) - len(kept)
            self._views[item_id] = kept
        return removed

    def views(self, item_id: str) -> Tuple[PassiveView, ...]:
        return tuple(self._views.get(item_id, ()))

    def stats(self, item_id: str) -> Optional[ViewStats]:
        return self._stats.get(item_id)

    def last_viewed(self, item_id: str) -> Optional[datetime]:
        views = self._views.get(item_id)
        if not views:
            return None
        return max(v.timestamp for v in views)

    def last_viewed_map(self) -> Dict[str, datetime]:
        result = {}
        for item_id in self._views:
            viewed = self.last_viewed(item_id)
            if viewed is not None:
                result[item_id] = viewed
        return result

    def passive_boost(self, item_id: str, now: Optional[datetime] = None) -> float:
        """log2 half-life credit from recent rated answer views, capped at 0.3."""

        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        cutoff = now - VIEW_RETENTION
        total = 0.0
        for view in self._views.get(item_id, ()):
            if view.timestamp <= cutoff or not view.answer_viewed or view.rating is None:
                continue
            weight = PASSIVE_WEIGHTS[view.rating]
            if weight == 0:
                continue
            age_days = max(0.0, (now - view.timestamp).total_seconds() / 86400.0)
            decay = 2.0 ** (-age_days / PASSIVE_DECAY_HALF_LIFE_DAYS)
            effort = min(1.0, view.time_spent_ms / FULL_CREDIT_MS)
            total += weight * decay * effort
        return min(total, MAX_PASSIVE_BOOST)

    def signals(
        self,
        item_id: str,
        now: Optional[datetime] = None,
        difficulty_feature: Optional[float] = None,
    ) -> ItemSignals:
        stats = self._stats.get(item_id) or ViewStats()
        return ItemSignals(
            difficulty_feature=difficulty_feature,
            passive_views=float(stats.total_views),
            rated_passive_views=float(stats.rated_views),
            passive_boost=self.passive_boost(item_id, now),
        )

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for item_id in set(self._views) | set(self._stats):
            stats = self._stats.get(item_id) or ViewStats()
            payload[item_id] = {
                "viewHistory": [
                    {
                        "timestamp": v.timestamp.isoformat(),
                        "difficulty_rating": v.rating.value if v.rating else None,
                        "answer_viewed": v.answer_viewed,
                        "time_spent": v.time_spent_ms,
                    }
                    for v in self._views.get(item_id, ())
                ],
                "stats": {
                    "total_views": stats.total_views,
                    "rated_views": stats.rated_views,
                    "avg_difficulty_score": stats.avg_difficulty_score,
                },
            }
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ViewStore":
        store = cls()
        for item_id, record in payload.items():
            if not isinstance(record, Mapping):
                continue
            views = []
            for entry in record.get("viewHistory") or []:
                try:
                    timestamp = ensure_utc(datetime.fromisoformat(str(entry["timestamp"])))
                    rating = entry.get("difficulty_rating")
                    views.append(
                        PassiveView(
                            timestamp=timestamp,
                            rating=DifficultyRating(rating) if rating else None,
                            answer_viewed=bool(entry.get("answer_viewed", False)),
                            time_spent_ms=float(entry.get("time_spent") or 0.0),
                        )
                    )
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning(f"[review] Skipping malformed view for {item_id}: {exc}")
            store._views[str(item_id)] = views

            stats = record.get("stats") or {}
            store._stats[str(item_id)] = ViewStats(
                total_views=int(stats.get("total_views", len(views))),
                rated_views=int(stats.get("rated_views", 0)),
                avg_difficulty_score=float(stats.get("avg_difficulty_score", 0.0)),
            )
        return store

    @classmethod
    def load(cls, path: Path) -> "ViewStore":
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"[review] Ignoring unreadable view store {path}: {exc}")
            return cls()
        if not isinstance(payload, dict):
            logger.warning(f"[review] Ignoring view store {path}: expected a JSON object")
            return cls()
        return cls.from_dict(payload)

    def save(self, path: Path, now: Optional[datetime] = None) -> None:
        """Prune, then replace the file in a single rename."""

        path = Path(path)
        self.prune(now)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(self.as_dict(), indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
