# ABOUTME: Orders an item pool into the next review queue under a selected strategy.
# ABOUTME: Supports rule-based strategies and HLR recall-probability prioritization.

from __future__ import annotations

from collections.abc import Sequence as SequenceABC
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger

from src.common.config import EngineConfig, RecallConfig
from src.common.dedup import DEFAULT_READ_WINDOW
from src.common.errors import MalformedInput
from src.common.schemas import ItemRecord, ItemSignals, ensure_utc
from src.hlr.model import HalfLifeModel
from src.hlr.recall import estimate_item

from .difficulty import difficulty_feature
from .views import ViewStore

UNSCORED = 101.0
FLAG_PRIORITY = -10000.0
NO_ESTIMATE_PRIORITY = -500.0
NEVER_SCORED_PENALTY = 5.0
RECENT_VIEW_PENALTY = 240.0
RECENT_VIEW_HOURS = 24.0
NEUTRAL_DIFFICULTY = 5.0


class Strategy(str, Enum):
    SMART = "smart"
    HLR = "hlr"
    FLAG = "flag"
    LOW_SCORE = "lowScore"
    RECENT_WRONG = "recentWrong"
    OLD_WRONG = "oldWrong"

    @classmethod
    def parse(cls, value: "Strategy | str | None") -> "Strategy":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.SMART
        normalized = str(value).strip()
        for strategy in cls:
            if strategy.value.lower() == normalized.lower():
                return strategy
        # The original UI stored "low" for the low-score strategy.
        if normalized.lower() == "low":
            return cls.LOW_SCORE
        logger.warning(f"[review] Unknown review strategy '{value}', using smart")
        return cls.SMART


def _score(item: ItemRecord) -> float:
    score = item.latest_score
    return UNSCORED if score is None else score


def _solved_ts(item: ItemRecord) -> float:
    solved = item.last_solved
    return 0.0 if solved is None else solved.timestamp()


def _rank_flag(items: List[ItemRecord]) -> List[ItemRecord]:
    flagged = [item for item in items if item.review_flag]
    rest = [item for item in items if not item.review_flag]
    return flagged + rest


def _rank_low_score(items: List[ItemRecord]) -> List[ItemRecord]:
    return sorted(items, key=_score)


def _rank_recent_wrong(items: List[ItemRecord]) -> List[ItemRecord]:
    return sorted(items, key=lambda item: (_score(item), -_solved_ts(item)))


def _rank_old_wrong(items: List[ItemRecord]) -> List[ItemRecord]:
    return sorted(items, key=lambda item: (_score(item), _solved_ts(item)))


def _rank_smart(items: List[ItemRecord]) -> List[ItemRecord]:
    return sorted(
        items,
        key=lambda item: (
            0 if item.review_flag else 1,
            1 if item.has_history else 0,
            _score(item),
            _solved_ts(item),
        ),
    )


def hlr_priority(
    item: ItemRecord,
    model: HalfLifeModel,
    now: datetime,
    difficulty: Optional[float] = None,
    last_viewed_at: Optional[datetime] = None,
    config: RecallConfig = RecallConfig(),
    window: timedelta = DEFAULT_READ_WINDOW,
    signals: Optional[ItemSignals] = None,
) -> float:
    """Composite urgency for the HLR strategy; lower is reviewed sooner."""

    now = ensure_utc(now)
    last_viewed_at = ensure_utc(last_viewed_at)
    if item.review_flag:
        priority = FLAG_PRIORITY
    else:
        estimate = estimate_item(item, model, now=now, config=config, window=window, signals=signals)
        if estimate is None:
            priority = NO_ESTIMATE_PRIORITY
        else:
            # Still in short-term memory: rank as fully recalled.
            recall = 1.0 if estimate.is_short_term else estimate.recall_probability
            priority = 1000.0 * recall + 10.0 * estimate.half_life_days

    if difficulty is not None:
        priority -= 20.0 * (difficulty - NEUTRAL_DIFFICULTY)

    if last_viewed_at is not None:
        hours = (now - last_viewed_at).total_seconds() / 3600.0
        if 0.0 <= hours < RECENT_VIEW_HOURS:
            priority += RECENT_VIEW_PENALTY * (1.0 - hours / RECENT_VIEW_HOURS)

    mean_score = item.mean_score
    if mean_score is None:
        priority += NEVER_SCORED_PENALTY
    else:
        priority += 0.1 * (100.0 - mean_score)
    return priority


def _validate_items(items: Sequence[ItemRecord]) -> List[ItemRecord]:
    if isinstance(items, (str, bytes)) or not isinstance(items, SequenceABC):
        raise MalformedInput(f"Expected a sequence of ItemRecord, got {type(items).__name__}.")
    for idx, item in enumerate(items):
        if not isinstance(item, ItemRecord):
            raise MalformedInput(f"Element {idx} is {type(item).__name__}, expected ItemRecord.")
    return list(items)


_RULE_RANKERS: Dict[Strategy, Callable[[List[ItemRecord]], List[ItemRecord]]] = {
    Strategy.SMART: _rank_smart,
    Strategy.FLAG: _rank_flag,
    Strategy.LOW_SCORE: _rank_low_score,
    Strategy.RECENT_WRONG: _rank_recent_wrong,
    Strategy.OLD_WRONG: _rank_old_wrong,
}


def _resolve_config(config: Union[EngineConfig, RecallConfig, None]) -> Tuple[RecallConfig, timedelta]:
    if isinstance(config, EngineConfig):
        return config.recall, config.dedup.window
    if isinstance(config, RecallConfig):
        return config, DEFAULT_READ_WINDOW
    return RecallConfig(), DEFAULT_READ_WINDOW


def item_signals(
    item_id: str,
    now: datetime,
    difficulty: Optional[float],
    views: Optional[ViewStore],
) -> Optional[ItemSignals]:
    feature = None if difficulty is None else difficulty_feature(difficulty)
    if views is not None:
        return views.signals(item_id, now, difficulty_feature=feature)
    if feature is not None:
        return ItemSignals(difficulty_feature=feature)
    return None


def rank(
    items: Sequence[ItemRecord],
    strategy: Strategy | str = Strategy.SMART,
    *,
    model: Optional[HalfLifeModel] = None,
    now: Optional[datetime] = None,
    difficulties: Optional[Mapping[str, float]] = None,
    last_viewed: Optional[Mapping[str, datetime]] = None,
    views: Optional[ViewStore] = None,
    config: Union[EngineConfig, RecallConfig, None] = None,
    window: Optional[timedelta] = None,
) -> List[ItemRecord]:
    """
    Return the review queue for ``items`` under ``strategy``.

    Excluded items are always removed first. Items without history never
    raise; each strategy defines where they land.

    For ``hlr``, rated difficulties and passive views are folded into each
    item's features, and view recency comes from ``views`` unless
    ``last_viewed`` names the item explicitly. ``window`` overrides the
    dedup window taken from ``config``.
    """

    pool = [item for item in _validate_items(items) if not item.review_exclude]
    selected = Strategy.parse(strategy)

    if selected is not Strategy.HLR:
        return _RULE_RANKERS[selected](pool)

    model = model or HalfLifeModel()
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    recall_cfg, dedup_window = _resolve_config(config)
    if window is not None:
        dedup_window = window
    difficulties = difficulties or {}
    viewed: Dict[str, datetime] = views.last_viewed_map() if views is not None else {}
    viewed.update(last_viewed or {})

    scored: List[Tuple[float, ItemRecord]] = []
    for item in pool:
        difficulty = difficulties.get(item.item_id)
        priority = hlr_priority(
            item,
            model,
            now,
            difficulty=difficulty,
            last_viewed_at=viewed.get(item.item_id),
            config=recall_cfg,
            window=dedup_window,
            signals=item_signals(item.item_id, now, difficulty, views),
        )
        scored.append((priority, item))
    scored.sort(key=lambda pair: pair[0])
    return [item for _, item in scored]


def rank_ids(items: Sequence[ItemRecord], strategy: Strategy | str = Strategy.SMART, **kwargs) -> List[str]:
    return [item.item_id for item in rank(items, strategy, **kwargs)]
