# ABOUTME: Exposes review-queue ranking entrypoints.
# ABOUTME: Groups the strategy scheduler, the difficulty tracker, and the passive view store.

from .scheduler import Strategy, rank, rank_ids
from .difficulty import DifficultyTracker
from .views import ViewStore

__all__ = [
    "Strategy",
    "rank",
    "rank_ids",
    "DifficultyTracker",
    "ViewStore",
]
