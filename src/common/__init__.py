# ABOUTME: Makes the shared common package importable across engines.
# ABOUTME: Re-exports schema types, errors, and deduplication helpers for convenience.

from .schemas import FeatureVector, ItemRecord, ItemSignals, ModelWeights, RecallEstimate, SolveEvent, TrainingRecord
from .errors import InsufficientData, InvalidWeights, MalformedInput, TrainingCancelled
from .dedup import unique_reads

__all__ = [
    "FeatureVector",
    "ItemRecord",
    "ItemSignals",
    "ModelWeights",
    "RecallEstimate",
    "SolveEvent",
    "TrainingRecord",
    "InsufficientData",
    "InvalidWeights",
    "MalformedInput",
    "TrainingCancelled",
    "unique_reads",
]
