# ABOUTME: Exposes Half-Life Regression entrypoints.
# ABOUTME: Groups feature builders, the half-life model, training, and recall estimation.

from .features import build_live_features, build_training_records
from .model import DEFAULT_WEIGHTS, HalfLifeModel
from .recall import estimate_recall
from .train import HalfLifeTrainer, retrain_if_due

__all__ = [
    "build_live_features",
    "build_training_records",
    "DEFAULT_WEIGHTS",
    "HalfLifeModel",
    "estimate_recall",
    "HalfLifeTrainer",
    "retrain_if_due",
]
