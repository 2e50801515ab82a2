# ABOUTME: Defines evaluation helpers for recall predictions and fitted HLR weights.
# ABOUTME: Computes AUC, calibration, and half-life error against observed reviews.

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Sequence, TYPE_CHECKING

import numpy as np
import pandas as pd
from sklearn.metrics import average_precision_score, roc_auc_score

from .schemas import CORRECT_SCORE_THRESHOLD, TrainingRecord

if TYPE_CHECKING:
    from src.hlr.model import HalfLifeModel

# Observed recall at or above this comes from a correct (>= 80 point) attempt.
CORRECT_RECALL_THRESHOLD = CORRECT_SCORE_THRESHOLD / 100.0


def evaluate_predictions(predictions: pd.DataFrame, metrics: Iterable[str]) -> Mapping[str, float]:
    """
    Evaluate a predictions dataframe using the requested metric names.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred']; y_true may be binary or a probability for 'mae'.
    metrics : Iterable[str]
        Metric identifiers: 'auc', 'average_precision', 'calibration_ece', 'mae'.
    """

    metrics = list(metrics)
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    y_true = predictions["y_true"].astype(float)
    y_pred = predictions["y_pred"].astype(float).clip(0.0, 1.0)

    results: Dict[str, float] = {}
    for metric in metrics:
        if metric == "auc":
            # roc_auc_score requires both classes; 0.0 flags the degenerate case.
            if len(np.unique(y_true)) < 2:
                results[metric] = 0.0
            else:
                results[metric] = float(roc_auc_score(y_true, y_pred))
        elif metric == "average_precision":
            results[metric] = float(average_precision_score(y_true, y_pred))
        elif metric == "calibration_ece":
            results[metric] = float(_expected_calibration_error(y_true.to_numpy(), y_pred.to_numpy()))
        elif metric == "mae":
            results[metric] = float(np.mean(np.abs(y_true - y_pred)))
        else:
            raise ValueError(f"Unsupported metric '{metric}'.")

    return results


def _expected_calibration_error(y_true: np.ndarray, y_pred: np.ndarray, num_bins: int = 10) -> float:
    """Weighted gap between mean prediction and hit rate over equal-width bins."""

    total = len(y_true)
    if total == 0:
        return np.nan

    bins = np.minimum((y_pred * num_bins).astype(int), num_bins - 1)
    ece = 0.0
    for b in range(num_bins):
        mask = bins == b
        count = int(mask.sum())
        if count == 0:
            continue
        ece += (count / total) * abs(y_true[mask].mean() - y_pred[mask].mean())
    return ece


def half_life_predictions_frame(records: Sequence[TrainingRecord], model: "HalfLifeModel") -> pd.DataFrame:
    """Predicted vs observed recall at each record's review gap."""

    rows = []
    for record in records:
        half_life = model.predict(record.x)
        rows.append(
            {
                "item_id": record.item_id,
                "delta": record.delta,
                "log2h_true": record.y,
                "log2h_pred": float(np.log2(half_life)),
                "recall_true": record.observed_recall,
                "y_true": 1.0 if record.observed_recall >= CORRECT_RECALL_THRESHOLD else 0.0,
                "y_pred": float(2.0 ** (-record.delta / half_life)),
            }
        )
    return pd.DataFrame(
        rows,
        columns=["item_id", "delta", "log2h_true", "log2h_pred", "recall_true", "y_true", "y_pred"],
    )


def evaluate_half_life_model(records: Sequence[TrainingRecord], model: "HalfLifeModel") -> Dict[str, float]:
    frame = half_life_predictions_frame(records, model)
    if frame.empty:
        return {"log2h_mae": np.nan, "recall_mae": np.nan, "auc": np.nan, "calibration_ece": np.nan}

    results = {
        "log2h_mae": float(np.mean(np.abs(frame["log2h_true"] - frame["log2h_pred"]))),
        "recall_mae": float(np.mean(np.abs(frame["recall_true"] - frame["y_pred"]))),
    }
    results.update(evaluate_predictions(frame, metrics=["auc", "calibration_ece"]))
    return results
