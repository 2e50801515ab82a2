# ABOUTME: Fits HLR weights from accumulated training records behind a validation gate.
# ABOUTME: Provides the Typer CLI for training, status, evaluation, and dataset export.

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol, Sequence

import numpy as np
import typer
from loguru import logger

from src.common.config import EngineConfig, TrainingConfig, load_engine_config
from src.common.errors import InsufficientData, InvalidWeights, TrainingCancelled
from src.common.evaluation import evaluate_half_life_model
from src.common.history_io import load_item_records
from src.common.schemas import ItemRecord, ModelWeights, TrainingMeta, TrainingRecord

from .features import build_dataset, training_records_frame
from .model import DEFAULT_WEIGHTS, HalfLifeModel, validate_weights, weight_violations
from .store import WeightStore

app = typer.Typer(help="Train and manage the HLR half-life model.")


class WeightSolver(Protocol):
    def solve(
        self,
        X: np.ndarray,
        y: np.ndarray,
        initial: np.ndarray,
        cancel: Optional[threading.Event] = None,
    ) -> np.ndarray:
        ...


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise TrainingCancelled("HLR fit cancelled by caller.")


class AdamSolver:
    """Full-batch gradient descent on mean squared error with Adam steps."""

    def __init__(
        self,
        epochs: int = 50,
        learning_rate: float = 0.01,
        beta1: float = 0.9,
        beta2: float = 0.999,
        eps: float = 1e-8,
    ):
        self.epochs = epochs
        self.learning_rate = learning_rate
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps

    def solve(self, X, y, initial, cancel=None):
        w = np.array(initial, dtype=np.float64)
        m = np.zeros_like(w)
        v = np.zeros_like(w)
        n = max(len(y), 1)
        for epoch in range(1, self.epochs + 1):
            _check_cancel(cancel)
            residual = X @ w - y
            grad = (2.0 / n) * (X.T @ residual)
            m = self.beta1 * m + (1 - self.beta1) * grad
            v = self.beta2 * v + (1 - self.beta2) * grad**2
            m_hat = m / (1 - self.beta1**epoch)
            v_hat = v / (1 - self.beta2**epoch)
            w = w - self.learning_rate * m_hat / (np.sqrt(v_hat) + self.eps)
            if epoch % 10 == 0:
                logger.debug(f"[hlr] Epoch {epoch}/{self.epochs} - Loss: {float(np.mean(residual**2)):.4f}")
        return w


class LeastSquaresSolver:
    """Closed-form ordinary least squares; ignores the warm start."""

    def solve(self, X, y, initial, cancel=None):
        _check_cancel(cancel)
        solution, *_ = np.linalg.lstsq(X, y, rcond=None)
        return solution


def build_solver(config: TrainingConfig) -> WeightSolver:
    backend = config.backend.strip().lower()
    if backend == "adam":
        return AdamSolver(epochs=config.epochs, learning_rate=config.learning_rate)
    if backend == "lstsq":
        return LeastSquaresSolver()
    if backend == "torch":
        from .torch_backend import TorchAdamSolver

        return TorchAdamSolver(epochs=config.epochs, learning_rate=config.learning_rate, seed=config.seed)
    raise ValueError(f"Unsupported training backend '{config.backend}'. Expected one of: adam, lstsq, torch.")


@dataclass(frozen=True)
class FitReport:
    weights: ModelWeights
    accepted: bool
    record_count: int
    train_mse: float


def _design_matrix(records: Sequence[TrainingRecord]):
    X = np.vstack([record.x.to_array() for record in records])
    y = np.array([record.y for record in records], dtype=np.float64)
    return X, y


class HalfLifeTrainer:
    """Fits candidate weights and only hands back ones that pass the gate."""

    def __init__(self, solver: Optional[WeightSolver] = None, min_records: int = 50):
        self.solver = solver or AdamSolver()
        self.min_records = min_records

    def fit_report(
        self,
        records: Sequence[TrainingRecord],
        previous: Optional[ModelWeights] = None,
        cancel: Optional[threading.Event] = None,
    ) -> FitReport:
        if len(records) < self.min_records:
            raise InsufficientData(available=len(records), required=self.min_records)

        fallback = previous if previous is not None and not weight_violations(previous) else DEFAULT_WEIGHTS
        X, y = _design_matrix(records)
        logger.info(f"[hlr] Training on {len(records)} records")
        raw = self.solver.solve(X, y, fallback.to_array(), cancel)
        candidate = ModelWeights.from_array(raw)

        try:
            validate_weights(candidate)
        except InvalidWeights as exc:
            logger.warning(f"[hlr] Rejected trained weights, keeping previous: {exc}")
            return FitReport(
                weights=fallback,
                accepted=False,
                record_count=len(records),
                train_mse=float(np.mean((X @ fallback.to_array() - y) ** 2)),
            )

        mse = float(np.mean((X @ raw - y) ** 2))
        logger.info(f"[hlr] Accepted trained weights (train MSE {mse:.4f})")
        return FitReport(weights=candidate, accepted=True, record_count=len(records), train_mse=mse)

    def fit(
        self,
        records: Sequence[TrainingRecord],
        previous: Optional[ModelWeights] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ModelWeights:
        return self.fit_report(records, previous, cancel).weights


def should_retrain(
    record_count: int,
    meta: Optional[TrainingMeta],
    min_records: int = 50,
    min_new_records: int = 10,
) -> bool:
    if record_count < min_records:
        return False
    last_count = meta.training_record_count if meta else 0
    return record_count - last_count >= min_new_records


def retrain_if_due(
    items: Iterable[ItemRecord],
    store: WeightStore,
    config: Optional[EngineConfig] = None,
    trainer: Optional[HalfLifeTrainer] = None,
    cancel: Optional[threading.Event] = None,
) -> Optional[ModelWeights]:
    """
    Refit and persist weights when enough new data has accumulated.

    Meant to be submitted to a background executor by the caller. Returns the
    newly stored weights, or ``None`` when the fit was skipped or rejected.
    """

    config = config or EngineConfig()
    training_cfg = config.training
    records = build_dataset(items, window=config.dedup.window)
    meta = store.load_meta()

    if not should_retrain(len(records), meta, training_cfg.min_records, training_cfg.min_new_records):
        last_count = meta.training_record_count if meta else 0
        logger.info(
            f"[hlr] Skipping retrain: {len(records)} records, {len(records) - last_count} new "
            f"(need {training_cfg.min_records} total and {training_cfg.min_new_records} new)"
        )
        return None

    trainer = trainer or HalfLifeTrainer(build_solver(training_cfg), min_records=training_cfg.min_records)
    report = trainer.fit_report(records, previous=store.load_weights(), cancel=cancel)
    if not report.accepted:
        return None
    store.save(report.weights, report.record_count)
    return report.weights


@app.command()
def train(
    history: Path = typer.Option(..., "--history", exists=True, help="Exported solve history (JSON, CSV, or parquet)."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML."),
    force: bool = typer.Option(False, "--force", help="Ignore the new-record threshold."),
) -> None:
    """Fit weights from a history export and store them if they pass validation."""

    engine_cfg = load_engine_config(config)
    store = WeightStore(engine_cfg.store_dir)
    items = load_item_records(history)
    typer.echo(f"[hlr] Loaded {len(items)} items from {history}")

    if force:
        records = build_dataset(items, window=engine_cfg.dedup.window)
        trainer = HalfLifeTrainer(build_solver(engine_cfg.training), min_records=engine_cfg.training.min_records)
        try:
            report = trainer.fit_report(records, previous=store.load_weights())
        except InsufficientData as exc:
            typer.echo(f"[hlr] {exc}")
            raise typer.Exit(code=1)
        if report.accepted:
            store.save(report.weights, report.record_count)
        weights = report.weights if report.accepted else None
    else:
        weights = retrain_if_due(items, store, engine_cfg)

    if weights is None:
        typer.echo("[hlr] No new weights stored")
        return
    typer.echo(f"[hlr] Stored weights at {store.path}")
    typer.echo(json.dumps(weights.as_dict(), indent=2))


@app.command()
def status(
    history: Optional[Path] = typer.Option(None, "--history", help="Optional history export to count records."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML."),
) -> None:
    """Show whether trained weights exist and how much data they saw."""

    engine_cfg = load_engine_config(config)
    store = WeightStore(engine_cfg.store_dir)
    count = 0
    if history is not None:
        count = len(build_dataset(load_item_records(history), window=engine_cfg.dedup.window))
    typer.echo(json.dumps(store.status(count), indent=2))


@app.command()
def clear(config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML.")) -> None:
    """Delete stored weights so predictions fall back to the defaults."""

    store = WeightStore(load_engine_config(config).store_dir)
    store.clear()
    typer.echo("[hlr] Cleared trained weights")


@app.command("export-dataset")
def export_dataset(
    history: Path = typer.Option(..., "--history", exists=True, help="Exported solve history."),
    output: Path = typer.Option(Path("reports/hlr_dataset.csv"), "--output", help="CSV destination."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML."),
) -> None:
    """Write the derived training records to CSV."""

    engine_cfg = load_engine_config(config)
    records = build_dataset(load_item_records(history), window=engine_cfg.dedup.window)
    output.parent.mkdir(parents=True, exist_ok=True)
    training_records_frame(records).to_csv(output, index=False)
    typer.echo(f"[hlr] Wrote {len(records)} records to {output}")


@app.command()
def evaluate(
    history: Path = typer.Option(..., "--history", exists=True, help="Exported solve history."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to hlr config YAML."),
) -> None:
    """Score the active model against the records derived from a history export."""

    engine_cfg = load_engine_config(config)
    store = WeightStore(engine_cfg.store_dir)
    weights = store.load_weights() or DEFAULT_WEIGHTS
    records = build_dataset(load_item_records(history), window=engine_cfg.dedup.window)
    if not records:
        raise typer.BadParameter("No training records could be derived.", param_hint="--history")
    metrics = evaluate_half_life_model(records, HalfLifeModel(weights))
    typer.echo(json.dumps(metrics, indent=2))


if __name__ == "__main__":
    app()
