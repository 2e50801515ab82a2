# ABOUTME: Tests the HLR trainer, solvers, retrain gating, and weight persistence.
# ABOUTME: Confirms only validated weights are ever returned or written to disk.

import json
import threading
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from src.common.config import EngineConfig, TrainingConfig
from src.common.errors import InsufficientData, InvalidWeights, TrainingCancelled
from src.common.schemas import FEATURE_KEYS, FeatureVector, ItemRecord, ModelWeights, SolveEvent, TrainingMeta, TrainingRecord
from src.hlr.features import build_dataset
from src.hlr.model import DEFAULT_WEIGHTS, weight_violations
from src.hlr.store import WeightStore
from src.hlr.train import (
    AdamSolver,
    HalfLifeTrainer,
    LeastSquaresSolver,
    build_solver,
    retrain_if_due,
    should_retrain,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

TRUE_WEIGHTS = ModelWeights.from_dict(
    {
        "bias": 2.0,
        "total_reviews": 0.2,
        "mean_score": 0.01,
        "last_score": 0.01,
        "correct_count": 0.5,
        "incorrect_count": -0.5,
        "correct_ratio": 0.3,
        "last_is_correct": 0.2,
        "time_since_first_days": 0.05,
        "first_solve_quality": 0.1,
    }
)


class ShiftSolver:
    """Returns the warm start with a nudged bias and counts invocations."""

    def __init__(self, shift=None):
        self.calls = 0
        self.shift = shift if shift is not None else {"bias": 0.5}

    def solve(self, X, y, initial, cancel=None):
        self.calls += 1
        out = np.array(initial, dtype=np.float64)
        for key, delta in self.shift.items():
            out[FEATURE_KEYS.index(key)] += delta
        return out


def _synthetic_records(n: int, weights: ModelWeights = TRUE_WEIGHTS, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, len(FEATURE_KEYS)))
    X[:, 0] = 1.0
    y = X @ weights.to_array()
    return [
        TrainingRecord(item_id=f"q{i}", y=float(y[i]), x=FeatureVector(*X[i]), delta=1.0, observed_recall=0.5)
        for i in range(n)
    ]


def _items(count: int = 20, solves: int = 4, score: float = 85.0, wobble: float = 10.0):
    items = []
    for i in range(count):
        history = tuple(
            SolveEvent(timestamp=T0 + timedelta(days=2 * d, hours=i), score=score - wobble * (d % 2)) for d in range(solves)
        )
        items.append(ItemRecord(item_id=f"item-{i}", solve_history=history))
    return items


def test_insufficient_data_raises():
    trainer = HalfLifeTrainer(LeastSquaresSolver())
    with pytest.raises(InsufficientData) as excinfo:
        trainer.fit(_synthetic_records(49))
    assert excinfo.value.available == 49
    assert excinfo.value.required == 50


def test_insufficient_data_leaves_store_untouched(tmp_path):
    store = WeightStore(tmp_path)
    store.save(DEFAULT_WEIGHTS, record_count=60)
    before = store.path.read_bytes()

    few = _items(count=3)
    assert len(build_dataset(few)) < 50
    assert retrain_if_due(few, store, trainer=HalfLifeTrainer(ShiftSolver())) is None
    assert store.path.read_bytes() == before


def test_least_squares_recovers_linear_weights():
    report = HalfLifeTrainer(LeastSquaresSolver()).fit_report(_synthetic_records(80))
    assert report.accepted
    assert report.record_count == 80
    assert report.train_mse == pytest.approx(0.0, abs=1e-12)
    np.testing.assert_allclose(report.weights.to_array(), TRUE_WEIGHTS.to_array(), atol=1e-8)


def test_adam_reduces_error_from_warm_start():
    records = _synthetic_records(100)
    X = np.vstack([r.x.to_array() for r in records])
    y = np.array([r.y for r in records])
    initial = DEFAULT_WEIGHTS.to_array()

    fitted = AdamSolver(epochs=2000, learning_rate=0.05).solve(X, y, initial)
    start_mse = float(np.mean((X @ initial - y) ** 2))
    end_mse = float(np.mean((X @ fitted - y) ** 2))
    assert end_mse < 0.05 * start_mse


@pytest.mark.parametrize("solver", [LeastSquaresSolver(), AdamSolver(epochs=200, learning_rate=0.05)])
def test_degenerate_data_never_yields_invalid_weights(solver):
    # Every attempt perfect: most feature columns are constant and collinear.
    items = _items(count=20, solves=4, score=100.0, wobble=0.0)
    records = build_dataset(items)
    assert len(records) >= 50

    report = HalfLifeTrainer(solver).fit_report(records)
    assert weight_violations(report.weights) == []


def test_rejected_weights_fall_back_to_previous():
    previous = ModelWeights.from_dict({**DEFAULT_WEIGHTS.as_dict(), "bias": 1.7})
    trainer = HalfLifeTrainer(ShiftSolver({"incorrect_count": 1.5}))

    report = trainer.fit_report(_synthetic_records(60), previous=previous)
    assert not report.accepted
    assert report.weights == previous


def test_invalid_previous_falls_back_to_defaults():
    broken = ModelWeights.from_dict({**DEFAULT_WEIGHTS.as_dict(), "bias": 9.0})
    trainer = HalfLifeTrainer(ShiftSolver({"correct_count": -5.0}))

    assert trainer.fit(_synthetic_records(60), previous=broken) == DEFAULT_WEIGHTS


def test_warm_start_uses_previous_weights():
    previous = ModelWeights.from_dict({**DEFAULT_WEIGHTS.as_dict(), "bias": 1.2})
    weights = HalfLifeTrainer(ShiftSolver()).fit(_synthetic_records(60), previous=previous)
    assert weights.get("bias") == pytest.approx(1.7)


def test_cancelled_fit_raises_and_store_is_untouched(tmp_path):
    store = WeightStore(tmp_path)
    cancel = threading.Event()
    cancel.set()

    trainer = HalfLifeTrainer(AdamSolver(epochs=10))
    with pytest.raises(TrainingCancelled):
        retrain_if_due(_items(), store, trainer=trainer, cancel=cancel)
    assert not store.path.exists()

    with pytest.raises(TrainingCancelled):
        LeastSquaresSolver().solve(np.ones((2, 10)), np.ones(2), np.zeros(10), cancel)


@pytest.mark.parametrize(
    "count, last_count, expected",
    [
        (49, None, False),
        (50, None, True),
        (59, 50, False),
        (60, 50, True),
        (200, 195, False),
    ],
)
def test_should_retrain(count, last_count, expected):
    meta = None if last_count is None else TrainingMeta(trained_at=T0, training_record_count=last_count)
    assert should_retrain(count, meta) is expected


def test_retrain_if_due_persists_then_waits_for_new_data(tmp_path):
    store = WeightStore(tmp_path)
    solver = ShiftSolver()
    trainer = HalfLifeTrainer(solver)
    items = _items()

    weights = retrain_if_due(items, store, trainer=trainer)
    assert weights is not None
    assert weights.get("bias") == pytest.approx(DEFAULT_WEIGHTS.get("bias") + 0.5)
    assert store.load_weights() == weights
    assert store.load_meta().training_record_count == 60

    assert retrain_if_due(items, store, trainer=trainer) is None
    assert solver.calls == 1


def test_retrain_if_due_skips_rejected_fit(tmp_path):
    store = WeightStore(tmp_path)
    trainer = HalfLifeTrainer(ShiftSolver({"bias": 10.0}))
    assert retrain_if_due(_items(), store, trainer=trainer) is None
    assert not store.path.exists()


def test_build_solver_backends():
    assert isinstance(build_solver(TrainingConfig(backend="adam")), AdamSolver)
    assert isinstance(build_solver(TrainingConfig(backend=" LSTSQ ")), LeastSquaresSolver)
    with pytest.raises(ValueError):
        build_solver(TrainingConfig(backend="sgd"))


def test_torch_solver_matches_linear_fit():
    pytest.importorskip("torch")
    from src.hlr.torch_backend import TorchAdamSolver

    records = _synthetic_records(100)
    X = np.vstack([r.x.to_array() for r in records])
    y = np.array([r.y for r in records])
    initial = DEFAULT_WEIGHTS.to_array()

    fitted = TorchAdamSolver(epochs=1000, learning_rate=0.05).solve(X, y, initial)
    assert fitted.shape == (len(FEATURE_KEYS),)
    assert np.mean((X @ fitted - y) ** 2) < 0.05 * np.mean((X @ initial - y) ** 2)

    cancel = threading.Event()
    cancel.set()
    with pytest.raises(TrainingCancelled):
        TorchAdamSolver(epochs=5).solve(X, y, initial, cancel)


class TestWeightStore:
    def test_round_trip(self, tmp_path):
        store = WeightStore(tmp_path / "nested")
        meta = store.save(TRUE_WEIGHTS, record_count=75, trained_at=T0)

        assert store.load_weights() == TRUE_WEIGHTS
        loaded = store.load_meta()
        assert loaded == meta
        assert loaded.trained_at == T0
        assert not list(store.directory.glob("*.tmp"))

    def test_missing_file(self, tmp_path):
        store = WeightStore(tmp_path)
        assert store.load_weights() is None
        assert store.load_meta() is None

    def test_corrupt_file_is_ignored(self, tmp_path):
        store = WeightStore(tmp_path)
        store.path.write_text("{not json", encoding="utf-8")
        assert store.load_weights() is None
        assert store.load_meta() is None

    def test_invalid_stored_weights_are_ignored(self, tmp_path):
        store = WeightStore(tmp_path)
        payload = {
            "weights": {**DEFAULT_WEIGHTS.as_dict(), "incorrect_count": 0.4},
            "trained_at": T0.isoformat(),
            "training_record_count": 55,
            "version": 2,
        }
        store.path.write_text(json.dumps(payload), encoding="utf-8")
        assert store.load_weights() is None
        assert store.load_meta().training_record_count == 55

    def test_save_rejects_invalid_weights(self, tmp_path):
        store = WeightStore(tmp_path)
        with pytest.raises(InvalidWeights):
            store.save(ModelWeights.from_dict({"bias": 1.0}), record_count=50)
        assert not store.path.exists()

    def test_clear_and_status(self, tmp_path):
        store = WeightStore(tmp_path)
        assert store.status(12) == {
            "has_weights": False,
            "data_count": 12,
            "last_data_count": 0,
            "last_trained": None,
            "version": 0,
        }

        store.save(DEFAULT_WEIGHTS, record_count=50, trained_at=T0)
        status = store.status(64)
        assert status["has_weights"] is True
        assert status["last_data_count"] == 50
        assert status["last_trained"] == T0.isoformat()
        assert status["version"] == 2

        store.clear()
        assert store.load_weights() is None
        store.clear()


def test_engine_config_defaults_drive_retrain(tmp_path):
    config = EngineConfig(training=TrainingConfig(min_records=10, min_new_records=5))
    items = _items(count=4)
    store = WeightStore(tmp_path)
    trainer = HalfLifeTrainer(ShiftSolver(), min_records=10)
    assert retrain_if_due(items, store, config=config, trainer=trainer) is not None
    assert store.load_meta().training_record_count == 12
