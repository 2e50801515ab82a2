# ABOUTME: Loads engine configuration from YAML into typed dataclasses.
# ABOUTME: Missing sections fall back to the defaults used by the library functions.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class DedupConfig:
    window_minutes: float = 5.0

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


@dataclass(frozen=True)
class TrainingConfig:
    """Settings for fitting HLR weights."""

    min_records: int = 50
    min_new_records: int = 10
    epochs: int = 50
    learning_rate: float = 0.01
    backend: str = "adam"
    seed: int = 42


@dataclass(frozen=True)
class RecallConfig:
    short_term_minutes: float = 60.0
    min_score_weight: float = 0.3
    score_weight_exponent: float = 0.3
    target_recall: float = 0.9


@dataclass(frozen=True)
class SchedulerConfig:
    default_strategy: str = "smart"


@dataclass(frozen=True)
class EngineConfig:
    dedup: DedupConfig = field(default_factory=DedupConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    recall: RecallConfig = field(default_factory=RecallConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    store_dir: Path = Path("reports/hlr")


def load_engine_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Read a YAML config; ``None`` returns the built-in defaults."""

    if config_path is None:
        return EngineConfig()

    with open(config_path) as f:
        cfg: Dict[str, Any] = yaml.safe_load(f) or {}

    outputs_cfg = cfg.get("outputs", {})
    return EngineConfig(
        dedup=DedupConfig(**cfg.get("dedup", {})),
        training=TrainingConfig(**cfg.get("training", {})),
        recall=RecallConfig(**cfg.get("recall", {})),
        scheduler=SchedulerConfig(**cfg.get("scheduler", {})),
        store_dir=Path(outputs_cfg.get("store_dir", "reports/hlr")),
    )
