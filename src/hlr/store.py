# ABOUTME: Persists validated HLR weights and the training marker as one JSON document.
# ABOUTME: Writes atomically so an abandoned fit never leaves a partial weight set.

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from src.common.schemas import ModelWeights, TrainingMeta

from .model import validate_weights, weight_violations

STORE_VERSION = 2
MODEL_FILENAME = "hlr_model.json"


class WeightStore:
    """Directory-backed store for the active trained weights."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.path = self.directory / MODEL_FILENAME

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"[hlr] Ignoring unreadable weight store {self.path}: {exc}")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"[hlr] Ignoring weight store {self.path}: expected a JSON object")
            return None
        return payload

    def load_weights(self) -> Optional[ModelWeights]:
        payload = self._read()
        if payload is None or not isinstance(payload.get("weights"), dict):
            return None
        try:
            weights = ModelWeights.from_dict(payload["weights"])
        except (TypeError, ValueError) as exc:
            logger.warning(f"[hlr] Ignoring stored weights with non-numeric values: {exc}")
            return None
        problems = weight_violations(weights)
        if problems:
            logger.warning(f"[hlr] Ignoring stored weights that fail validation: {'; '.join(problems)}")
            return None
        return weights

    def load_meta(self) -> Optional[TrainingMeta]:
        payload = self._read()
        if payload is None or "trained_at" not in payload:
            return None
        try:
            return TrainingMeta(
                trained_at=datetime.fromisoformat(payload["trained_at"]),
                training_record_count=int(payload.get("training_record_count", 0)),
                version=int(payload.get("version", STORE_VERSION)),
            )
        except (TypeError, ValueError) as exc:
            logger.warning(f"[hlr] Ignoring malformed training marker: {exc}")
            return None

    def save(
        self,
        weights: ModelWeights,
        record_count: int,
        trained_at: Optional[datetime] = None,
    ) -> TrainingMeta:
        """Validate, then replace the stored document in a single rename."""

        validate_weights(weights)
        meta = TrainingMeta(
            trained_at=trained_at or datetime.now(timezone.utc),
            training_record_count=int(record_count),
            version=STORE_VERSION,
        )
        payload = {
            "weights": weights.as_dict(),
            "trained_at": meta.trained_at.isoformat(),
            "training_record_count": meta.training_record_count,
            "version": meta.version,
        }

        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".hlr_model.", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(payload, indent=2))
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return meta

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def status(self, current_record_count: int = 0) -> Dict[str, Any]:
        meta = self.load_meta()
        return {
            "has_weights": self.load_weights() is not None,
            "data_count": int(current_record_count),
            "last_data_count": meta.training_record_count if meta else 0,
            "last_trained": meta.trained_at.isoformat() if meta else None,
            "version": meta.version if meta else 0,
        }
