# ABOUTME: Declares the error taxonomy raised by the HLR and review engines.
# ABOUTME: Separates recoverable training outcomes from hard input errors.

from __future__ import annotations

from typing import Sequence


class ReviewEngineError(ValueError):
    """Base class for engine errors."""


class InsufficientData(ReviewEngineError):
    """Training was requested before enough labeled records accumulated."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(f"Need at least {required} training records, have {available}.")


class InvalidWeights(ReviewEngineError):
    """A weight set failed the validation gate."""

    def __init__(self, reasons: Sequence[str]):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons) or "invalid weights")


class TrainingCancelled(ReviewEngineError):
    """The caller abandoned a fit before it finished."""


class MalformedInput(ReviewEngineError):
    """Structurally invalid input; the only engine error callers must not ignore."""
