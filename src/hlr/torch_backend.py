# ABOUTME: Provides a PyTorch solver for HLR weights as a swappable training backend.
# ABOUTME: Fits a bias-free linear layer with Adam on mean squared error.

from __future__ import annotations

import threading
from typing import Optional

import numpy as np
import torch
from loguru import logger
from torch import nn

from src.common.errors import TrainingCancelled


class TorchAdamSolver:
    """Single dense unit without intercept; the bias feature carries the intercept."""

    def __init__(self, epochs: int = 50, learning_rate: float = 0.01, seed: int = 42):
        self.epochs = epochs
        self.learning_rate = learning_rate
        self.seed = seed

    def solve(
        self,
        X: np.ndarray,
        y: np.ndarray,
        initial: np.ndarray,
        cancel: Optional[threading.Event] = None,
    ) -> np.ndarray:
        torch.manual_seed(self.seed)
        xs = torch.tensor(X, dtype=torch.float64)
        ys = torch.tensor(y, dtype=torch.float64).unsqueeze(-1)

        layer = nn.Linear(xs.shape[1], 1, bias=False).double()
        with torch.no_grad():
            layer.weight.copy_(torch.tensor(initial, dtype=torch.float64).unsqueeze(0))

        criterion = nn.MSELoss()
        optimizer = torch.optim.Adam(layer.parameters(), lr=self.learning_rate)
        for epoch in range(1, self.epochs + 1):
            if cancel is not None and cancel.is_set():
                raise TrainingCancelled("HLR fit cancelled by caller.")
            optimizer.zero_grad()
            loss = criterion(layer(xs), ys)
            loss.backward()
            optimizer.step()
            if epoch % 10 == 0:
                logger.debug(f"[hlr] Epoch {epoch}/{self.epochs} - Loss: {loss.item():.4f}")

        return layer.weight.detach().squeeze(0).numpy().copy()
