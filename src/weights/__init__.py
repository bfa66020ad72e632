"""Regression-based prediction weights."""

from .manager import (
    PredictionWeights,
    WeightChangeEntry,
    WeightManager,
    WeightUpdateConflictError,
    WeightValidationError,
)

__all__ = [
    "PredictionWeights",
    "WeightChangeEntry",
    "WeightManager",
    "WeightUpdateConflictError",
    "WeightValidationError",
]
