"""Predictions package."""

from .boundary import BoundaryConfig, BoundaryValidator, BoundaryValidationResult
from .engine import GamePrediction, InsufficientDataError, PredictionEngine

__all__ = [
    "BoundaryConfig",
    "BoundaryValidator",
    "BoundaryValidationResult",
    "GamePrediction",
    "InsufficientDataError",
    "PredictionEngine",
]
