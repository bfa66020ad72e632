"""Prediction accuracy measurement against actual outcomes."""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.metrics import brier_score_loss, log_loss, roc_auc_score

from config.settings import Settings
from src.data.models import GameRecord
from src.predictions.engine import GamePrediction
from src.validation.core import (
    Severity,
    ValidationComponent,
    ValidationIssue,
    ValidationLogger,
    ValidationResult,
)

logger = logging.getLogger(__name__)

COMPONENT = ValidationComponent.PREDICTION_ACCURACY
CALIBRATION_BINS = 10


@dataclass
class AccuracyResults:
    """Aggregate accuracy of a set of predictions."""

    games: int
    winner_accuracy: float  # percent
    score_mae: float
    spread_mae: float
    spread_rmse: float
    total_mae: float
    brier_score: float
    log_loss: float
    roc_auc: Optional[float]
    calibration_score: float  # 100 x (1 - expected calibration error)
    bias: float  # mean(predicted home win prob - outcome)
    calibration_bins: list = field(default_factory=list)
    accuracy_by_confidence: dict = field(default_factory=dict)
    validation: Optional[ValidationResult] = None

    def to_dict(self) -> dict:
        return {
            "games": self.games,
            "winner_accuracy": self.winner_accuracy,
            "score_mae": self.score_mae,
            "spread_mae": self.spread_mae,
            "spread_rmse": self.spread_rmse,
            "total_mae": self.total_mae,
            "brier_score": self.brier_score,
            "log_loss": self.log_loss,
            "roc_auc": self.roc_auc,
            "calibration_score": self.calibration_score,
            "bias": self.bias,
            "calibration_bins": list(self.calibration_bins),
            "accuracy_by_confidence": dict(self.accuracy_by_confidence),
            "validation": self.validation.to_dict() if self.validation else None,
        }


def calibration_table(probs: np.ndarray, outcomes: np.ndarray, n_bins: int = CALIBRATION_BINS) -> tuple[list[dict], float]:
    """Equal-width probability bins and the expected calibration error."""
    edges = np.linspace(0.0, 1.0, n_bins + 1)
    idx = np.clip(np.digitize(probs, edges[1:-1]), 0, n_bins - 1)
    bins, ece = [], 0.0
    for b in range(n_bins):
        mask = idx == b
        count = int(mask.sum())
        if not count:
            continue
        mean_pred = float(probs[mask].mean())
        observed = float(outcomes[mask].mean())
        ece += count / len(probs) * abs(mean_pred - observed)
        bins.append({
            "lower": float(edges[b]),
            "upper": float(edges[b + 1]),
            "count": count,
            "mean_predicted": mean_pred,
            "observed_rate": observed,
        })
    return bins, ece


class AccuracyTester:
    """Scores predictions against final results."""

    def __init__(self, settings: Settings, validation_logger: Optional[ValidationLogger] = None):
        self.settings = settings
        self.validation_logger = validation_logger

    def frame(self, predictions: list[GamePrediction], games: list[GameRecord]) -> pd.DataFrame:
        """Join predictions to final games on game_id."""
        finals = {g.game_id: g for g in games if g.is_final}
        rows = []
        for p in predictions:
            game = finals.get(p.game_id)
            if game is None:
                continue
            rows.append({
                "game_id": p.game_id,
                "pred_home": p.home_score,
                "pred_away": p.away_score,
                "actual_home": game.home_points,
                "actual_away": game.away_points,
                "home_win_prob": p.home_win_probability / 100.0,
                "confidence_level": p.confidence_level,
            })
        return pd.DataFrame(rows)

    def frame_from_analyses(self, results: list) -> pd.DataFrame:
        """Rows from GameAnalysisResult records."""
        return pd.DataFrame([{
            "game_id": r.game_id,
            "pred_home": r.predicted_home,
            "pred_away": r.predicted_away,
            "actual_home": r.actual_home,
            "actual_away": r.actual_away,
            "home_win_prob": r.win_probability / 100.0,
            "confidence_level": r.confidence_level,
        } for r in results])

    def evaluate(self, predictions: list[GamePrediction], games: list[GameRecord]) -> AccuracyResults:
        return self.evaluate_frame(self.frame(predictions, games))

    def evaluate_analyses(self, results: list) -> AccuracyResults:
        return self.evaluate_frame(self.frame_from_analyses(results))

    def evaluate_frame(self, df: pd.DataFrame) -> AccuracyResults:
        """Compute accuracy metrics for a frame of predictions joined to outcomes.

        Args:
            df: Columns pred_home, pred_away, actual_home, actual_away,
                home_win_prob (0-1), confidence_level

        Returns:
            AccuracyResults with an attached prediction_accuracy ValidationResult
        """
        s = self.settings
        if df.empty:
            validation = ValidationResult.build(COMPONENT, errors=[ValidationIssue(
                "NO_PREDICTIONS", "No predictions matched to final games", Severity.CRITICAL, COMPONENT,
            )])
            if self.validation_logger is not None:
                self.validation_logger.log_result(validation)
            return AccuracyResults(
                games=0, winner_accuracy=0.0, score_mae=0.0, spread_mae=0.0, spread_rmse=0.0,
                total_mae=0.0, brier_score=0.0, log_loss=0.0, roc_auc=None,
                calibration_score=0.0, bias=0.0, validation=validation,
            )

        outcome = (df["actual_home"] > df["actual_away"]).astype(int).to_numpy()
        probs = df["home_win_prob"].clip(0.0, 1.0).to_numpy(dtype=float)
        pred_spread = (df["pred_home"] - df["pred_away"]).to_numpy(dtype=float)
        actual_spread = (df["actual_home"] - df["actual_away"]).to_numpy(dtype=float)
        picked_home = pred_spread >= 0
        correct = picked_home == (outcome == 1)

        score_errors = np.concatenate([
            np.abs(df["pred_home"] - df["actual_home"]).to_numpy(dtype=float),
            np.abs(df["pred_away"] - df["actual_away"]).to_numpy(dtype=float),
        ])
        total_error = np.abs(
            (df["pred_home"] + df["pred_away"]) - (df["actual_home"] + df["actual_away"])
        ).to_numpy(dtype=float)

        bins, ece = calibration_table(probs, outcome)
        roc_auc = float(roc_auc_score(outcome, probs)) if len(set(outcome)) == 2 else None

        by_confidence = {}
        for level, group in df.assign(correct=correct).groupby("confidence_level"):
            by_confidence[level] = {
                "games": int(len(group)),
                "winner_accuracy": float(100.0 * group["correct"].mean()),
            }

        results = AccuracyResults(
            games=len(df),
            winner_accuracy=float(100.0 * correct.mean()),
            score_mae=float(score_errors.mean()),
            spread_mae=float(np.abs(pred_spread - actual_spread).mean()),
            spread_rmse=float(np.sqrt(np.mean((pred_spread - actual_spread) ** 2))),
            total_mae=float(total_error.mean()),
            brier_score=float(brier_score_loss(outcome, probs)),
            log_loss=float(log_loss(outcome, probs, labels=[0, 1])),
            roc_auc=roc_auc,
            calibration_score=100.0 * (1.0 - ece),
            bias=float(np.mean(probs - outcome)),
            calibration_bins=bins,
            accuracy_by_confidence=by_confidence,
        )

        errors, warnings, recommendations = [], [], []
        if results.winner_accuracy < s.accuracy_min:
            errors.append(ValidationIssue(
                "LOW_ACCURACY",
                f"Winner accuracy {results.winner_accuracy:.1f}% below {s.accuracy_min}%",
                Severity.HIGH, COMPONENT,
            ))
        if abs(results.bias) > s.accuracy_max_bias:
            errors.append(ValidationIssue(
                "PROBABILITY_BIAS",
                f"Win probabilities biased by {results.bias:+.3f} (limit {s.accuracy_max_bias})",
                Severity.MEDIUM, COMPONENT,
            ))
            side = "home" if results.bias > 0 else "away"
            recommendations.append(f"Win probabilities overstate the {side} team; revisit home field weight")
        if results.calibration_score < s.calibration_threshold * 100:
            warnings.append(
                f"Calibration score {results.calibration_score:.1f} below {s.calibration_threshold * 100:.0f}"
            )
        if results.games < 30:
            warnings.append(f"Only {results.games} games evaluated; accuracy estimates are noisy")

        results.validation = ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings, recommendations=recommendations,
            metadata={"games": results.games, "winner_accuracy": results.winner_accuracy,
                      "brier_score": results.brier_score},
        )
        if self.validation_logger is not None:
            self.validation_logger.log_result(results.validation)
        logger.info(
            f"Accuracy over {results.games} games: winner {results.winner_accuracy:.1f}%, "
            f"MAE {results.score_mae:.2f}, Brier {results.brier_score:.3f}"
        )
        return results
