"""Sample game analysis.

Selects a stratified sample of completed games, re-predicts each one, and
compares the prediction with what actually happened. Each result carries an
error classification and a readable explanation built from the game's key
matchups.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config.settings import Settings
from src.data.models import GameRecord
from src.data.source import DataFrameSource
from src.models.efficiency import TeamEfficiencyProfile
from src.predictions.engine import GamePrediction, PredictionEngine
from src.validation.core import (
    ErrorHandler,
    Severity,
    ValidationComponent,
    ValidationIssue,
    ValidationLogger,
    ValidationResult,
)
from src.weights.manager import PredictionWeights

logger = logging.getLogger(__name__)

COMPONENT = ValidationComponent.SAMPLE_GAME_ANALYZER

CLOSE_MARGIN = 7
BLOWOUT_MARGIN = 28
UPSET_MARGIN = 10
NOISE_ERROR = 14
WITHIN_CI_ERROR = 10
ASYMMETRY_GAP = 10

# Share of the sample drawn from each category; regular games fill the rest
CATEGORY_SHARES = (("close", 0.30), ("blowout", 0.25), ("upset", 0.20))
GAME_CATEGORIES = ("close", "blowout", "upset", "regular")

ERROR_TYPES = ("statistical_noise", "model_limitation", "data_quality", "systematic_bias")


def categorize_game(game: GameRecord) -> str:
    """close (|margin| <= 7), blowout (>= 28), upset (away wins by > 10), else regular."""
    margin = game.margin
    if abs(margin) <= CLOSE_MARGIN:
        return "close"
    if abs(margin) >= BLOWOUT_MARGIN:
        return "blowout"
    if -margin > UPSET_MARGIN:
        return "upset"
    return "regular"


def classify_error(total_error: float, confidence: float, r_squared: float) -> str:
    if total_error <= NOISE_ERROR:
        return "statistical_noise"
    if confidence < 60:
        return "model_limitation"
    if r_squared < 0.3:
        return "data_quality"
    return "systematic_bias"


def prediction_quality(winner_correct: bool, total_error: float) -> str:
    if winner_correct and total_error <= 10:
        return "excellent"
    if winner_correct and total_error <= 20:
        return "good"
    if winner_correct or total_error <= 30:
        return "fair"
    return "poor"


@dataclass
class GameAnalysisResult:
    """Prediction versus outcome for one completed game."""

    game_id: str
    season: int
    week: int
    home_team: str
    away_team: str
    category: str
    predicted_home: float
    predicted_away: float
    actual_home: float
    actual_away: float
    predicted_winner: str
    actual_winner: Optional[str]
    winner_correct: bool
    home_error: float
    away_error: float
    spread_error: float
    win_probability: float
    confidence: float
    confidence_level: str
    model_r_squared: float
    within_confidence_interval: bool
    error_type: str
    error_causes: list = field(default_factory=list)
    quality: str = "fair"
    explanation: str = ""
    key_factors: list = field(default_factory=list)
    boundary_adjusted: bool = False

    @property
    def total_error(self) -> float:
        return self.home_error + self.away_error

    @property
    def home_won(self) -> bool:
        return self.actual_home > self.actual_away

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "season": self.season,
            "week": self.week,
            "matchup": f"{self.away_team} @ {self.home_team}",
            "category": self.category,
            "predicted": {self.home_team: round(self.predicted_home, 1),
                          self.away_team: round(self.predicted_away, 1)},
            "actual": {self.home_team: self.actual_home, self.away_team: self.actual_away},
            "predicted_winner": self.predicted_winner,
            "actual_winner": self.actual_winner,
            "winner_correct": self.winner_correct,
            "total_error": round(self.total_error, 1),
            "spread_error": round(self.spread_error, 1),
            "win_probability": round(self.win_probability, 1),
            "confidence": round(self.confidence, 1),
            "confidence_level": self.confidence_level,
            "within_confidence_interval": self.within_confidence_interval,
            "error_type": self.error_type,
            "error_causes": list(self.error_causes),
            "quality": self.quality,
            "explanation": self.explanation,
            "key_factors": list(self.key_factors),
        }


class SampleGameAnalyzer:
    """Re-predicts a stratified sample of completed games and explains the results."""

    def __init__(
        self,
        settings: Settings,
        source: DataFrameSource,
        engine: PredictionEngine,
        error_handler: Optional[ErrorHandler] = None,
        validation_logger: Optional[ValidationLogger] = None,
    ):
        self.settings = settings
        self.source = source
        self.engine = engine
        self.error_handler = error_handler
        self.validation_logger = validation_logger

    def select_sample(self, season: int, sample_size: int) -> list[GameRecord]:
        """Stratified, seeded sample of completed games.

        Targets are ceil(30%/25%/20%) of ``sample_size`` for close games,
        blowouts and upsets; regular games fill the remainder, and any
        shortfall in a category is filled from whatever games remain.
        """
        games = self.source.games(season, final_only=True)
        if sample_size <= 0 or not games:
            return []
        if sample_size >= len(games):
            return list(games)

        rng = np.random.default_rng(self.settings.sample_seed)
        buckets: dict[str, list[GameRecord]] = {c: [] for c in GAME_CATEGORIES}
        for game in games:
            buckets[categorize_game(game)].append(game)

        targets = {c: math.ceil(sample_size * share) for c, share in CATEGORY_SHARES}
        targets["regular"] = max(0, sample_size - sum(targets.values()))

        chosen: list[GameRecord] = []
        for category in GAME_CATEGORIES:
            pool = buckets[category]
            take = min(targets[category], len(pool))
            if take:
                picks = rng.choice(len(pool), size=take, replace=False)
                chosen.extend(pool[i] for i in sorted(picks))

        if len(chosen) < sample_size:
            chosen_ids = {g.game_id for g in chosen}
            remaining = [g for g in games if g.game_id not in chosen_ids]
            take = min(sample_size - len(chosen), len(remaining))
            picks = rng.choice(len(remaining), size=take, replace=False)
            chosen.extend(remaining[i] for i in sorted(picks))

        return chosen[:sample_size]

    def explain(self, game: GameRecord, prediction: GamePrediction, result_line: str) -> str:
        winner = prediction.predicted_winner
        lines = [
            f"{winner} predicted to win {max(prediction.home_score, prediction.away_score):.0f}-"
            f"{min(prediction.home_score, prediction.away_score):.0f} "
            f"({prediction.home_win_probability:.0f}% home win probability, "
            f"{prediction.confidence_level.lower()} confidence).",
        ]
        if prediction.key_matchups:
            lines.append("Key factors: " + "; ".join(m.description for m in prediction.key_matchups) + ".")
        else:
            lines.append("No single category advantage stood out.")
        if prediction.boundary_validation.is_adjusted:
            lines.append("Boundary adjustments: " + "; ".join(prediction.boundary_validation.reasons) + ".")
        lines.append(result_line)
        return " ".join(lines)

    def analyze_game(self, game: GameRecord, prediction: GamePrediction) -> GameAnalysisResult:
        """Compare one prediction with the game's final score."""
        home_error = abs(prediction.home_score - game.home_points)
        away_error = abs(prediction.away_score - game.away_points)
        total_error = home_error + away_error
        r_squared = prediction.statistical_confidence.model_r_squared
        actual_winner = game.winner
        winner_correct = actual_winner is not None and prediction.predicted_winner == actual_winner

        error_type = classify_error(total_error, prediction.confidence, r_squared)
        causes = [error_type]
        if abs(home_error - away_error) > ASYMMETRY_GAP:
            causes.append("asymmetric")
        if prediction.boundary_validation.is_adjusted:
            causes.append("boundary_adjustment")

        outcome = (
            f"Actual: {actual_winner or 'tie'} "
            f"{max(game.home_points, game.away_points):.0f}-{min(game.home_points, game.away_points):.0f}; "
            f"winner {'correct' if winner_correct else 'missed'}, total error "
            f"{total_error:.1f} points ({error_type.replace('_', ' ')})."
        )

        return GameAnalysisResult(
            game_id=game.game_id,
            season=game.season,
            week=game.week,
            home_team=game.home_team,
            away_team=game.away_team,
            category=categorize_game(game),
            predicted_home=prediction.home_score,
            predicted_away=prediction.away_score,
            actual_home=game.home_points,
            actual_away=game.away_points,
            predicted_winner=prediction.predicted_winner,
            actual_winner=actual_winner,
            winner_correct=winner_correct,
            home_error=home_error,
            away_error=away_error,
            spread_error=abs(prediction.spread - game.margin),
            win_probability=prediction.home_win_probability,
            confidence=prediction.confidence,
            confidence_level=prediction.confidence_level,
            model_r_squared=r_squared,
            within_confidence_interval=home_error <= WITHIN_CI_ERROR and away_error <= WITHIN_CI_ERROR,
            error_type=error_type,
            error_causes=causes,
            quality=prediction_quality(winner_correct, total_error),
            explanation=self.explain(game, prediction, outcome),
            key_factors=[m.description for m in prediction.key_matchups],
            boundary_adjusted=prediction.boundary_validation.is_adjusted,
        )

    def analyze(
        self,
        season: int,
        sample_size: int,
        profiles: dict[str, TeamEfficiencyProfile],
        weights: PredictionWeights,
        model_r_squared: float = 0.0,
        season_averages: Optional[dict] = None,
        patterns: Optional[dict] = None,
    ) -> list[GameAnalysisResult]:
        """Select a sample and analyze each game; failures are isolated per game.

        Args:
            season: Season year
            sample_size: Number of games requested
            profiles: Season profiles keyed by team
            weights: Weights to predict with
            model_r_squared: Overall R² of the latest regression analysis
            season_averages: {team: {stat: season average}} for stat boundary checks
            patterns: {stat: HistoricalPattern} for stat boundary checks

        Returns:
            List of GameAnalysisResult (games that failed are skipped and logged)
        """
        results = []
        sample = self.select_sample(season, sample_size)
        for game in sample:
            try:
                prediction = self.engine.predict(
                    profiles.get(game.home_team),
                    profiles.get(game.away_team),
                    weights,
                    model_r_squared=model_r_squared,
                    neutral_site=game.neutral_site,
                    game_id=game.game_id,
                    season_averages=season_averages,
                    patterns=patterns,
                )
                results.append(self.analyze_game(game, prediction))
            except Exception as e:
                if self.error_handler is not None:
                    self.error_handler.handle(COMPONENT, e, unit=game.game_id, season=season)
                else:
                    logger.error(f"Sample analysis failed for game {game.game_id}: {e}")

        logger.info(f"Analyzed {len(results)}/{len(sample)} sample games for {season}")
        return results

    def validate(self, results: list[GameAnalysisResult], requested: int) -> ValidationResult:
        """Summarize a sample run as a ValidationResult."""
        s = self.settings
        errors, warnings, recommendations = [], [], []
        if not results:
            errors.append(ValidationIssue(
                "NO_GAMES_ANALYZED", "No sample games could be analyzed", Severity.HIGH, COMPONENT,
            ))
            result = ValidationResult.build(COMPONENT, errors=errors, metadata={"requested": requested})
            if self.validation_logger is not None:
                self.validation_logger.log_result(result)
            return result

        success_rate = len(results) / requested if requested else 1.0
        if success_rate < s.sample_success_threshold:
            warnings.append(
                f"Only {len(results)} of {requested} sample games analyzed ({success_rate:.0%})"
            )

        winner_accuracy = 100.0 * sum(r.winner_correct for r in results) / len(results)
        if winner_accuracy < s.accuracy_min:
            warnings.append(f"Winner accuracy {winner_accuracy:.1f}% below {s.accuracy_min}%")

        error_types = {t: sum(r.error_type == t for r in results) for t in ERROR_TYPES}
        if error_types["systematic_bias"] > len(results) / 4:
            recommendations.append("Review weights: systematic bias dominates prediction errors")
        if error_types["data_quality"] > len(results) / 4:
            recommendations.append("Improve data coverage before trusting weight derivation")

        by_category = {}
        for category in GAME_CATEGORIES:
            subset = [r for r in results if r.category == category]
            if subset:
                by_category[category] = {
                    "games": len(subset),
                    "winner_accuracy": 100.0 * sum(r.winner_correct for r in subset) / len(subset),
                    "average_error": float(np.mean([r.total_error for r in subset])),
                }

        result = ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings, recommendations=recommendations,
            metadata={
                "requested": requested,
                "analyzed": len(results),
                "success_rate": success_rate,
                "winner_accuracy": winner_accuracy,
                "average_error": float(np.mean([r.total_error for r in results])),
                "within_ci_rate": sum(r.within_confidence_interval for r in results) / len(results),
                "error_types": error_types,
                "by_category": by_category,
            },
        )
        if self.validation_logger is not None:
            self.validation_logger.log_result(result)
        return result
