"""Regression analysis of points scored against efficiency metrics.

Each weight category gets its own simple regression (scipy linregress) of
points scored on the team-vs-opponent efficiency feature for that category.
Metrics that pass the significance and R² thresholds are then combined in a
multiple regression (scikit-learn LinearRegression) to measure overall model
fit. Samples smaller than the configured minimum are still analyzed, but the
result records that statistical significance was not considered.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression

from config.settings import Settings
from src.data.models import GameRecord
from src.models.efficiency import TeamEfficiencyProfile

logger = logging.getLogger(__name__)

# Weight categories backed by a regression feature (home field is not)
REGRESSION_METRICS = (
    "passing_offense",
    "rushing_offense",
    "scoring_efficiency",
    "passing_defense",
    "rushing_defense",
    "turnover_margin",
    "special_teams",
)

MULTICOLLINEARITY_R = 0.8


@dataclass
class MetricRegressionResult:
    """Simple-regression result for one metric."""

    metric: str
    coefficient: float
    intercept: float
    r_squared: float
    p_value: float
    std_error: float
    confidence_interval: tuple
    calculated_weight: float
    is_statistically_significant: bool

    def to_dict(self) -> dict:
        return {
            "metric": self.metric,
            "coefficient": self.coefficient,
            "intercept": self.intercept,
            "r_squared": self.r_squared,
            "p_value": self.p_value,
            "std_error": self.std_error,
            "confidence_interval": list(self.confidence_interval),
            "calculated_weight": self.calculated_weight,
            "is_statistically_significant": self.is_statistically_significant,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MetricRegressionResult":
        data = dict(data)
        data["confidence_interval"] = tuple(data["confidence_interval"])
        return cls(**data)


@dataclass
class RegressionAnalysisResult:
    """One regression analysis run. Never modified after creation."""

    season: int
    sample_size: int
    overall_r_squared: float
    metric_results: list = field(default_factory=list)
    adjusted_r_squared: float = 0.0
    f_statistic: float = 0.0
    f_p_value: float = 1.0
    residual_standard_error: float = 0.0
    predictive_accuracy: float = 0.0
    statistical_significance_considered: bool = True
    warnings: list = field(default_factory=list)
    analysis_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def significant_metrics(self) -> list[str]:
        return [r.metric for r in self.metric_results if r.is_statistically_significant]

    def metric(self, name: str) -> Optional[MetricRegressionResult]:
        for result in self.metric_results:
            if result.metric == name:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "analysis_id": self.analysis_id,
            "season": self.season,
            "sample_size": self.sample_size,
            "overall_r_squared": self.overall_r_squared,
            "adjusted_r_squared": self.adjusted_r_squared,
            "f_statistic": self.f_statistic,
            "f_p_value": self.f_p_value,
            "residual_standard_error": self.residual_standard_error,
            "predictive_accuracy": self.predictive_accuracy,
            "statistical_significance_considered": self.statistical_significance_considered,
            "warnings": list(self.warnings),
            "metric_results": [r.to_dict() for r in self.metric_results],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RegressionAnalysisResult":
        data = dict(data)
        data["metric_results"] = [
            MetricRegressionResult.from_dict(r) for r in data.get("metric_results", [])
        ]
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data)


def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


class RegressionAnalyzer:
    """Runs per-metric and multiple regression for a season."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def build_dataset(
        self,
        games: list[GameRecord],
        profiles: dict[str, TeamEfficiencyProfile],
    ) -> pd.DataFrame:
        """One row per team per final game with matchup features and points scored.

        Games where either team lacks a profile with games played are skipped.
        """
        rows = []
        for game in games:
            if not game.is_final:
                continue
            home = profiles.get(game.home_team)
            away = profiles.get(game.away_team)
            if home is None or away is None or not home.games_played or not away.games_played:
                continue
            for team, opp in ((home, away), (away, home)):
                rows.append({
                    "game_id": game.game_id,
                    "team": team.team,
                    "opponent": opp.team,
                    "points": game.points_for(team.team),
                    "passing_offense": team.passing_offense,
                    "rushing_offense": team.rushing_offense,
                    "scoring_efficiency": team.scoring_offense - opp.scoring_defense,
                    "passing_defense": opp.passing_defense,
                    "rushing_defense": opp.rushing_defense,
                    "turnover_margin": team.turnover_margin - opp.turnover_margin,
                    "special_teams": team.special_teams - opp.special_teams,
                })
        return pd.DataFrame(rows, columns=[
            "game_id", "team", "opponent", "points", *REGRESSION_METRICS,
        ])

    def _single_metric(self, x: np.ndarray, y: np.ndarray, metric: str) -> Optional[MetricRegressionResult]:
        if len(x) < 3 or np.ptp(x) == 0:
            logger.warning(f"Skipping regression for {metric}: no variation in {len(x)} values")
            return None

        fit = stats.linregress(x, y)
        if not (math.isfinite(fit.slope) and math.isfinite(fit.rvalue)):
            logger.warning(f"Skipping regression for {metric}: non-finite coefficient")
            return None

        r_squared = float(fit.rvalue ** 2)
        p_value = _finite(fit.pvalue, 1.0)
        dof = len(x) - 2
        t_crit = stats.t.ppf(0.975, dof)
        margin = _finite(t_crit * fit.stderr)
        significant = (
            p_value < self.settings.significance_threshold
            and r_squared > self.settings.r_squared_threshold
        )
        return MetricRegressionResult(
            metric=metric,
            coefficient=float(fit.slope),
            intercept=float(fit.intercept),
            r_squared=r_squared,
            p_value=p_value,
            std_error=_finite(fit.stderr),
            confidence_interval=(float(fit.slope) - margin, float(fit.slope) + margin),
            calculated_weight=abs(float(fit.slope)) * self.settings.weight_scale_factor,
            is_statistically_significant=significant,
        )

    def _multiple(self, data: pd.DataFrame, metrics: list[str]) -> dict:
        n = len(data)
        p = len(metrics)
        empty = {
            "r_squared": 0.0, "adjusted_r_squared": 0.0, "f_statistic": 0.0,
            "f_p_value": 1.0, "residual_standard_error": 0.0, "predictions": None,
        }
        if p == 0 or n <= p + 1:
            return empty

        X = data[metrics].to_numpy(dtype=float)
        y = data["points"].to_numpy(dtype=float)
        model = LinearRegression().fit(X, y)
        predictions = model.predict(X)

        rss = float(np.sum((y - predictions) ** 2))
        tss = float(np.sum((y - y.mean()) ** 2))
        if tss == 0:
            return empty
        r_squared = max(0.0, 1.0 - rss / tss)
        adjusted = 1.0 - (1.0 - r_squared) * (n - 1) / (n - p - 1)
        residual_se = math.sqrt(rss / (n - p - 1))
        if rss == 0:
            f_stat, f_p = float("inf"), 0.0
        else:
            f_stat = ((tss - rss) / p) / (rss / (n - p - 1))
            f_p = float(stats.f.sf(f_stat, p, n - p - 1))
        return {
            "r_squared": r_squared,
            "adjusted_r_squared": adjusted,
            "f_statistic": _finite(f_stat, 1e9),
            "f_p_value": _finite(f_p, 1.0),
            "residual_standard_error": residual_se,
            "predictions": predictions,
        }

    def _collinear_pairs(self, data: pd.DataFrame, metrics: list[str]) -> list[str]:
        if len(metrics) < 2 or len(data) < 3:
            return []
        corr = data[metrics].corr().to_numpy()
        pairs = []
        for i in range(len(metrics)):
            for j in range(i + 1, len(metrics)):
                if math.isfinite(corr[i, j]) and abs(corr[i, j]) > MULTICOLLINEARITY_R:
                    pairs.append(f"{metrics[i]} and {metrics[j]}")
        return pairs

    def analyze(self, season: int, data: pd.DataFrame) -> RegressionAnalysisResult:
        """Run the full analysis on a dataset from ``build_dataset``.

        Args:
            season: Season year
            data: Rows of matchup features plus a ``points`` column

        Returns:
            RegressionAnalysisResult
        """
        sample_size = len(data)
        warnings = []
        considered = sample_size >= self.settings.min_regression_sample
        if not considered:
            msg = (
                f"Small sample size ({sample_size}). Minimum "
                f"{self.settings.min_regression_sample} observations required for "
                f"statistical significance; weights derived without significance filtering"
            )
            logger.warning(msg)
            warnings.append(msg)

        results = []
        if sample_size:
            y = data["points"].to_numpy(dtype=float)
            for metric in REGRESSION_METRICS:
                result = self._single_metric(data[metric].to_numpy(dtype=float), y, metric)
                if result is not None:
                    results.append(result)

        if considered:
            model_metrics = [r.metric for r in results if r.is_statistically_significant]
        else:
            model_metrics = [r.metric for r in results]
        fit = self._multiple(data, model_metrics)

        accuracy = 0.0
        if fit["predictions"] is not None:
            actual = data["points"].to_numpy(dtype=float)
            relative = np.abs(fit["predictions"] - actual) / np.maximum(actual, 1.0)
            accuracy = float(np.mean(relative < 0.3))

        for pair in self._collinear_pairs(data, model_metrics):
            warnings.append(f"Possible multicollinearity between {pair}")

        analysis = RegressionAnalysisResult(
            season=season,
            sample_size=sample_size,
            overall_r_squared=fit["r_squared"],
            metric_results=results,
            adjusted_r_squared=fit["adjusted_r_squared"],
            f_statistic=fit["f_statistic"],
            f_p_value=fit["f_p_value"],
            residual_standard_error=fit["residual_standard_error"],
            predictive_accuracy=accuracy,
            statistical_significance_considered=considered,
            warnings=warnings,
        )
        logger.info(
            f"Regression {season}: n={sample_size}, R²={analysis.overall_r_squared:.3f}, "
            f"significant={analysis.significant_metrics}"
        )
        return analysis
