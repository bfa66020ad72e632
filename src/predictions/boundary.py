"""Boundary validation for predicted scores and statistics.

Bounds are deliberately loose multiples of a team's season scoring average so
that opponent-relative signal survives. Out-of-range predictions are either
hard-clamped or softly regressed (a small step toward a target), and every
correction carries a confidence reduction and a readable reason.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Optional

from config.baselines import LEAGUE_BASELINES, LeagueBaselines
from config.settings import Settings
from src.data.models import HistoricalPattern
from src.models.efficiency import TeamEfficiencyProfile

logger = logging.getLogger(__name__)

TIERS = ("High", "Medium", "Low")


@dataclass
class BoundaryConfig:
    """Tunable bounds. Multipliers are per confidence tier."""

    floor_multipliers: dict = field(default_factory=lambda: {"High": 0.01, "Medium": 0.01, "Low": 0.025})
    ceiling_multipliers: dict = field(default_factory=lambda: {"High": 12.0, "Medium": 12.0, "Low": 9.0})
    extreme_threshold: float = 0.8
    regression_factor: float = 0.01
    deviation_ratio_limit: float = 1.5
    historical_sigma_limit: float = 3.0
    historical_target_sigma: float = 2.5
    max_confidence_reduction: float = 0.8
    min_points: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "BoundaryConfig":
        """Derive tier multipliers from the base floor/ceiling settings."""
        floor, ceiling = settings.scoring_floor, settings.scoring_ceiling
        return cls(
            floor_multipliers={"High": floor * 0.2, "Medium": floor * 0.2, "Low": floor * 0.5},
            ceiling_multipliers={"High": ceiling * 2.0, "Medium": ceiling * 2.0, "Low": ceiling * 1.5},
            extreme_threshold=settings.extreme_threshold,
            regression_factor=settings.regression_factor,
            deviation_ratio_limit=settings.deviation_ratio_limit,
            historical_sigma_limit=settings.historical_sigma_limit,
            historical_target_sigma=settings.historical_target_sigma,
            max_confidence_reduction=settings.max_confidence_reduction,
            min_points=settings.min_points,
        )


@dataclass
class ScoreBoundary:
    """Bounds check for one team's predicted score."""

    team: str
    raw_score: float
    adjusted_score: float
    min_allowed: float
    max_allowed: float
    season_average: float
    adjustment_type: str = "none"  # none, hard_clamp, soft_floor, soft_ceiling, negative_floor
    confidence_reduction: float = 0.0
    reason: str = ""
    extreme_circumstance: bool = False

    @property
    def is_adjusted(self) -> bool:
        return self.adjustment_type != "none"


@dataclass
class StatAdjustment:
    """A soft regression applied to one predicted statistic."""

    team: str
    stat: str
    raw_value: float
    adjusted_value: float
    check: str  # season_deviation or historical_range
    confidence_reduction: float
    reason: str


@dataclass
class BoundaryValidationResult:
    """Outcome of boundary validation for one game."""

    home: ScoreBoundary
    away: ScoreBoundary
    stat_adjustments: list = field(default_factory=list)
    adjusted_stats: dict = field(default_factory=dict)
    overall_confidence_reduction: float = 0.0

    @property
    def is_adjusted(self) -> bool:
        return self.home.is_adjusted or self.away.is_adjusted or bool(self.stat_adjustments)

    @property
    def reasons(self) -> list[str]:
        reasons = [b.reason for b in (self.home, self.away) if b.is_adjusted]
        reasons.extend(a.reason for a in self.stat_adjustments)
        return reasons

    def to_dict(self) -> dict:
        return {
            "home": asdict(self.home),
            "away": asdict(self.away),
            "stat_adjustments": [asdict(a) for a in self.stat_adjustments],
            "adjusted_stats": self.adjusted_stats,
            "overall_confidence_reduction": self.overall_confidence_reduction,
            "is_adjusted": self.is_adjusted,
            "reasons": self.reasons,
        }


def combine_reductions(reductions: list[float], cap: float = 0.8) -> float:
    """min(0.7 * max + 0.3 * mean, cap); 0 when nothing was adjusted."""
    values = [r for r in reductions if r > 0]
    if not values:
        return 0.0
    return min(0.7 * max(values) + 0.3 * (sum(values) / len(values)), cap)


class BoundaryValidator:
    """Keeps predicted scores and stats within historically plausible ranges."""

    def __init__(self, config: BoundaryConfig, baselines: LeagueBaselines = LEAGUE_BASELINES):
        self.config = config
        self.baselines = baselines

    def _tier(self, confidence_level: str) -> str:
        return confidence_level if confidence_level in TIERS else "Low"

    def season_average(self, profile: TeamEfficiencyProfile) -> float:
        if profile.games_played and profile.average_points_for > 0:
            return profile.average_points_for
        return self.baselines.points

    def is_extreme(self, profile: TeamEfficiencyProfile, confidence_level: str) -> bool:
        """Extreme circumstance: a category far below par, or low-confidence and unstable."""
        threshold = -self.config.extreme_threshold
        if any(v < threshold for v in profile.efficiencies().values()):
            return True
        return self._tier(confidence_level) == "Low" and profile.convergence_score < 0.5

    def bounds(self, profile: TeamEfficiencyProfile, confidence_level: str) -> tuple[float, float]:
        tier = self._tier(confidence_level)
        avg = self.season_average(profile)
        return avg * self.config.floor_multipliers[tier], avg * self.config.ceiling_multipliers[tier]

    def _step(self, value: float, target: float) -> float:
        return value + self.config.regression_factor * (target - value)

    def validate_score(
        self,
        profile: TeamEfficiencyProfile,
        raw_score: float,
        confidence_level: str,
    ) -> ScoreBoundary:
        """Check one predicted score against the team's bounds.

        Args:
            profile: The scoring team's efficiency profile
            raw_score: Predicted points before validation
            confidence_level: High / Medium / Low tier for the game

        Returns:
            ScoreBoundary with the adjusted score and confidence reduction
        """
        avg = self.season_average(profile)
        min_allowed, max_allowed = self.bounds(profile, confidence_level)
        result = ScoreBoundary(
            team=profile.team,
            raw_score=raw_score,
            adjusted_score=raw_score,
            min_allowed=min_allowed,
            max_allowed=max_allowed,
            season_average=avg,
        )

        if raw_score < 0:
            result.adjusted_score = min(max(self.config.min_points, min_allowed), max_allowed)
            result.adjustment_type = "negative_floor"
            result.confidence_reduction = 0.2
            result.reason = (
                f"{profile.team}: negative prediction {raw_score:.1f} floored at "
                f"{result.adjusted_score:.1f}"
            )
        elif raw_score < min_allowed:
            extreme = self.is_extreme(profile, confidence_level)
            result.extreme_circumstance = extreme
            if extreme:
                target = (min_allowed + raw_score) / 2
                result.adjusted_score = self._step(raw_score, target)
                result.adjustment_type = "soft_floor"
                result.confidence_reduction = 0.5
                result.reason = (
                    f"{profile.team}: {raw_score:.1f} below floor {min_allowed:.1f} under "
                    f"extreme circumstances, regressed to {result.adjusted_score:.2f}"
                )
            else:
                result.adjusted_score = min_allowed
                result.adjustment_type = "hard_clamp"
                result.confidence_reduction = 0.3
                result.reason = (
                    f"{profile.team}: {raw_score:.1f} below floor, clamped to {min_allowed:.1f}"
                )
        elif raw_score > max_allowed:
            target = (max_allowed + avg) / 2
            result.adjusted_score = self._step(raw_score, target)
            result.adjustment_type = "soft_ceiling"
            result.confidence_reduction = 0.2
            result.reason = (
                f"{profile.team}: {raw_score:.1f} above ceiling {max_allowed:.1f}, "
                f"regressed to {result.adjusted_score:.2f}"
            )

        if result.is_adjusted:
            logger.debug(result.reason)
        return result

    def validate_stat(
        self,
        team: str,
        stat: str,
        predicted: float,
        season_average: Optional[float],
        pattern: Optional[HistoricalPattern],
    ) -> tuple[float, list[StatAdjustment]]:
        """Soft-regress a predicted stat against season and historical norms.

        Returns:
            (adjusted value, adjustments applied)
        """
        c = self.config
        value = predicted
        adjustments = []

        if season_average and season_average > 0:
            ratio = abs(value - season_average) / season_average
            if ratio > c.deviation_ratio_limit:
                target = (value + season_average) / 2
                new_value = self._step(value, target)
                adjustments.append(StatAdjustment(
                    team, stat, value, new_value, "season_deviation", 0.3,
                    f"{team} {stat}: {value:.1f} deviates {ratio:.0%} from season average "
                    f"{season_average:.1f}",
                ))
                value = new_value

        if pattern is not None and pattern.std > 0 and pattern.sample_size >= 2:
            distance = value - pattern.mean
            if abs(distance) > c.historical_sigma_limit * pattern.std:
                sign = 1 if distance > 0 else -1
                target = pattern.mean + sign * c.historical_target_sigma * pattern.std
                new_value = self._step(value, target)
                adjustments.append(StatAdjustment(
                    team, stat, value, new_value, "historical_range", 0.4,
                    f"{team} {stat}: {value:.1f} is {abs(distance) / pattern.std:.1f}σ from "
                    f"the {len(pattern.seasons)}-season mean {pattern.mean:.1f}",
                ))
                value = new_value

        return value, adjustments

    def validate(
        self,
        home: TeamEfficiencyProfile,
        away: TeamEfficiencyProfile,
        home_score: float,
        away_score: float,
        confidence_level: str,
        predicted_stats: Optional[dict] = None,
        season_averages: Optional[dict] = None,
        patterns: Optional[dict] = None,
    ) -> BoundaryValidationResult:
        """Validate both scores and any predicted stat lines for a game.

        Args:
            home: Home team profile
            away: Away team profile
            home_score: Raw predicted home points
            away_score: Raw predicted away points
            confidence_level: Game confidence tier
            predicted_stats: {team: {stat: value}}
            season_averages: {team: {stat: season average}}
            patterns: {stat: HistoricalPattern}

        Returns:
            BoundaryValidationResult
        """
        predicted_stats = predicted_stats or {}
        season_averages = season_averages or {}
        patterns = patterns or {}

        home_bound = self.validate_score(home, home_score, confidence_level)
        away_bound = self.validate_score(away, away_score, confidence_level)

        stat_adjustments = []
        adjusted_stats = {}
        for team, stats in predicted_stats.items():
            adjusted_stats[team] = {}
            averages = season_averages.get(team, {})
            for stat, value in stats.items():
                new_value, adjustments = self.validate_stat(
                    team, stat, value, averages.get(stat), patterns.get(stat),
                )
                adjusted_stats[team][stat] = new_value
                stat_adjustments.extend(adjustments)

        reductions = [home_bound.confidence_reduction, away_bound.confidence_reduction]
        reductions.extend(a.confidence_reduction for a in stat_adjustments)
        return BoundaryValidationResult(
            home=home_bound,
            away=away_bound,
            stat_adjustments=stat_adjustments,
            adjusted_stats=adjusted_stats,
            overall_confidence_reduction=combine_reductions(
                reductions, self.config.max_confidence_reduction
            ),
        )
