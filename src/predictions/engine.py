"""Point-differential prediction engine.

    score(team) = national_baseline
                  + sum over categories of weight x (team offense - opponent defense)
                  + home_field_advantage weight x home_field_scale   (home, non-neutral only)

Each category's contribution is recorded so every prediction can be
replayed. Raw scores pass through the BoundaryValidator before the spread,
total, win probability, and confidence are derived.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Optional

from config.baselines import LEAGUE_BASELINES, LeagueBaselines
from config.settings import Settings
from src.models.efficiency import MATCHUP_CATEGORIES, TeamEfficiencyProfile
from src.predictions.boundary import BoundaryValidationResult, BoundaryValidator
from src.validation.core import CalculationTrace, CalculationTracer, StepType
from src.weights.manager import PredictionWeights

logger = logging.getLogger(__name__)

LEVEL_RANK = {"Low": 0, "Medium": 1, "High": 2}
CONFIDENCE_BASE = {"High": 85.0, "Medium": 70.0, "Low": 50.0}
CONFIDENCE_MULTIPLIER = {"High": 1.0, "Medium": 0.85, "Low": 0.7}

CATEGORY_LABELS = {
    "passing": "Passing Game",
    "rushing": "Rushing Attack",
    "scoring": "Scoring Efficiency",
    "turnover": "Turnover Battle",
    "special_teams": "Special Teams",
}


class InsufficientDataError(LookupError):
    """A team has no efficiency profile to predict from."""


@dataclass
class CategoryContribution:
    """One category's contribution to a team's predicted score."""

    category: str
    offense_efficiency: float
    opponent_defense_efficiency: float
    offense_weight: float
    defense_weight: float

    @property
    def offense_contribution(self) -> float:
        return self.offense_efficiency * self.offense_weight

    @property
    def defense_contribution(self) -> float:
        return -self.opponent_defense_efficiency * self.defense_weight

    @property
    def total(self) -> float:
        return self.offense_contribution + self.defense_contribution

    def to_dict(self) -> dict:
        result = asdict(self)
        result["offense_contribution"] = self.offense_contribution
        result["defense_contribution"] = self.defense_contribution
        result["total"] = self.total
        return result


@dataclass
class KeyMatchup:
    """A category where one team holds a meaningful weighted edge."""

    category: str
    advantage_team: str
    advantage: float
    weighted_advantage: float
    magnitude: str  # significant, moderate, slight

    @property
    def description(self) -> str:
        return (
            f"{self.advantage_team} holds a {self.magnitude} edge in the "
            f"{CATEGORY_LABELS[self.category].lower()} ({self.advantage:+.1f})"
        )

    def to_dict(self) -> dict:
        result = asdict(self)
        result["description"] = self.description
        return result


@dataclass
class StatisticalConfidence:
    """Model-quality block attached to a prediction."""

    model_r_squared: float
    home_interval: tuple
    away_interval: tuple
    reliability_tier: str
    sample_size_adequate: bool
    combined_games: int


@dataclass
class GamePrediction:
    """Full pipeline output for one (home, away, season) matchup.

    Scores and probabilities keep full precision; to_dict() rounds for display.
    """

    season: int
    home_team: str
    away_team: str
    initial_home_score: float
    initial_away_score: float
    home_score: float
    away_score: float
    home_win_probability: float  # percent, 5-95
    confidence: float  # 0-100
    confidence_level: str
    home_breakdown: dict
    away_breakdown: dict
    home_field_points: float
    statistical_confidence: StatisticalConfidence
    boundary_validation: BoundaryValidationResult
    key_matchups: list = field(default_factory=list)
    predicted_stats: dict = field(default_factory=dict)
    neutral_site: bool = False
    game_id: Optional[str] = None
    weights_version: int = 0

    @property
    def spread(self) -> float:
        """Positive = home team favored."""
        return self.home_score - self.away_score

    @property
    def total(self) -> float:
        return self.home_score + self.away_score

    @property
    def favorite(self) -> str:
        return self.home_team if self.spread >= 0 else self.away_team

    @property
    def predicted_winner(self) -> str:
        return self.favorite

    def to_dict(self) -> dict:
        sc = self.statistical_confidence
        return {
            "game_id": self.game_id,
            "season": self.season,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "neutral_site": self.neutral_site,
            "initial_home_score": round(self.initial_home_score, 1),
            "initial_away_score": round(self.initial_away_score, 1),
            "home_score": round(self.home_score, 1),
            "away_score": round(self.away_score, 1),
            "spread": round(self.spread * 2) / 2,
            "spread_raw": self.spread,
            "total": round(self.total, 1),
            "home_win_probability": round(self.home_win_probability, 1),
            "confidence": round(self.confidence, 1),
            "confidence_level": self.confidence_level,
            "home_field_points": self.home_field_points,
            "home_breakdown": {k: v.to_dict() for k, v in self.home_breakdown.items()},
            "away_breakdown": {k: v.to_dict() for k, v in self.away_breakdown.items()},
            "statistical_confidence": {
                "model_r_squared": sc.model_r_squared,
                "home_interval": list(sc.home_interval),
                "away_interval": list(sc.away_interval),
                "reliability_tier": sc.reliability_tier,
                "sample_size_adequate": sc.sample_size_adequate,
                "combined_games": sc.combined_games,
            },
            "boundary_validation": self.boundary_validation.to_dict(),
            "key_matchups": [m.to_dict() for m in self.key_matchups],
            "predicted_stats": self.predicted_stats,
            "weights_version": self.weights_version,
        }


def game_confidence_level(home: TeamEfficiencyProfile, away: TeamEfficiencyProfile) -> str:
    """The lower of the two teams' reliability tiers."""
    levels = [home.confidence_level, away.confidence_level]
    return min(levels, key=lambda lvl: LEVEL_RANK.get(lvl, 0))


class PredictionEngine:
    """Combines efficiency profiles and weights into game predictions."""

    def __init__(
        self,
        settings: Settings,
        boundary_validator: BoundaryValidator,
        baselines: LeagueBaselines = LEAGUE_BASELINES,
        tracer: Optional[CalculationTracer] = None,
    ):
        self.settings = settings
        self.boundary_validator = boundary_validator
        self.baselines = baselines
        self.tracer = tracer

    def breakdown(
        self,
        team: TeamEfficiencyProfile,
        opponent: TeamEfficiencyProfile,
        weights: PredictionWeights,
    ) -> dict[str, CategoryContribution]:
        """Per-category contributions to ``team``'s score against ``opponent``."""
        result = {}
        for category in MATCHUP_CATEGORIES:
            off_w, def_w = weights.for_matchup(category)
            result[category] = CategoryContribution(
                category=category,
                offense_efficiency=team.offense(category),
                opponent_defense_efficiency=opponent.defense(category),
                offense_weight=off_w,
                defense_weight=def_w,
            )
        return result

    def home_field_points(self, weights: PredictionWeights, neutral_site: bool) -> float:
        if neutral_site:
            return 0.0
        return weights.home_field_advantage * self.settings.home_field_scale

    def win_probability(self, score_diff: float, confidence_level: str, r_squared: float) -> float:
        """Home win probability (percent) from the predicted point differential.

        Linear 3.5 points of probability per point of differential, damped by
        the confidence tier and by model quality, clamped to [5, 95].
        """
        s = self.settings
        raw = 50.0 + score_diff * s.win_prob_per_point
        multiplier = CONFIDENCE_MULTIPLIER.get(confidence_level, CONFIDENCE_MULTIPLIER["Low"])
        quality = max(0.5, min(1.0, r_squared + 0.3))
        damped = 50.0 + (raw - 50.0) * multiplier * quality
        return max(s.win_prob_min, min(s.win_prob_max, damped))

    def calculate_confidence(
        self,
        confidence_level: str,
        r_squared: float,
        boundary_reduction: float,
        home: TeamEfficiencyProfile,
        away: TeamEfficiencyProfile,
    ) -> float:
        """Overall 0-100 confidence for a prediction, clamped to [20, 95]."""
        s = self.settings
        confidence = CONFIDENCE_BASE.get(confidence_level, CONFIDENCE_BASE["Low"])
        confidence += max(0.0, min(1.0, r_squared)) * 20
        confidence -= boundary_reduction * 30

        combined = home.games_played + away.games_played
        average = combined / 2
        if combined < s.min_adequate_sample:
            confidence -= 20
        elif average < 4:
            confidence -= 15
        elif average < 6:
            confidence -= 8

        avg_convergence = (home.convergence_score + away.convergence_score) / 2
        confidence += (avg_convergence - 0.5) * 20
        return max(s.confidence_min, min(s.confidence_max, confidence))

    def key_matchups(
        self,
        home: TeamEfficiencyProfile,
        away: TeamEfficiencyProfile,
        weights: PredictionWeights,
    ) -> list[KeyMatchup]:
        """Top-3 weighted category advantages worth calling out."""
        candidates = []
        for category in MATCHUP_CATEGORIES:
            off_w, def_w = weights.for_matchup(category)
            home_edge = home.offense(category) - away.defense(category)
            away_edge = away.offense(category) - home.defense(category)
            advantage = home_edge - away_edge
            weighted = advantage * (off_w + def_w) / 2
            candidates.append((category, advantage, weighted))

        candidates.sort(key=lambda c: abs(c[2]), reverse=True)
        matchups = []
        for category, advantage, weighted in candidates[:3]:
            if abs(advantage) <= 2 or abs(weighted) <= 0.5:
                continue
            size = abs(advantage)
            magnitude = "significant" if size > 10 else "moderate" if size > 5 else "slight"
            matchups.append(KeyMatchup(
                category=category,
                advantage_team=home.team if advantage > 0 else away.team,
                advantage=abs(advantage),
                weighted_advantage=abs(weighted),
                magnitude=magnitude,
            ))
        return matchups

    def predicted_stat_line(
        self,
        team: TeamEfficiencyProfile,
        opponent: TeamEfficiencyProfile,
        season_averages: Optional[dict] = None,
    ) -> dict[str, float]:
        """Expected box-score line for ``team`` against ``opponent``."""
        b = self.baselines
        averages = season_averages or {}
        passing = b.passing_yards + team.passing_offense - opponent.passing_defense
        rushing = b.rushing_yards + team.rushing_offense - opponent.rushing_defense
        return {
            "passing_yards": passing,
            "rushing_yards": rushing,
            "total_yards": passing + rushing,
            "turnovers": max(0.0, b.turnovers - (team.turnover_margin - opponent.turnover_margin) / 2),
            "sacks": averages.get("sacks", b.sacks),
            "field_goals_made": max(0.0, b.field_goals + team.special_teams - opponent.special_teams),
        }

    def _trace_side(
        self,
        trace: Optional[CalculationTrace],
        team: TeamEfficiencyProfile,
        breakdown: dict,
        score: float,
        extra: float,
    ) -> None:
        if trace is None:
            return
        tracer = self.tracer
        for category, c in breakdown.items():
            tracer.add_step(
                trace, StepType.EFFICIENCY_CALCULATION,
                f"{team.team} {category} matchup delta",
                {"offense": c.offense_efficiency, "opponent_defense": c.opponent_defense_efficiency},
                c.offense_efficiency - c.opponent_defense_efficiency,
                "team offense - opponent defense",
            )
            step = tracer.add_step(
                trace, StepType.WEIGHT_APPLICATION,
                f"{team.team} {category} offensive contribution",
                {"efficiency": c.offense_efficiency, "weight": c.offense_weight},
                c.offense_contribution,
                "efficiency x weight",
            )
            tracer.validate_step(
                trace, step, c.offense_efficiency * c.offense_weight,
                self.settings.contribution_tolerance,
            )
        step = tracer.add_step(
            trace, StepType.PREDICTION_ASSEMBLY,
            f"{team.team} predicted score",
            {"baseline": self.settings.national_baseline,
             "contributions": {k: v.total for k, v in breakdown.items()},
             "home_field": extra},
            score,
            "baseline + sum(contributions) + home field",
        )
        expected = self.settings.national_baseline + sum(c.total for c in breakdown.values()) + extra
        tracer.validate_step(trace, step, expected, self.settings.contribution_tolerance)

    def predict(
        self,
        home: Optional[TeamEfficiencyProfile],
        away: Optional[TeamEfficiencyProfile],
        weights: PredictionWeights,
        model_r_squared: float = 0.0,
        neutral_site: bool = False,
        game_id: Optional[str] = None,
        season_averages: Optional[dict] = None,
        patterns: Optional[dict] = None,
        trace: Optional[CalculationTrace] = None,
    ) -> GamePrediction:
        """Predict a game.

        Args:
            home: Home team profile
            away: Away team profile
            weights: Weights for the season
            model_r_squared: Overall R² of the latest regression analysis
            neutral_site: If True, no home-field term is applied
            game_id: Optional game identifier
            season_averages: {team: {stat: season average}} for stat validation
            patterns: {stat: HistoricalPattern} for stat validation
            trace: Open CalculationTrace to record steps into

        Returns:
            GamePrediction

        Raises:
            InsufficientDataError: if either profile is missing or has no games
        """
        for label, profile in (("home", home), ("away", away)):
            if profile is None or profile.games_played == 0:
                name = profile.team if profile is not None else label
                raise InsufficientDataError(f"Insufficient data: no efficiency profile for {name}")

        if trace is not None and self.tracer is None:
            raise ValueError("Tracing requires an engine constructed with a tracer")

        s = self.settings
        season_averages = season_averages or {}
        if trace is not None:
            self.tracer.add_step(
                trace, StepType.DATA_EXTRACTION, "Load efficiency profiles",
                {"home": home.team, "away": away.team},
                {"home_games": home.games_played, "away_games": away.games_played},
            )
            step = self.tracer.add_step(
                trace, StepType.BASELINE_CALCULATION, "National scoring baseline",
                {"league_points": self.baselines.points}, s.national_baseline,
            )
            self.tracer.validate_step(trace, step, s.national_baseline)

        home_breakdown = self.breakdown(home, away, weights)
        away_breakdown = self.breakdown(away, home, weights)
        hfa = self.home_field_points(weights, neutral_site)

        initial_home = s.national_baseline + sum(c.total for c in home_breakdown.values()) + hfa
        initial_away = s.national_baseline + sum(c.total for c in away_breakdown.values())
        self._trace_side(trace, home, home_breakdown, initial_home, hfa)
        self._trace_side(trace, away, away_breakdown, initial_away, 0.0)

        level = game_confidence_level(home, away)
        predicted_stats = {
            home.team: self.predicted_stat_line(home, away, season_averages.get(home.team)),
            away.team: self.predicted_stat_line(away, home, season_averages.get(away.team)),
        }
        boundary = self.boundary_validator.validate(
            home, away, initial_home, initial_away, level,
            predicted_stats=predicted_stats,
            season_averages=season_averages,
            patterns=patterns,
        )
        home_score = boundary.home.adjusted_score
        away_score = boundary.away.adjusted_score

        confidence = self.calculate_confidence(
            level, model_r_squared, boundary.overall_confidence_reduction, home, away,
        )
        win_prob = self.win_probability(home_score - away_score, level, model_r_squared)
        combined = home.games_played + away.games_played
        pct = s.score_interval_pct

        prediction = GamePrediction(
            season=home.season,
            home_team=home.team,
            away_team=away.team,
            initial_home_score=initial_home,
            initial_away_score=initial_away,
            home_score=home_score,
            away_score=away_score,
            home_win_probability=win_prob,
            confidence=confidence,
            confidence_level=level,
            home_breakdown=home_breakdown,
            away_breakdown=away_breakdown,
            home_field_points=hfa,
            statistical_confidence=StatisticalConfidence(
                model_r_squared=model_r_squared,
                home_interval=(home_score * (1 - pct), home_score * (1 + pct)),
                away_interval=(away_score * (1 - pct), away_score * (1 + pct)),
                reliability_tier=level,
                sample_size_adequate=combined >= s.min_adequate_sample,
                combined_games=combined,
            ),
            boundary_validation=boundary,
            key_matchups=self.key_matchups(home, away, weights),
            predicted_stats=boundary.adjusted_stats,
            neutral_site=neutral_site,
            game_id=game_id,
            weights_version=weights.version,
        )

        if trace is not None:
            self.tracer.add_step(
                trace, StepType.PREDICTION_ASSEMBLY, "Final prediction",
                {"boundary_reduction": boundary.overall_confidence_reduction},
                {"home_score": home_score, "away_score": away_score,
                 "win_probability": win_prob, "confidence": confidence},
            )
        return prediction
