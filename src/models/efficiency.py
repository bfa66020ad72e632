"""Opponent-relative efficiency calculator.

Efficiencies are additive deltas, not ratios. For each game a team played:

    offensive delta = team's output - what the opponent typically allows
    defensive delta = what the opponent typically scores - what the team allowed

"Typically" means the opponent's average over its *other* games that season
(the game being evaluated is excluded). When the opponent has no other games
with the needed value, the league baseline is used instead. Season
efficiencies are the mean of the per-game deltas.

A +7 scoring offense therefore means "7 points better than opponents
usually allow", independent of how strong those opponents are.
"""

import logging
from dataclasses import dataclass, asdict, fields
from typing import Optional

import numpy as np

from config.baselines import LEAGUE_BASELINES, LeagueBaselines
from src.data.aggregator import StatisticsAggregator
from src.data.models import RawGameStat

logger = logging.getLogger(__name__)

# Matchup categories paired offense vs defense in the prediction formula
MATCHUP_CATEGORIES = ("passing", "rushing", "scoring", "turnover", "special_teams")

# Yardage categories: (profile prefix, box-score column)
_YARDAGE = (("passing", "passing_yards"), ("rushing", "rushing_yards"))

CONVERGENCE_GAMES = 8
CONVERGENCE_SPREAD = 14.0  # scoring-delta spread that halves convergence


@dataclass(frozen=True)
class TeamEfficiencyProfile:
    """Season efficiency profile for one team."""

    team: str
    season: int
    passing_offense: float = 0.0
    rushing_offense: float = 0.0
    scoring_offense: float = 0.0
    passing_defense: float = 0.0
    rushing_defense: float = 0.0
    scoring_defense: float = 0.0
    turnover_margin: float = 0.0
    special_teams: float = 0.0
    games_played: int = 0
    data_quality: str = "Insufficient"
    confidence_level: str = "Low"
    convergence_score: float = 0.0
    average_points_for: float = 0.0
    average_points_against: float = 0.0
    points_std: float = 0.0

    def offense(self, category: str) -> float:
        """Offensive-side efficiency for a matchup category."""
        if category == "turnover":
            return self.turnover_margin
        if category == "special_teams":
            return self.special_teams
        return getattr(self, f"{category}_offense")

    def defense(self, category: str) -> float:
        """Defensive-side efficiency for a matchup category."""
        if category == "turnover":
            return self.turnover_margin
        if category == "special_teams":
            return self.special_teams
        return getattr(self, f"{category}_defense")

    def efficiencies(self) -> dict[str, float]:
        return {
            "passing_offense": self.passing_offense,
            "rushing_offense": self.rushing_offense,
            "scoring_offense": self.scoring_offense,
            "passing_defense": self.passing_defense,
            "rushing_defense": self.rushing_defense,
            "scoring_defense": self.scoring_defense,
            "turnover_margin": self.turnover_margin,
            "special_teams": self.special_teams,
        }

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TeamEfficiencyProfile":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class _TeamLine:
    """One team's view of one final game."""

    game_id: str
    opponent: str
    points_for: float
    points_against: float
    own: Optional[RawGameStat]
    opp: Optional[RawGameStat]

    def own_value(self, stat: str) -> Optional[float]:
        if stat == "points":
            return self.points_for
        return getattr(self.own, stat) if self.own is not None else None

    def allowed_value(self, stat: str) -> Optional[float]:
        if stat == "points":
            return self.points_against
        return getattr(self.opp, stat) if self.opp is not None else None


def _mean(values: list) -> Optional[float]:
    clean = [v for v in values if v is not None]
    if not clean:
        return None
    return float(np.mean(clean))


def confidence_level_for(games_played: int, data_quality: str) -> str:
    """High / Medium / Low reliability tier for a profile."""
    if games_played >= 8 and data_quality in ("Excellent", "Good"):
        return "High"
    if games_played >= 4 and data_quality != "Insufficient":
        return "Medium"
    return "Low"


def convergence_for(per_game_deltas: list[float]) -> float:
    """Stability of a team's estimate in [0, 1].

    Grows with games played and shrinks with game-to-game spread of the
    scoring delta.
    """
    n = len(per_game_deltas)
    if n == 0:
        return 0.0
    coverage = min(1.0, n / CONVERGENCE_GAMES)
    spread = float(np.std(per_game_deltas))
    return round(coverage / (1.0 + spread / CONVERGENCE_SPREAD), 4)


class EfficiencyCalculator:
    """Computes TeamEfficiencyProfile records from aggregated box scores."""

    def __init__(
        self,
        aggregator: StatisticsAggregator,
        baselines: LeagueBaselines = LEAGUE_BASELINES,
    ):
        self.aggregator = aggregator
        self.baselines = baselines
        self._lines: dict[int, dict[str, list[_TeamLine]]] = {}

    def _season_lines(self, season: int) -> dict[str, list[_TeamLine]]:
        """Per-team game lines for every final game in a season (cached)."""
        if season in self._lines:
            return self._lines[season]
        source = self.aggregator.source
        lines: dict[str, list[_TeamLine]] = {}
        for game in source.games(season):
            for team in (game.home_team, game.away_team):
                opponent = game.opponent_of(team)
                lines.setdefault(team, []).append(_TeamLine(
                    game_id=game.game_id,
                    opponent=opponent,
                    points_for=game.points_for(team),
                    points_against=game.points_against(team),
                    own=source.box_score(game.game_id, team),
                    opp=source.box_score(game.game_id, opponent),
                ))
        self._lines[season] = lines
        return lines

    def _typical(
        self,
        lines: dict[str, list[_TeamLine]],
        team: str,
        stat: str,
        exclude_game: str,
        allowed: bool,
        fallback: float,
    ) -> float:
        """Average of ``team``'s own (or allowed) ``stat`` over its other games."""
        others = [l for l in lines.get(team, []) if l.game_id != exclude_game]
        if allowed:
            value = _mean([l.allowed_value(stat) for l in others])
        else:
            value = _mean([l.own_value(stat) for l in others])
        return fallback if value is None else value

    def calculate_profile(self, team: str, season: int) -> TeamEfficiencyProfile:
        """Compute the opponent-relative efficiency profile for one team.

        Args:
            team: Team name
            season: Season year

        Returns:
            TeamEfficiencyProfile; all zeros with Insufficient quality if
            the team has no included games
        """
        lines = self._season_lines(season)
        included = [l for l in lines.get(team, []) if l.own is not None]
        if not included:
            logger.info(f"No included games for {team} {season}, returning empty profile")
            return TeamEfficiencyProfile(team=team, season=season)

        b = self.baselines
        deltas: dict[str, list[float]] = {
            "passing_offense": [], "rushing_offense": [], "scoring_offense": [],
            "passing_defense": [], "rushing_defense": [], "scoring_defense": [],
            "turnover_margin": [], "special_teams": [],
        }

        for line in included:
            opp = line.opponent
            gid = line.game_id

            # Scoring (points come from the game record, always present)
            deltas["scoring_offense"].append(
                line.points_for - self._typical(lines, opp, "points", gid, True, b.points)
            )
            deltas["scoring_defense"].append(
                self._typical(lines, opp, "points", gid, False, b.points) - line.points_against
            )

            for prefix, stat in _YARDAGE:
                fallback = b.for_stat(stat)
                own = line.own_value(stat)
                if own is not None:
                    deltas[f"{prefix}_offense"].append(
                        own - self._typical(lines, opp, stat, gid, True, fallback)
                    )
                allowed = line.allowed_value(stat)
                if allowed is not None:
                    deltas[f"{prefix}_defense"].append(
                        self._typical(lines, opp, stat, gid, False, fallback) - allowed
                    )

            committed = line.own_value("turnovers")
            forced = line.allowed_value("turnovers")
            if committed is not None and forced is not None:
                opp_commits = self._typical(lines, opp, "turnovers", gid, False, b.turnovers)
                opp_forces = self._typical(lines, opp, "turnovers", gid, True, b.turnovers)
                deltas["turnover_margin"].append(
                    (forced - opp_commits) + (opp_forces - committed)
                )

            made = line.own_value("field_goals_made")
            if made is not None:
                deltas["special_teams"].append(
                    made - self._typical(lines, opp, "field_goals_made", gid, True, b.field_goals)
                )

        aggregate = self.aggregator.aggregate_team_season(team, season)
        report = self.aggregator.quality_report(team, season)
        values = {
            name: round(float(np.mean(v)), 4) if v else 0.0
            for name, v in deltas.items()
        }

        return TeamEfficiencyProfile(
            team=team,
            season=season,
            games_played=len(included),
            data_quality=report.data_quality,
            confidence_level=confidence_level_for(len(included), report.data_quality),
            convergence_score=convergence_for(deltas["scoring_offense"]),
            average_points_for=round(aggregate.points_for_avg, 4),
            average_points_against=round(aggregate.points_against_avg, 4),
            points_std=round(aggregate.points_std, 4),
            **values,
        )

    def calculate_season(self, season: int, teams: Optional[list[str]] = None) -> dict[str, TeamEfficiencyProfile]:
        """Profiles for every team (or the given teams) in a season."""
        teams = teams or self.aggregator.source.teams(season)
        return {team: self.calculate_profile(team, season) for team in teams}
