"""Record types for raw box scores, games, and season aggregates."""

import math
from dataclasses import dataclass, field, asdict
from typing import Optional


# Box-score fields checked by the data quality report
TRACKED_FIELDS = (
    "passing_yards",
    "rushing_yards",
    "total_yards",
    "turnovers",
    "third_down_efficiency",
    "red_zone_attempts",
    "red_zone_scores",
    "field_goal_attempts",
    "field_goals_made",
    "sacks",
    "tackles_for_loss",
    "interceptions",
)

# Numeric columns summed into season totals
STAT_COLUMNS = (
    "passing_yards",
    "rushing_yards",
    "total_yards",
    "turnovers",
    "sacks",
    "interceptions",
    "field_goals_made",
    "field_goal_attempts",
    "third_down_conversions",
    "third_down_attempts",
    "red_zone_attempts",
    "red_zone_scores",
    "tackles_for_loss",
    "time_of_possession_seconds",
)

QUALITY_TIERS = ("Excellent", "Good", "Limited", "Insufficient")


def _clean(value) -> Optional[float]:
    """Convert a cell value to float, mapping None/NaN/blank to None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def parse_ratio(value) -> tuple[Optional[float], Optional[float]]:
    """Parse a "made-attempts" string such as third-down "5-12".

    Returns:
        (made, attempts), or (None, None) if the value can't be parsed
    """
    if value is None or not isinstance(value, str) or "-" not in value:
        return None, None
    made, _, attempts = value.strip().partition("-")
    made_f, att_f = _clean(made), _clean(attempts)
    if made_f is None or att_f is None:
        return None, None
    return made_f, att_f


def parse_clock(value) -> Optional[float]:
    """Parse time of possession given as seconds or "MM:SS"."""
    if isinstance(value, str) and ":" in value:
        minutes, _, seconds = value.partition(":")
        m, s = _clean(minutes), _clean(seconds)
        if m is None or s is None:
            return None
        return m * 60 + s
    return _clean(value)


@dataclass(frozen=True)
class RawGameStat:
    """One team's box-score line for one game. None means not reported."""

    game_id: str
    team: str
    points: Optional[float] = None
    passing_yards: Optional[float] = None
    rushing_yards: Optional[float] = None
    total_yards: Optional[float] = None
    turnovers: Optional[float] = None
    sacks: Optional[float] = None
    interceptions: Optional[float] = None
    field_goals_made: Optional[float] = None
    field_goal_attempts: Optional[float] = None
    third_down_conversions: Optional[float] = None
    third_down_attempts: Optional[float] = None
    red_zone_attempts: Optional[float] = None
    red_zone_scores: Optional[float] = None
    tackles_for_loss: Optional[float] = None
    time_of_possession_seconds: Optional[float] = None

    @classmethod
    def from_row(cls, row: dict) -> "RawGameStat":
        """Build from a box-score row (dict or pandas Series)."""
        conversions = _clean(row.get("third_down_conversions"))
        attempts = _clean(row.get("third_down_attempts"))
        if conversions is None and attempts is None:
            conversions, attempts = parse_ratio(row.get("third_down_eff"))

        values = {
            col: _clean(row.get(col))
            for col in STAT_COLUMNS
            if col not in ("third_down_conversions", "third_down_attempts",
                           "time_of_possession_seconds")
        }
        return cls(
            game_id=str(row["game_id"]),
            team=str(row["team"]),
            points=_clean(row.get("points")),
            third_down_conversions=conversions,
            third_down_attempts=attempts,
            time_of_possession_seconds=parse_clock(
                row.get("time_of_possession_seconds", row.get("time_of_possession"))
            ),
            **values,
        )

    def value(self, stat: str) -> Optional[float]:
        if stat == "third_down_efficiency":
            if self.third_down_conversions is None or self.third_down_attempts is None:
                return None
            return self.third_down_conversions
        return getattr(self, stat)

    def missing_fields(self) -> list[str]:
        """Tracked fields this row does not report."""
        return [name for name in TRACKED_FIELDS if self.value(name) is None]


@dataclass(frozen=True)
class GameRecord:
    """A scheduled or completed game."""

    game_id: str
    season: int
    week: int
    home_team: str
    away_team: str
    home_points: Optional[float] = None
    away_points: Optional[float] = None
    completed: bool = False
    neutral_site: bool = False

    @property
    def is_final(self) -> bool:
        return (
            self.completed
            and self.home_points is not None
            and self.away_points is not None
        )

    @property
    def margin(self) -> float:
        """Home points minus away points (0 if not final)."""
        if not self.is_final:
            return 0.0
        return self.home_points - self.away_points

    @property
    def winner(self) -> Optional[str]:
        if not self.is_final or self.home_points == self.away_points:
            return None
        return self.home_team if self.home_points > self.away_points else self.away_team

    def involves(self, team: str) -> bool:
        return team in (self.home_team, self.away_team)

    def opponent_of(self, team: str) -> str:
        return self.away_team if team == self.home_team else self.home_team

    def points_for(self, team: str) -> float:
        return self.home_points if team == self.home_team else self.away_points

    def points_against(self, team: str) -> float:
        return self.away_points if team == self.home_team else self.home_points


@dataclass(frozen=True)
class TeamSeasonAggregate:
    """Per team+season totals and per-game averages.

    Averages are computed only over games where the stat was observed, so a
    partially aggregated game contributes points but not yardage.
    """

    team: str
    season: int
    games_played: int = 0
    games_with_opponent_stats: int = 0
    totals: dict = field(default_factory=dict)
    averages: dict = field(default_factory=dict)
    points_for_avg: float = 0.0
    points_against_avg: float = 0.0
    points_std: float = 0.0

    @classmethod
    def empty(cls, team: str, season: int) -> "TeamSeasonAggregate":
        return cls(team=team, season=season)

    @property
    def is_empty(self) -> bool:
        return self.games_played == 0

    def average(self, stat: str, default: float = 0.0) -> float:
        if stat == "points":
            return self.points_for_avg if self.games_played else default
        return self.averages.get(stat, default)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DataQualityReport:
    """Completeness of a team's season data."""

    team: str
    season: int
    games_played: int
    games_with_stats: int
    missing_fields: tuple = ()
    completeness_score: float = 0.0
    data_quality: str = "Insufficient"

    def to_dict(self) -> dict:
        result = asdict(self)
        result["missing_fields"] = list(self.missing_fields)
        return result


@dataclass(frozen=True)
class HistoricalPattern:
    """Distribution of one per-game stat across a multi-season window."""

    stat: str
    seasons: tuple
    min: float
    max: float
    mean: float
    std: float
    sample_size: int
