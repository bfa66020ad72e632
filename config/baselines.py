"""League baseline constants.

Every fallback value used when a team or opponent has no usable history
comes from this table, so the numbers can be traced to a single version.
"""

from dataclasses import dataclass, asdict


@dataclass(frozen=True)
class LeagueBaselines:
    """Versioned league-average values for one FBS season profile."""

    version: str = "2024.1"
    points: float = 28.0
    total_yards: float = 400.0
    passing_yards: float = 250.0
    rushing_yards: float = 150.0
    turnovers: float = 1.2
    sacks: float = 2.5
    field_goals: float = 1.8
    min_typical_points: float = 14.0
    max_typical_points: float = 42.0
    points_std: float = 10.0

    def for_stat(self, stat: str) -> float:
        """Baseline per-game value for a box-score stat column."""
        mapping = {
            "points": self.points,
            "total_yards": self.total_yards,
            "passing_yards": self.passing_yards,
            "rushing_yards": self.rushing_yards,
            "turnovers": self.turnovers,
            "sacks": self.sacks,
            "field_goals_made": self.field_goals,
        }
        if stat not in mapping:
            raise KeyError(f"No league baseline for stat '{stat}'")
        return mapping[stat]

    def to_dict(self) -> dict:
        return asdict(self)


LEAGUE_BASELINES = LeagueBaselines()
