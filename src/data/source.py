"""In-memory game and box-score source built from pandas DataFrames.

The ingestion job that fetches data from an external provider is out of
scope; anything that can produce the two frames below can feed the pipeline.

Games frame columns:
    game_id, season, week, home_team, away_team, home_points, away_points,
    completed, neutral_site (optional, default False)

Box-score frame columns:
    game_id, team, plus any of the stat columns in ``src.data.models``
    (third-down may be given as ``third_down_eff`` strings like "5-12")
"""

import logging
from typing import Optional

import numpy as np
import pandas as pd

from src.data.models import GameRecord, RawGameStat

logger = logging.getLogger(__name__)

REQUIRED_GAME_COLUMNS = [
    "game_id", "season", "week", "home_team", "away_team",
    "home_points", "away_points", "completed",
]
REQUIRED_BOX_COLUMNS = ["game_id", "team"]


class DataFrameSource:
    """Game records and box scores indexed for per-team lookups."""

    def __init__(self, games: pd.DataFrame, box_scores: Optional[pd.DataFrame] = None):
        missing = [c for c in REQUIRED_GAME_COLUMNS if c not in games.columns]
        if missing:
            raise ValueError(f"Games frame missing columns: {missing}")
        if box_scores is None:
            box_scores = pd.DataFrame(columns=REQUIRED_BOX_COLUMNS)
        missing = [c for c in REQUIRED_BOX_COLUMNS if c not in box_scores.columns]
        if missing:
            raise ValueError(f"Box-score frame missing columns: {missing}")

        self.games_df = games.copy()
        self.games_df["game_id"] = self.games_df["game_id"].astype(str)
        if "neutral_site" not in self.games_df.columns:
            self.games_df["neutral_site"] = False
        self.box_df = box_scores.copy()
        self.box_df["game_id"] = self.box_df["game_id"].astype(str)

        self._games: dict[str, GameRecord] = {}
        for row in self.games_df.to_dict("records"):
            record = self._to_game(row)
            self._games[record.game_id] = record

        self._box: dict[tuple[str, str], RawGameStat] = {}
        for row in self.box_df.to_dict("records"):
            stat = RawGameStat.from_row(row)
            key = (stat.game_id, stat.team)
            if key in self._box:
                logger.warning(f"Duplicate box score for {key}, keeping first")
                continue
            self._box[key] = stat

        logger.debug(
            f"Indexed {len(self._games)} games and {len(self._box)} box-score rows"
        )

    @staticmethod
    def _to_game(row: dict) -> GameRecord:
        def _points(value) -> Optional[float]:
            if value is None or (isinstance(value, float) and np.isnan(value)):
                return None
            return float(value)

        return GameRecord(
            game_id=str(row["game_id"]),
            season=int(row["season"]),
            week=int(row["week"]),
            home_team=str(row["home_team"]),
            away_team=str(row["away_team"]),
            home_points=_points(row.get("home_points")),
            away_points=_points(row.get("away_points")),
            completed=bool(row.get("completed", False)),
            neutral_site=bool(row.get("neutral_site", False) or False),
        )

    def games(self, season: int, final_only: bool = True) -> list[GameRecord]:
        """Games in a season, ordered by week then game_id."""
        result = [
            g for g in self._games.values()
            if g.season == season and (g.is_final or not final_only)
        ]
        return sorted(result, key=lambda g: (g.week, g.game_id))

    def games_for_team(self, team: str, season: int) -> list[GameRecord]:
        return [g for g in self.games(season) if g.involves(team)]

    def games_for_week(self, season: int, week: int) -> list[GameRecord]:
        return [g for g in self.games(season, final_only=False) if g.week == week]

    def game(self, game_id: str) -> Optional[GameRecord]:
        return self._games.get(str(game_id))

    def box_score(self, game_id: str, team: str) -> Optional[RawGameStat]:
        return self._box.get((str(game_id), team))

    def teams(self, season: int) -> list[str]:
        """All teams appearing in a season's schedule, sorted."""
        names = set()
        for g in self.games(season, final_only=False):
            names.add(g.home_team)
            names.add(g.away_team)
        return sorted(names)

    def seasons(self) -> list[int]:
        return sorted({g.season for g in self._games.values()})

    def box_score_frame(self, seasons: list[int]) -> pd.DataFrame:
        """Box-score rows for final games in the given seasons, with points."""
        rows = []
        for season in seasons:
            for g in self.games(season):
                for team in (g.home_team, g.away_team):
                    stat = self.box_score(g.game_id, team)
                    if stat is None:
                        continue
                    row = {
                        "season": season,
                        "game_id": g.game_id,
                        "team": team,
                        "points": g.points_for(team),
                    }
                    for name in ("passing_yards", "rushing_yards", "total_yards",
                                 "turnovers", "sacks", "field_goals_made"):
                        row[name] = getattr(stat, name)
                    rows.append(row)
        return pd.DataFrame(rows)
