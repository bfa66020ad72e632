"""Raw statistics aggregation and data quality reporting.

Turns per-game box-score rows into per-team season aggregates. A game is
included when it is final and the querying team has a box-score row. When
the opponent's row is missing, only points-based fields are populated and
the yardage/turnover fields of that game stay unobserved (not zero).
"""

import logging
from collections import defaultdict
from typing import Optional

import numpy as np

from src.data.models import (
    STAT_COLUMNS,
    TRACKED_FIELDS,
    DataQualityReport,
    GameRecord,
    HistoricalPattern,
    RawGameStat,
    TeamSeasonAggregate,
)
from src.data.source import DataFrameSource

logger = logging.getLogger(__name__)

MAX_MISSING_FIELDS = len(TRACKED_FIELDS)

# Per-game stats whose multi-season distribution bounds predictions
PATTERN_STATS = (
    "points",
    "passing_yards",
    "rushing_yards",
    "total_yards",
    "turnovers",
    "sacks",
    "field_goals_made",
)


def quality_tier(games_played: int, completeness_score: float) -> str:
    """Map games played and completeness score to a quality tier."""
    if games_played >= 8 and completeness_score >= 90:
        return "Excellent"
    if games_played >= 5 and completeness_score >= 70:
        return "Good"
    if games_played >= 3 and completeness_score >= 50:
        return "Limited"
    return "Insufficient"


def completeness_score(games_played: int, games_with_stats: int, missing_count: int) -> float:
    """Weighted completeness: 70% game coverage, 30% field coverage."""
    if games_played == 0:
        return 0.0
    coverage = (games_with_stats / games_played) * 70
    fields = max(0.0, (MAX_MISSING_FIELDS - missing_count) / MAX_MISSING_FIELDS) * 30
    return float(round(coverage + fields))


class StatisticsAggregator:
    """Builds TeamSeasonAggregate records from a game source."""

    def __init__(self, source: DataFrameSource):
        self.source = source

    def included_games(self, team: str, season: int) -> list[tuple[GameRecord, RawGameStat, Optional[RawGameStat]]]:
        """Final games with a box-score row for ``team``.

        Returns:
            List of (game, team_stat, opponent_stat_or_None)
        """
        result = []
        for game in self.source.games_for_team(team, season):
            team_stat = self.source.box_score(game.game_id, team)
            if team_stat is None:
                continue
            opp_stat = self.source.box_score(game.game_id, game.opponent_of(team))
            result.append((game, team_stat, opp_stat))
        return result

    def aggregate_team_season(self, team: str, season: int) -> TeamSeasonAggregate:
        """Sum and average a team's included games.

        Args:
            team: Team name
            season: Season year

        Returns:
            TeamSeasonAggregate (empty if no games were found)
        """
        games = self.included_games(team, season)
        if not games:
            logger.debug(f"No included games for {team} {season}, returning empty aggregate")
            return TeamSeasonAggregate.empty(team, season)

        totals: dict[str, float] = defaultdict(float)
        counts: dict[str, int] = defaultdict(int)
        points_for = []
        points_against = []
        with_opponent = 0

        for game, team_stat, opp_stat in games:
            points_for.append(game.points_for(team))
            points_against.append(game.points_against(team))
            if opp_stat is None:
                continue
            with_opponent += 1
            for col in STAT_COLUMNS:
                value = getattr(team_stat, col)
                if value is not None:
                    totals[col] += value
                    counts[col] += 1
            # Defensive counterparts come from the opponent's line
            for col in ("passing_yards", "rushing_yards", "total_yards",
                        "turnovers", "field_goals_made"):
                value = getattr(opp_stat, col)
                if value is not None:
                    totals[f"{col}_allowed"] += value
                    counts[f"{col}_allowed"] += 1

        totals["points"] = float(sum(points_for))
        totals["points_allowed"] = float(sum(points_against))
        averages = {k: totals[k] / counts[k] for k in counts if counts[k] > 0}
        averages["points_allowed"] = totals["points_allowed"] / len(games)

        return TeamSeasonAggregate(
            team=team,
            season=season,
            games_played=len(games),
            games_with_opponent_stats=with_opponent,
            totals=dict(totals),
            averages=averages,
            points_for_avg=float(np.mean(points_for)),
            points_against_avg=float(np.mean(points_against)),
            points_std=float(np.std(points_for, ddof=1)) if len(points_for) > 1 else 0.0,
        )

    def quality_report(self, team: str, season: int) -> DataQualityReport:
        """Completeness and quality tier for a team's season data."""
        final_games = self.source.games_for_team(team, season)
        games_played = len(final_games)
        stats = [
            s for s in (self.source.box_score(g.game_id, team) for g in final_games)
            if s is not None
        ]
        if not stats:
            missing = ("all_statistics",)
            missing_count = MAX_MISSING_FIELDS
        else:
            missing_set = set()
            for s in stats:
                missing_set.update(s.missing_fields())
            missing = tuple(f for f in TRACKED_FIELDS if f in missing_set)
            missing_count = len(missing)

        score = completeness_score(games_played, len(stats), missing_count)
        return DataQualityReport(
            team=team,
            season=season,
            games_played=games_played,
            games_with_stats=len(stats),
            missing_fields=missing,
            completeness_score=score,
            data_quality=quality_tier(games_played, score),
        )

    def historical_patterns(self, season: int, lookback: int = 3) -> dict[str, HistoricalPattern]:
        """League-wide per-game distributions over ``lookback`` seasons ending at ``season``."""
        seasons = [s for s in range(season - lookback + 1, season + 1)]
        frame = self.source.box_score_frame(seasons)
        patterns = {}
        if frame.empty:
            return patterns
        for stat in PATTERN_STATS:
            if stat not in frame.columns:
                continue
            values = frame[stat].dropna().astype(float)
            if len(values) < 2:
                continue
            patterns[stat] = HistoricalPattern(
                stat=stat,
                seasons=tuple(seasons),
                min=float(values.min()),
                max=float(values.max()),
                mean=float(values.mean()),
                std=float(values.std(ddof=1)),
                sample_size=int(len(values)),
            )
        return patterns
