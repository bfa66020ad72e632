"""Data validation utilities for games and box scores."""

import logging
from typing import Optional

import pandas as pd

from config.settings import Settings
from src.data.aggregator import StatisticsAggregator
from src.data.models import RawGameStat
from src.validation.core import (
    Severity,
    ValidationComponent,
    ValidationIssue,
    ValidationResult,
)

logger = logging.getLogger(__name__)

COMPONENT = ValidationComponent.DATA_PIPELINE

# (hard min, hard max, typical low, typical high) per game
STAT_RANGES = {
    "passing_yards": (-50, 800, 100, 400),
    "rushing_yards": (-50, 600, 50, 300),
    "total_yards": (0, 1000, 200, 600),
    "turnovers": (0, 10, 0, 4),
    "sacks": (0, 15, 0, 6),
    "tackles_for_loss": (0, 20, 2, 12),
}
TOTAL_YARDS_TOLERANCE = 50


def _issue(code: str, message: str, severity: Severity, **details) -> ValidationIssue:
    return ValidationIssue(code, message, severity, COMPONENT, details)


def check_reasonableness(stat: RawGameStat) -> tuple[list[str], list[str]]:
    """Outliers (outside hard range) and atypical values for one box-score line.

    Returns:
        (outliers, warnings)
    """
    outliers, warnings = [], []
    for name, (lo, hi, typ_lo, typ_hi) in STAT_RANGES.items():
        value = getattr(stat, name)
        if value is None:
            continue
        if value < lo or value > hi:
            outliers.append(f"{stat.team} {name}: {value} (outside range {lo}-{hi})")
        elif value < typ_lo or value > typ_hi:
            warnings.append(f"{stat.team} {name}: {value} (outside typical range {typ_lo}-{typ_hi})")

    if stat.total_yards and stat.passing_yards is not None and stat.rushing_yards is not None:
        gap = abs(stat.total_yards - (stat.passing_yards + stat.rushing_yards))
        if gap > TOTAL_YARDS_TOLERANCE:
            warnings.append(
                f"{stat.team} total yards ({stat.total_yards}) doesn't match passing "
                f"({stat.passing_yards}) + rushing ({stat.rushing_yards})"
            )
    return outliers, warnings


def check_consistency(team: RawGameStat, opponent: RawGameStat) -> list[str]:
    """Cross-team inconsistencies within one game."""
    problems = []
    for a, b in ((team, opponent), (opponent, team)):
        if a.interceptions is not None and b.turnovers is not None and a.interceptions > b.turnovers:
            problems.append(f"{a.team} interceptions exceed {b.team} turnovers")
        if (a.sacks or 0) > 5 and (a.passing_yards or 0) > 300:
            problems.append(f"{a.team} has high sacks and high passing yards")
    return problems


class DataValidator:
    """Validate data completeness and quality."""

    def __init__(self, settings: Settings, aggregator: Optional[StatisticsAggregator] = None):
        """Initialize validator.

        Args:
            settings: Application settings (quality thresholds)
            aggregator: Aggregator used for season-level checks
        """
        self.settings = settings
        self.aggregator = aggregator

    def validate_games_dataframe(self, df: pd.DataFrame) -> ValidationResult:
        """Validate a games DataFrame has required columns and sane scores.

        Args:
            df: Games DataFrame to validate

        Returns:
            ValidationResult
        """
        required_columns = ["game_id", "season", "week", "home_team", "away_team",
                            "home_points", "away_points", "completed"]
        missing_columns = [col for col in required_columns if col not in df.columns]
        if missing_columns:
            return ValidationResult.build(COMPONENT, errors=[_issue(
                "MISSING_COLUMNS", f"Missing required columns: {missing_columns}",
                Severity.CRITICAL, columns=missing_columns,
            )])

        errors, warnings = [], []
        completed = df[df["completed"].astype(bool)]
        null_scores = completed[["home_points", "away_points"]].isnull().any(axis=1)
        if null_scores.any():
            errors.append(_issue(
                "MISSING_SCORES",
                f"{int(null_scores.sum())} completed games without final scores",
                Severity.HIGH, games=completed.loc[null_scores, "game_id"].astype(str).tolist()[:10],
            ))

        invalid_scores = (
            (completed["home_points"] < 0)
            | (completed["away_points"] < 0)
            | (completed["home_points"] > 100)
            | (completed["away_points"] > 100)
        )
        if invalid_scores.any():
            errors.append(_issue(
                "INVALID_SCORES", f"Found {int(invalid_scores.sum())} games with invalid scores",
                Severity.MEDIUM,
            ))

        duplicates = df["game_id"].astype(str).duplicated()
        if duplicates.any():
            errors.append(_issue(
                "DUPLICATE_GAMES", f"{int(duplicates.sum())} duplicate game ids", Severity.HIGH,
            ))

        same_team = df["home_team"] == df["away_team"]
        if same_team.any():
            errors.append(_issue(
                "SELF_MATCHUP", f"{int(same_team.sum())} games list the same team twice",
                Severity.MEDIUM,
            ))

        if len(completed) < len(df):
            warnings.append(f"{len(df) - len(completed)} games not yet completed")

        return ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings,
            metadata={"games": len(df), "completed_games": len(completed)},
        )

    def validate_box_scores_dataframe(self, df: pd.DataFrame) -> ValidationResult:
        """Validate box-score rows: keys, duplicates, value ranges.

        Args:
            df: Box-score DataFrame

        Returns:
            ValidationResult
        """
        missing_columns = [c for c in ("game_id", "team") if c not in df.columns]
        if missing_columns:
            return ValidationResult.build(COMPONENT, errors=[_issue(
                "MISSING_COLUMNS", f"Missing required columns: {missing_columns}",
                Severity.CRITICAL, columns=missing_columns,
            )])

        errors, warnings = [], []
        duplicates = df[["game_id", "team"]].astype(str).duplicated()
        if duplicates.any():
            errors.append(_issue(
                "DUPLICATE_BOX_SCORES", f"{int(duplicates.sum())} duplicate (game, team) rows",
                Severity.HIGH,
            ))

        outliers = []
        for row in df.to_dict("records"):
            row_outliers, row_warnings = check_reasonableness(RawGameStat.from_row(row))
            outliers.extend(row_outliers)
            warnings.extend(row_warnings)
        if outliers:
            errors.append(_issue(
                "STAT_OUTLIERS", f"{len(outliers)} statistics outside plausible ranges",
                Severity.MEDIUM, examples=outliers[:10],
            ))

        return ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings,
            metadata={"rows": len(df), "outliers": len(outliers)},
        )

    def validate_season(self, season: int) -> ValidationResult:
        """Season-level completeness and consistency check.

        Args:
            season: Season year

        Returns:
            ValidationResult with average completeness and consistency rate
        """
        if self.aggregator is None:
            raise ValueError("validate_season requires an aggregator")
        s = self.settings
        source = self.aggregator.source
        teams = source.teams(season)
        errors, warnings, recommendations = [], [], []

        if not teams:
            return ValidationResult.build(COMPONENT, errors=[_issue(
                "NO_DATA", f"No games found for {season}", Severity.CRITICAL,
            )])

        reports = [self.aggregator.quality_report(team, season) for team in teams]
        avg_completeness = sum(r.completeness_score for r in reports) / len(reports)
        insufficient = [r.team for r in reports if r.data_quality == "Insufficient"]

        checked, consistent = 0, 0
        for game in source.games(season):
            home = source.box_score(game.game_id, game.home_team)
            away = source.box_score(game.game_id, game.away_team)
            if home is None or away is None:
                continue
            checked += 1
            problems = check_consistency(home, away)
            if problems:
                logger.debug(f"Game {game.game_id} inconsistencies: {problems}")
            else:
                consistent += 1
        consistency = 100.0 * consistent / checked if checked else 0.0

        if avg_completeness < s.data_quality_min_score:
            errors.append(_issue(
                "LOW_DATA_QUALITY",
                f"Average completeness {avg_completeness:.1f} below {s.data_quality_min_score}",
                Severity.HIGH,
            ))
        elif avg_completeness < s.data_quality_completeness:
            warnings.append(
                f"Average completeness {avg_completeness:.1f} below target {s.data_quality_completeness}"
            )
        if checked and consistency < s.data_quality_consistency:
            warnings.append(
                f"Box-score consistency {consistency:.1f}% below {s.data_quality_consistency}%"
            )
        if insufficient:
            warnings.append(f"{len(insufficient)} teams have insufficient data")
            recommendations.append(
                "Ingest missing box scores for: " + ", ".join(insufficient[:10])
            )

        return ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings, recommendations=recommendations,
            metadata={
                "season": season,
                "teams": len(teams),
                "average_completeness": round(avg_completeness, 2),
                "consistency_rate": round(consistency, 2),
                "insufficient_teams": insufficient,
            },
        )
