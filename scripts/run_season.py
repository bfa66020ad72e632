#!/usr/bin/env python3
"""
Season runner for the efficiency prediction pipeline.

Loads games and box scores from CSV, recomputes team efficiency profiles,
runs the regression analysis, derives weights, and optionally predicts a
week and writes a validation report.

Usage:
    python scripts/run_season.py --games games.csv --box-scores box.csv --season 2024
    python scripts/run_season.py --games games.csv --box-scores box.csv --season 2024 --week 10
    python scripts/run_season.py ... --sample-size 40 --report report.json
    python scripts/run_season.py ... --no-derive   # keep current weights
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pandas as pd

from config.settings import load_settings
from src.data.store import SQLiteStore
from src.pipeline import build_service


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Process a season and generate efficiency-based predictions"
    )
    parser.add_argument(
        "--games", type=Path, required=True,
        help="CSV of games (game_id, season, week, home_team, away_team, home_points, away_points, completed)",
    )
    parser.add_argument(
        "--box-scores", type=Path, default=None,
        help="CSV of box scores, one row per team per game",
    )
    parser.add_argument(
        "--season", type=int, default=None,
        help="Season to process (default: CURRENT_SEASON)",
    )
    parser.add_argument(
        "--week", type=int, default=None,
        help="Predict every game in this week",
    )
    parser.add_argument(
        "--db", type=str, default=None,
        help="SQLite database path (default: PREDICTOR_DB_PATH or in-memory)",
    )
    parser.add_argument(
        "--env-file", type=str, default=None,
        help="dotenv file to load settings from",
    )
    parser.add_argument(
        "--no-derive", action="store_true",
        help="Run regression analysis without deriving new weights",
    )
    parser.add_argument(
        "--sample-size", type=int, default=20,
        help="Number of completed games to analyze (0 to skip)",
    )
    parser.add_argument(
        "--snapshot-dir", type=str, default=None,
        help="Write a parquet snapshot of season profiles here",
    )
    parser.add_argument(
        "--report", type=Path, default=None,
        help="Write the JSON analysis report to this path",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Debug logging",
    )
    return parser.parse_args()


def main():
    args = parse_args()
    settings = load_settings(args.env_file)
    if args.db:
        settings.database_path = args.db

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(__name__)

    season = args.season or settings.current_season
    games = pd.read_csv(args.games)
    box_scores = pd.read_csv(args.box_scores) if args.box_scores else None

    service = build_service(
        settings, games, box_scores,
        store=SQLiteStore(settings.database_path),
        cache_dir=args.snapshot_dir,
    )

    data_check = service.data_validator.validate_games_dataframe(games)
    service.validation_logger.log_result(data_check)
    if data_check.has_critical:
        logger.error("Games file failed validation; aborting")
        return 1

    summary = service.process_season(season, write_snapshot=bool(args.snapshot_dir))
    print(f"\nProcessed {summary.processed}/{summary.teams_total} teams ({summary.failed} failed)")

    analysis = service.run_regression_analysis(season, derive_weights=not args.no_derive)
    weights = service.get_current_weights(season)
    print(f"Regression: n={analysis.sample_size}, R²={analysis.overall_r_squared:.3f}")
    print(f"Weights v{weights.version} ({weights.source}):")
    for name, value in weights.as_dict().items():
        print(f"  {name:<22} {value:.4f}")

    audit = service.audit_regression(season)
    print(f"Regression audit: {'valid' if audit.is_valid else 'INVALID'} "
          f"(score {audit.score:.0f}, overfitting risk {audit.overfitting_risk})")
    for warning in audit.warnings:
        print(f"  - {warning}")

    verification = service.validate_weights(season)
    print(f"Weight verification: {'valid' if verification.is_valid else 'INVALID'} "
          f"(score {verification.score:.0f})")
    for issue in verification.errors:
        print(f"  [{issue.severity.value}] {issue.code}: {issue.message}")

    if args.week is not None:
        predictions = service.get_weekly_predictions(season, args.week)
        print(f"\nWeek {args.week} predictions:")
        for p in predictions:
            print(
                f"  {p.away_team:>20} @ {p.home_team:<20} "
                f"{p.away_score:5.1f}-{p.home_score:5.1f}  "
                f"home win {p.home_win_probability:4.1f}%  conf {p.confidence:4.1f} ({p.confidence_level})"
            )

    if args.sample_size > 0:
        analyses = service.analyze_sample_games(season, args.sample_size)
        accuracy = service.test_accuracy(season, analyses)
        health = service.system_health(season, accuracy)
        report = service.generate_intuitive_report(season, accuracy, health, analyses)
        summary_text = report.executive_summary
        print(f"\nSystem health: {health.overall_health} ({health.health_score:.0f})")
        print(summary_text.prediction_accuracy_summary)
        for finding in summary_text.key_findings:
            print(f"  - {finding}")

        if args.report:
            args.report.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                "season": season,
                "processing": summary.to_dict(),
                "regression": analysis.to_dict(),
                "regression_audit": audit.to_dict(),
                "weights": weights.to_dict(),
                "verification": verification.to_dict(),
                "accuracy": accuracy.to_dict(),
                "health": health.to_dict(),
                "report": report.to_dict(),
                "games": [a.to_dict() for a in analyses],
            }
            args.report.write_text(json.dumps(payload, indent=2, default=str))
            logger.info(f"Wrote report to {args.report}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
