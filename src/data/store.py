"""SQLite persistence for profiles, weights, regression analyses, and predictions.

Efficiency profiles upsert on (season, team). Weight versions, weight change
history, and regression analyses are append-only. Structured sub-records are
stored as JSON columns and validated on the way in and out.
"""

import json
import logging
import math
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from src.models.efficiency import TeamEfficiencyProfile
from src.models.regression import RegressionAnalysisResult
from src.weights.manager import WEIGHT_KEYS, PredictionWeights, WeightChangeEntry

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS efficiency_profiles (
    season INTEGER NOT NULL,
    team TEXT NOT NULL,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (season, team)
);
CREATE TABLE IF NOT EXISTS prediction_weights (
    season INTEGER NOT NULL,
    version INTEGER NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (season, version)
);
CREATE TABLE IF NOT EXISTS weight_history (
    entry_id TEXT PRIMARY KEY,
    season INTEGER NOT NULL,
    version INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    reason TEXT NOT NULL,
    previous_weights TEXT NOT NULL,
    new_weights TEXT NOT NULL,
    analysis_id TEXT,
    changed_by TEXT,
    is_manual_override INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS regression_analyses (
    analysis_id TEXT PRIMARY KEY,
    season INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS predictions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    season INTEGER NOT NULL,
    game_id TEXT,
    home_team TEXT NOT NULL,
    away_team TEXT NOT NULL,
    created_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_weight_history_season ON weight_history (season, version);
CREATE INDEX IF NOT EXISTS idx_analyses_season ON regression_analyses (season, created_at);
"""

PROFILE_NUMERIC = (
    "passing_offense", "rushing_offense", "scoring_offense",
    "passing_defense", "rushing_defense", "scoring_defense",
    "turnover_margin", "special_teams", "convergence_score",
)


class StoreValidationError(ValueError):
    """A record failed schema validation at the storage boundary."""


def validate_weight_vector(vector: dict, label: str = "weights") -> dict:
    """Check a serialized weight vector has every key with a finite value."""
    if not isinstance(vector, dict):
        raise StoreValidationError(f"{label} must be a mapping, got {type(vector).__name__}")
    missing = [k for k in WEIGHT_KEYS if k not in vector]
    if missing:
        raise StoreValidationError(f"{label} missing keys: {missing}")
    for key in WEIGHT_KEYS:
        value = vector[key]
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise StoreValidationError(f"{label}.{key} is not a finite number: {value!r}")
    return {k: float(vector[k]) for k in WEIGHT_KEYS}


def _validate_profile(data: dict) -> dict:
    for key in ("team", "season", "games_played", *PROFILE_NUMERIC):
        if key not in data:
            raise StoreValidationError(f"Profile missing field: {key}")
    for key in PROFILE_NUMERIC:
        value = data[key]
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise StoreValidationError(f"Profile {data['team']} {key} is not finite: {value!r}")
    return data


def _validate_analysis(data: dict) -> dict:
    for key in ("analysis_id", "season", "sample_size", "overall_r_squared",
                "metric_results", "created_at"):
        if key not in data:
            raise StoreValidationError(f"Regression analysis missing field: {key}")
    for result in data["metric_results"]:
        for key in ("metric", "coefficient", "r_squared", "p_value"):
            if key not in result:
                raise StoreValidationError(f"Metric result missing field: {key}")
    return data


class SQLiteStore:
    """Thread-safe SQLite store. Use ":memory:" for an ephemeral database."""

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        logger.debug(f"Opened store at {self.path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Efficiency profiles
    # ------------------------------------------------------------------

    def upsert_profile(self, profile: TeamEfficiencyProfile) -> None:
        data = _validate_profile(profile.to_dict())
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO efficiency_profiles (season, team, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (season, team) DO UPDATE SET
                    data = excluded.data, updated_at = excluded.updated_at
                """,
                (profile.season, profile.team, json.dumps(data), now),
            )
            self._conn.commit()

    def get_profile(self, team: str, season: int) -> Optional[TeamEfficiencyProfile]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM efficiency_profiles WHERE season = ? AND team = ?",
                (season, team),
            ).fetchone()
        if row is None:
            return None
        return TeamEfficiencyProfile.from_dict(_validate_profile(json.loads(row["data"])))

    def profiles(self, season: int) -> dict[str, TeamEfficiencyProfile]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT team, data FROM efficiency_profiles WHERE season = ? ORDER BY team",
                (season,),
            ).fetchall()
        return {
            row["team"]: TeamEfficiencyProfile.from_dict(_validate_profile(json.loads(row["data"])))
            for row in rows
        }

    # ------------------------------------------------------------------
    # Weights and history
    # ------------------------------------------------------------------

    def append_weights(self, weights: PredictionWeights, entry: WeightChangeEntry) -> None:
        """Insert a weight version and its change entry in one transaction."""
        validate_weight_vector(weights.as_dict(), "new weights")
        previous = validate_weight_vector(entry.previous_weights, "previous_weights")
        new = validate_weight_vector(entry.new_weights, "new_weights")
        if len(entry.reason.strip()) == 0:
            raise StoreValidationError("Weight change reason cannot be empty")

        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO prediction_weights (season, version, data, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (weights.season, weights.version, json.dumps(weights.to_dict()),
                     entry.timestamp.isoformat()),
                )
                self._conn.execute(
                    """
                    INSERT INTO weight_history (
                        entry_id, season, version, timestamp, reason, previous_weights,
                        new_weights, analysis_id, changed_by, is_manual_override
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (entry.entry_id, entry.season, entry.version, entry.timestamp.isoformat(),
                     entry.reason, json.dumps(previous), json.dumps(new), entry.analysis_id,
                     entry.changed_by, int(entry.is_manual_override)),
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise

    def latest_weights(self, season: int) -> Optional[PredictionWeights]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM prediction_weights WHERE season = ? "
                "ORDER BY version DESC LIMIT 1",
                (season,),
            ).fetchone()
        return self._weights_from_row(row)

    def latest_weights_before(self, season: int) -> Optional[PredictionWeights]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM prediction_weights WHERE season < ? "
                "ORDER BY season DESC, version DESC LIMIT 1",
                (season,),
            ).fetchone()
        return self._weights_from_row(row)

    @staticmethod
    def _weights_from_row(row) -> Optional[PredictionWeights]:
        if row is None:
            return None
        data = json.loads(row["data"])
        validate_weight_vector(data, "stored weights")
        return PredictionWeights.from_dict(data)

    def weight_history(self, season: int) -> list[WeightChangeEntry]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM weight_history WHERE season = ? ORDER BY version, timestamp",
                (season,),
            ).fetchall()
        entries = []
        for row in rows:
            entries.append(WeightChangeEntry(
                entry_id=row["entry_id"],
                season=row["season"],
                version=row["version"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                reason=row["reason"],
                previous_weights=validate_weight_vector(
                    json.loads(row["previous_weights"]), "previous_weights"),
                new_weights=validate_weight_vector(
                    json.loads(row["new_weights"]), "new_weights"),
                analysis_id=row["analysis_id"],
                changed_by=row["changed_by"],
                is_manual_override=bool(row["is_manual_override"]),
            ))
        return entries

    # ------------------------------------------------------------------
    # Regression analyses
    # ------------------------------------------------------------------

    def save_analysis(self, analysis: RegressionAnalysisResult) -> None:
        data = _validate_analysis(analysis.to_dict())
        with self._lock:
            self._conn.execute(
                "INSERT INTO regression_analyses (analysis_id, season, created_at, data) "
                "VALUES (?, ?, ?, ?)",
                (analysis.analysis_id, analysis.season, data["created_at"], json.dumps(data)),
            )
            self._conn.commit()

    def get_analysis(self, analysis_id: str) -> Optional[RegressionAnalysisResult]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM regression_analyses WHERE analysis_id = ?",
                (analysis_id,),
            ).fetchone()
        if row is None:
            return None
        return RegressionAnalysisResult.from_dict(_validate_analysis(json.loads(row["data"])))

    def latest_analysis(self, season: int) -> Optional[RegressionAnalysisResult]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM regression_analyses WHERE season = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (season,),
            ).fetchone()
        if row is None:
            return None
        return RegressionAnalysisResult.from_dict(_validate_analysis(json.loads(row["data"])))

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def save_prediction(self, season: int, record: dict) -> None:
        """Persist a prediction dict (GamePrediction.to_dict()) for later comparison."""
        for key in ("home_team", "away_team"):
            if key not in record:
                raise StoreValidationError(f"Prediction record missing {key}")
        with self._lock:
            self._conn.execute(
                "INSERT INTO predictions (season, game_id, home_team, away_team, created_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (season, record.get("game_id"), record["home_team"], record["away_team"],
                 datetime.now(timezone.utc).isoformat(), json.dumps(record)),
            )
            self._conn.commit()

    def predictions(self, season: int) -> list[dict]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT data FROM predictions WHERE season = ? ORDER BY id",
                (season,),
            ).fetchall()
        return [json.loads(row["data"]) for row in rows]
