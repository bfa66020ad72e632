"""Application settings and configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _env_int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


@dataclass
class Settings:
    """Application configuration settings.

    One instance is built at startup (see ``load_settings``) and passed to
    every component explicitly.
    """

    # Season Configuration
    current_season: int = field(default_factory=lambda: _env_int("CURRENT_SEASON", "2025"))
    lookback_seasons: int = 3

    # Storage
    database_path: str = field(
        default_factory=lambda: os.getenv("PREDICTOR_DB_PATH", ":memory:")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Prediction Formula
    national_baseline: float = field(
        default_factory=lambda: _env_float("NATIONAL_BASELINE", "28.0")
    )
    home_field_scale: float = 30.0  # hfa weight 0.10 -> 3 points
    win_prob_per_point: float = 3.5
    win_prob_min: float = 5.0
    win_prob_max: float = 95.0
    confidence_min: float = 20.0
    confidence_max: float = 95.0
    score_interval_pct: float = 0.15
    min_adequate_sample: int = 8  # combined games for both teams

    # Weight Management
    weight_min: float = 0.0
    weight_max: float = 2.0
    weight_sum_tolerance: float = 0.1
    significance_threshold: float = 0.1
    r_squared_threshold: float = 0.2
    min_regression_sample: int = 30
    weight_scale_factor: float = 0.1
    manual_reason_min_length: int = 50
    audit_reason_min_length: int = 10
    major_change_threshold: float = 0.5
    min_change_interval_hours: float = 1.0
    weight_tolerance: float = 0.01  # re-derivation equivalence
    contribution_tolerance: float = 0.001

    # Boundary Validation
    scoring_floor: float = 0.05
    scoring_ceiling: float = 6.0
    extreme_threshold: float = 0.8
    regression_factor: float = 0.01
    deviation_ratio_limit: float = 1.5
    historical_sigma_limit: float = 3.0
    historical_target_sigma: float = 2.5
    max_confidence_reduction: float = 0.8
    min_points: float = 3.0  # a field goal

    # Validation Thresholds
    data_quality_min_score: float = 70.0
    data_quality_completeness: float = 80.0
    data_quality_consistency: float = 85.0
    accuracy_min: float = 60.0
    accuracy_max_bias: float = 0.1
    calibration_threshold: float = 0.8
    sample_success_threshold: float = 0.8
    validation_history_cap: int = 1000

    # Batch Processing
    batch_size: int = field(default_factory=lambda: _env_int("BATCH_SIZE", "10"))
    batch_delay_seconds: float = field(
        default_factory=lambda: _env_float("BATCH_DELAY_SECONDS", "0.5")
    )
    sample_seed: int = 42

    # Paths
    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def outputs_dir(self) -> Path:
        return self.data_dir / "outputs"

    def validate(self) -> list[str]:
        """Validate settings. Returns list of errors."""
        errors = []
        if self.weight_min < 0 or self.weight_max <= self.weight_min:
            errors.append(
                f"Invalid weight bounds [{self.weight_min}, {self.weight_max}]"
            )
        if self.weight_sum_tolerance <= 0:
            errors.append("weight_sum_tolerance must be positive")
        if not 0 < self.significance_threshold < 1:
            errors.append("significance_threshold must be in (0, 1)")
        if not 0 <= self.r_squared_threshold < 1:
            errors.append("r_squared_threshold must be in [0, 1)")
        if self.min_regression_sample < 3:
            errors.append("min_regression_sample must be at least 3")
        if self.win_prob_min >= self.win_prob_max:
            errors.append("win_prob_min must be below win_prob_max")
        if self.confidence_min >= self.confidence_max:
            errors.append("confidence_min must be below confidence_max")
        if self.scoring_floor <= 0 or self.scoring_ceiling <= self.scoring_floor:
            errors.append("Boundary floor must be positive and below the ceiling")
        if self.batch_size < 1:
            errors.append("BATCH_SIZE must be at least 1")
        if self.batch_delay_seconds < 0:
            errors.append("BATCH_DELAY_SECONDS cannot be negative")
        return errors


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load environment variables (from .env if present) and build Settings.

    Args:
        env_file: Optional path to a dotenv file

    Returns:
        A new Settings instance
    """
    load_dotenv(env_file)
    return Settings()
