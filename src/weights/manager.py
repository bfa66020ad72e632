"""Regression-based prediction weight management.

Weights are versioned per season. Every change (regression-derived, manual
override, or reset) writes a new PredictionWeights version plus a
WeightChangeEntry whose previous weights equal the prior entry's new weights.
Writes for one season are serialized by a per-season lock; a second writer
arriving while the lock is held is rejected with WeightUpdateConflictError.

Weight retrieval never fails: latest weights for the season, else the most
recent prior season, else the baseline vector.
"""

import logging
import math
import threading
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Optional

from config.settings import Settings
from src.models.regression import RegressionAnalysisResult

logger = logging.getLogger(__name__)

CATEGORY_WEIGHTS = (
    "passing_offense",
    "rushing_offense",
    "scoring_efficiency",
    "passing_defense",
    "rushing_defense",
    "turnover_margin",
    "special_teams",
)
WEIGHT_KEYS = CATEGORY_WEIGHTS + ("home_field_advantage",)

# Relative importance before normalization
_RAW_BASELINE = {
    "passing_offense": 0.25,
    "rushing_offense": 0.20,
    "scoring_efficiency": 0.30,
    "passing_defense": 0.25,
    "rushing_defense": 0.20,
    "turnover_margin": 0.35,
    "special_teams": 0.15,
}
_RAW_TOTAL = sum(_RAW_BASELINE.values())
BASELINE_WEIGHTS = {k: v / _RAW_TOTAL for k, v in _RAW_BASELINE.items()}
BASELINE_WEIGHTS["home_field_advantage"] = 0.10

# Weight keys (offense side, defense side) for each matchup category
MATCHUP_WEIGHT_KEYS = {
    "passing": ("passing_offense", "passing_defense"),
    "rushing": ("rushing_offense", "rushing_defense"),
    "scoring": ("scoring_efficiency", "scoring_efficiency"),
    "turnover": ("turnover_margin", "turnover_margin"),
    "special_teams": ("special_teams", "special_teams"),
}

MAGNITUDE_KEYWORDS = ("major", "significant")


class WeightValidationError(ValueError):
    """Weights or change request rejected; previous weights are retained."""


class WeightUpdateConflictError(RuntimeError):
    """Another writer holds the season's weight-history lock."""


@dataclass(frozen=True)
class PredictionWeights:
    """One immutable weight vector version for a season."""

    season: int
    passing_offense: float
    rushing_offense: float
    scoring_efficiency: float
    passing_defense: float
    rushing_defense: float
    turnover_margin: float
    special_teams: float
    home_field_advantage: float
    version: int = 0
    source: str = "baseline"  # baseline, regression, manual, prior_season
    created_at: Optional[datetime] = None

    @classmethod
    def from_values(cls, season: int, values: dict, **kwargs) -> "PredictionWeights":
        return cls(season=season, **{k: float(values[k]) for k in WEIGHT_KEYS}, **kwargs)

    @classmethod
    def baseline(cls, season: int) -> "PredictionWeights":
        return cls.from_values(season, BASELINE_WEIGHTS, version=0, source="baseline")

    def as_dict(self) -> dict[str, float]:
        """The eight weight values keyed by name."""
        return {k: getattr(self, k) for k in WEIGHT_KEYS}

    def category_weights(self) -> dict[str, float]:
        return {k: getattr(self, k) for k in CATEGORY_WEIGHTS}

    @property
    def category_sum(self) -> float:
        return sum(self.category_weights().values())

    def for_matchup(self, category: str) -> tuple[float, float]:
        """(offense weight, defense weight) for a matchup category."""
        off_key, def_key = MATCHUP_WEIGHT_KEYS[category]
        return getattr(self, off_key), getattr(self, def_key)

    def to_dict(self) -> dict:
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        result["created_at"] = self.created_at.isoformat() if self.created_at else None
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "PredictionWeights":
        data = dict(data)
        created = data.get("created_at")
        data["created_at"] = datetime.fromisoformat(created) if created else None
        return cls(**data)


@dataclass(frozen=True)
class WeightChangeEntry:
    """Audit record for one weight change."""

    season: int
    version: int
    reason: str
    previous_weights: dict
    new_weights: dict
    analysis_id: Optional[str] = None
    changed_by: Optional[str] = None
    is_manual_override: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_analysis_linked(self) -> bool:
        return self.analysis_id is not None

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "season": self.season,
            "version": self.version,
            "reason": self.reason,
            "previous_weights": dict(self.previous_weights),
            "new_weights": dict(self.new_weights),
            "analysis_id": self.analysis_id,
            "changed_by": self.changed_by,
            "is_manual_override": self.is_manual_override,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeightChangeEntry":
        data = dict(data)
        data["timestamp"] = datetime.fromisoformat(data["timestamp"])
        return cls(**data)


def largest_relative_change(previous: dict, new: dict) -> tuple[Optional[str], float]:
    """Key and size of the largest single-weight relative change."""
    worst_key, worst = None, 0.0
    for key in WEIGHT_KEYS:
        old, cur = previous.get(key, 0.0), new.get(key, 0.0)
        if old == cur:
            continue
        change = abs(cur - old) / abs(old) if old else float("inf")
        if change > worst:
            worst_key, worst = key, change
    return worst_key, worst


def mentions_magnitude(reason: str) -> bool:
    text = reason.lower()
    return any(word in text for word in MAGNITUDE_KEYWORDS)


class WeightManager:
    """Derives, validates, persists, and serves prediction weights."""

    def __init__(self, settings: Settings, store):
        """Initialize the manager.

        Args:
            settings: Application settings (bounds, thresholds)
            store: Persistence backend (see src.data.store.SQLiteStore)
        """
        self.settings = settings
        self.store = store
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def writer_lock(self, season: int) -> threading.Lock:
        """The single-writer lock guarding a season's weight history."""
        with self._locks_guard:
            if season not in self._locks:
                self._locks[season] = threading.Lock()
            return self._locks[season]

    def get_current_weights(self, season: int) -> PredictionWeights:
        """Latest weights for the season, falling back to prior season, then baseline."""
        try:
            current = self.store.latest_weights(season)
            if current is not None:
                return current
            prior = self.store.latest_weights_before(season)
            if prior is not None:
                logger.info(f"No weights for {season}, using {prior.season} weights")
                return PredictionWeights.from_values(
                    season, prior.as_dict(), version=0, source="prior_season",
                    created_at=prior.created_at,
                )
        except Exception as e:
            logger.error(f"Error loading weights for {season}, using baseline: {e}")
        return PredictionWeights.baseline(season)

    def weight_history(self, season: int, limit: Optional[int] = None) -> list[WeightChangeEntry]:
        """Change entries for a season, oldest first."""
        history = self.store.weight_history(season)
        return history[-limit:] if limit else history

    def validate_weight_values(self, values: dict) -> list[str]:
        """Errors for a candidate weight vector (empty list = valid)."""
        s = self.settings
        errors = []
        for key in WEIGHT_KEYS:
            if key not in values:
                errors.append(f"Missing weight: {key}")
                continue
            value = values[key]
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                errors.append(f"Invalid {key}: must be a finite number, got {value!r}")
            elif value < s.weight_min or value > s.weight_max:
                errors.append(
                    f"Weight {key}={value} outside [{s.weight_min}, {s.weight_max}]"
                )
        if errors:
            return errors
        total = sum(values[k] for k in CATEGORY_WEIGHTS)
        if abs(total - 1.0) > s.weight_sum_tolerance:
            errors.append(
                f"Category weight sum {total:.4f} outside 1.0 ± {s.weight_sum_tolerance}"
            )
        return errors

    def compute_regression_weights(
        self,
        analysis: RegressionAnalysisResult,
        home_field_advantage: float = BASELINE_WEIGHTS["home_field_advantage"],
    ) -> dict[str, float]:
        """Turn regression output into a normalized, bounded weight vector.

        Metrics are filtered on p-value and R² (unless the analysis did not
        consider significance), scaled by |coefficient|, normalized to sum
        to 1, clamped into bounds, and renormalized if clamping moved the
        sum beyond tolerance. Categories not retained get weight 0.

        Raises:
            WeightValidationError: if no metric qualifies or any value is non-finite
        """
        s = self.settings
        retained = []
        for result in analysis.metric_results:
            if result.metric not in CATEGORY_WEIGHTS:
                continue
            if not (math.isfinite(result.coefficient) and math.isfinite(result.r_squared)):
                raise WeightValidationError(
                    f"Non-finite regression output for {result.metric}"
                )
            if analysis.statistical_significance_considered and not (
                result.p_value < s.significance_threshold
                and result.r_squared > s.r_squared_threshold
            ):
                continue
            retained.append(result)

        base = {r.metric: abs(r.coefficient) * s.weight_scale_factor for r in retained}
        total = sum(base.values())
        if not base or total <= 0 or not math.isfinite(total):
            raise WeightValidationError(
                f"No usable metrics in analysis {analysis.analysis_id} for season {analysis.season}"
            )

        weights = {k: base.get(k, 0.0) / total for k in CATEGORY_WEIGHTS}
        clamped = {k: min(s.weight_max, max(s.weight_min, v)) for k, v in weights.items()}
        clamped_total = sum(clamped.values())
        if abs(clamped_total - 1.0) > s.weight_sum_tolerance and clamped_total > 0:
            clamped = {k: v / clamped_total for k, v in clamped.items()}
        clamped["home_field_advantage"] = home_field_advantage
        return clamped

    def derive_weights_from_regression(
        self,
        analysis: RegressionAnalysisResult,
        reason: Optional[str] = None,
    ) -> PredictionWeights:
        """Derive and persist weights from a regression analysis.

        Args:
            analysis: Stored RegressionAnalysisResult to link the change to
            reason: Optional justification (a descriptive default is generated)

        Returns:
            The newly persisted PredictionWeights
        """
        current = self.get_current_weights(analysis.season)
        values = self.compute_regression_weights(analysis, current.home_field_advantage)
        if not reason:
            reason = (
                f"Regression-derived weights: n={analysis.sample_size}, "
                f"R²={analysis.overall_r_squared:.3f}, "
                f"significant metrics={analysis.significant_metrics or 'none'}"
            )
            if not analysis.statistical_significance_considered:
                reason += " (significance not considered: small sample)"
            key, change = largest_relative_change(current.as_dict(), values)
            if change > self.settings.major_change_threshold:
                reason += f"; major change in {key} ({change:.0%})"
        return self._commit(
            analysis.season, values, reason,
            analysis_id=analysis.analysis_id, source="regression",
        )

    def update_weights(
        self,
        season: int,
        weights: dict,
        reason: str,
        changed_by: Optional[str] = None,
    ) -> PredictionWeights:
        """Manually override a season's weights.

        Raises:
            WeightValidationError: short reason or invalid values
            WeightUpdateConflictError: a concurrent writer holds the season lock
        """
        min_len = self.settings.manual_reason_min_length
        if not reason or len(reason.strip()) < min_len:
            raise WeightValidationError(
                f"Manual weight changes require a reason of at least {min_len} characters"
            )
        return self._commit(
            season, dict(weights), reason.strip(),
            changed_by=changed_by, manual=True, source="manual",
        )

    def reset_to_baseline(
        self,
        season: int,
        reason: str,
        changed_by: Optional[str] = None,
    ) -> PredictionWeights:
        """Replace a season's weights with the baseline vector (manual override)."""
        return self.update_weights(season, dict(BASELINE_WEIGHTS), reason, changed_by)

    def _commit(
        self,
        season: int,
        values: dict,
        reason: str,
        analysis_id: Optional[str] = None,
        changed_by: Optional[str] = None,
        manual: bool = False,
        source: str = "regression",
    ) -> PredictionWeights:
        errors = self.validate_weight_values(values)
        if errors:
            logger.error(f"Rejected weights for {season}: {errors}")
            raise WeightValidationError("; ".join(errors))

        lock = self.writer_lock(season)
        if not lock.acquire(blocking=False):
            raise WeightUpdateConflictError(
                f"Weight update already in progress for season {season}"
            )
        try:
            previous = self.get_current_weights(season)
            latest = self.store.latest_weights(season)
            version = latest.version + 1 if latest is not None else 1
            now = datetime.now(timezone.utc)

            new_weights = PredictionWeights.from_values(
                season, values, version=version, source=source, created_at=now,
            )
            entry = WeightChangeEntry(
                season=season,
                version=version,
                reason=reason,
                previous_weights=previous.as_dict(),
                new_weights=new_weights.as_dict(),
                analysis_id=analysis_id,
                changed_by=changed_by,
                is_manual_override=manual,
                timestamp=now,
            )

            key, change = largest_relative_change(entry.previous_weights, entry.new_weights)
            if change > self.settings.major_change_threshold and not mentions_magnitude(reason):
                logger.warning(
                    f"Weight {key} changed {change:.0%} for {season} without a "
                    f"magnitude justification; change recorded but will fail verification"
                )

            self.store.append_weights(new_weights, entry)
            logger.info(f"Stored weights v{version} for {season} ({source}): {reason[:80]}")
            return new_weights
        finally:
            lock.release()
