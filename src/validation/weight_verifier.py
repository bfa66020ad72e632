"""Weight correctness verification.

Four independent checks for a season's current weights:

1. Regression consistency: re-derive weights from the latest stored
   regression analysis and compare them to the stored vector.
2. Bounds: every weight in [min, max] and category weights summing to 1.0
   within tolerance.
3. Formula replay: run the prediction formula on synthetic efficiencies and
   confirm each category contribution equals efficiency x weight.
4. Audit trail: justification, unbroken chain, duplicates, time gaps, and
   large swings without a magnitude keyword.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config.settings import Settings
from src.models.efficiency import MATCHUP_CATEGORIES, TeamEfficiencyProfile
from src.predictions.engine import PredictionEngine
from src.validation.core import (
    Severity,
    ValidationComponent,
    ValidationIssue,
    ValidationLogger,
    ValidationResult,
)
from src.weights.manager import (
    CATEGORY_WEIGHTS,
    WEIGHT_KEYS,
    PredictionWeights,
    WeightManager,
    WeightValidationError,
    largest_relative_change,
    mentions_magnitude,
)

logger = logging.getLogger(__name__)

COMPONENT = ValidationComponent.WEIGHT_CALCULATION

# Efficiencies used to replay the prediction formula
SYNTHETIC_OFFENSE = {
    "passing_offense": 10.0,
    "rushing_offense": -6.0,
    "scoring_offense": 4.5,
    "passing_defense": 2.0,
    "rushing_defense": 3.0,
    "scoring_defense": -1.5,
    "turnover_margin": 1.2,
    "special_teams": 0.4,
}
SYNTHETIC_DEFENSE = {
    "passing_offense": -3.0,
    "rushing_offense": 2.0,
    "scoring_offense": 1.0,
    "passing_defense": 5.0,
    "rushing_defense": -4.0,
    "scoring_defense": 2.5,
    "turnover_margin": -0.8,
    "special_teams": 0.2,
}


def _issue(code: str, message: str, severity: Severity, **details) -> ValidationIssue:
    return ValidationIssue(code, message, severity, COMPONENT, details)


def _vectors_equal(a: dict, b: dict, tolerance: float = 1e-9) -> bool:
    return all(abs(a.get(k, 0.0) - b.get(k, 0.0)) <= tolerance for k in WEIGHT_KEYS)


@dataclass
class WeightValidationResult:
    """Outcome of verifying a season's weights."""

    season: int
    weights: PredictionWeights
    result: ValidationResult
    checks: dict = field(default_factory=dict)  # check name -> passed
    derived_weights: Optional[dict] = None

    @property
    def is_valid(self) -> bool:
        return self.result.is_valid

    @property
    def score(self) -> float:
        return self.result.score

    @property
    def errors(self) -> list:
        return self.result.errors

    @property
    def warnings(self) -> list:
        return self.result.warnings

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "weights": self.weights.to_dict(),
            "checks": dict(self.checks),
            "derived_weights": self.derived_weights,
            **self.result.to_dict(),
        }


class WeightVerifier:
    """Audits stored prediction weights against their regression source and history."""

    def __init__(
        self,
        settings: Settings,
        weight_manager: WeightManager,
        store,
        engine: PredictionEngine,
        validation_logger: Optional[ValidationLogger] = None,
    ):
        self.settings = settings
        self.weight_manager = weight_manager
        self.store = store
        self.engine = engine
        self.validation_logger = validation_logger

    def check_regression_consistency(
        self,
        season: int,
        weights: PredictionWeights,
        errors: list,
        warnings: list,
    ) -> tuple[bool, Optional[dict]]:
        """Re-derive weights from the latest analysis and compare."""
        analysis = self.store.latest_analysis(season)
        if analysis is None:
            warnings.append(f"No regression analysis on record for {season}")
            return True, None

        if not analysis.statistical_significance_considered:
            warnings.append(
                f"Analysis {analysis.analysis_id} used a small sample "
                f"({analysis.sample_size}); statistical significance was not considered"
            )

        if weights.source != "regression":
            warnings.append(
                f"Current weights come from '{weights.source}'; re-derivation comparison skipped"
            )
            return True, None

        try:
            derived = self.weight_manager.compute_regression_weights(
                analysis, weights.home_field_advantage
            )
        except WeightValidationError as e:
            errors.append(_issue(
                "REGRESSION_DERIVATION_FAILED", str(e), Severity.HIGH,
                analysis_id=analysis.analysis_id,
            ))
            return False, None

        tolerance = self.settings.weight_tolerance
        stored = weights.as_dict()
        mismatched = {
            k: (stored[k], derived[k])
            for k in WEIGHT_KEYS
            if abs(stored[k] - derived[k]) > tolerance
        }
        if mismatched:
            errors.append(_issue(
                "WEIGHT_MISMATCH",
                f"{len(mismatched)} stored weights differ from re-derived weights by more than {tolerance}",
                Severity.HIGH, mismatched=mismatched, analysis_id=analysis.analysis_id,
            ))
        return not mismatched, derived

    def check_bounds(self, weights: PredictionWeights, errors: list) -> bool:
        s = self.settings
        passed = True
        for key, value in weights.as_dict().items():
            if not s.weight_min <= value <= s.weight_max:
                passed = False
                errors.append(_issue(
                    "WEIGHT_OUT_OF_BOUNDS",
                    f"{key}={value} outside [{s.weight_min}, {s.weight_max}]",
                    Severity.CRITICAL, weight=key, value=value,
                ))
        total = weights.category_sum
        if abs(total - 1.0) > s.weight_sum_tolerance:
            passed = False
            errors.append(_issue(
                "WEIGHT_SUM_OUT_OF_TOLERANCE",
                f"Category weights sum to {total:.4f}, outside 1.0 ± {s.weight_sum_tolerance}",
                Severity.CRITICAL, total=total,
            ))
        return passed

    def check_formula_replay(self, weights: PredictionWeights, errors: list) -> bool:
        """Replay the formula on synthetic profiles; contributions must equal efficiency x weight."""
        tolerance = self.settings.contribution_tolerance
        team = TeamEfficiencyProfile(
            team="__replay_home__", season=weights.season, games_played=10,
            data_quality="Excellent", confidence_level="High", convergence_score=1.0,
            average_points_for=28.0, **SYNTHETIC_OFFENSE,
        )
        opponent = TeamEfficiencyProfile(
            team="__replay_away__", season=weights.season, games_played=10,
            data_quality="Excellent", confidence_level="High", convergence_score=1.0,
            average_points_for=28.0, **SYNTHETIC_DEFENSE,
        )

        passed = True
        breakdown = self.engine.breakdown(team, opponent, weights)
        expected_total = 0.0
        for category in MATCHUP_CATEGORIES:
            off_w, def_w = weights.for_matchup(category)
            contribution = breakdown[category]
            expected_off = team.offense(category) * off_w
            expected_def = -opponent.defense(category) * def_w
            expected_total += expected_off + expected_def
            if (abs(contribution.offense_contribution - expected_off) > tolerance
                    or abs(contribution.defense_contribution - expected_def) > tolerance):
                passed = False
                errors.append(_issue(
                    "CONTRIBUTION_MISMATCH",
                    f"{category} contribution {contribution.total:.4f} != "
                    f"{expected_off + expected_def:.4f}",
                    Severity.CRITICAL, category=category,
                ))

        prediction = self.engine.predict(team, opponent, weights, neutral_site=True)
        expected_score = self.settings.national_baseline + expected_total
        if abs(prediction.initial_home_score - expected_score) > tolerance:
            passed = False
            errors.append(_issue(
                "FORMULA_MISMATCH",
                f"Replayed score {prediction.initial_home_score:.4f} != {expected_score:.4f}",
                Severity.CRITICAL,
            ))

        hfa = self.engine.home_field_points(weights, neutral_site=False)
        expected_hfa = weights.home_field_advantage * self.settings.home_field_scale
        if abs(hfa - expected_hfa) > tolerance:
            passed = False
            errors.append(_issue(
                "HOME_FIELD_MISMATCH", f"Home field term {hfa:.4f} != {expected_hfa:.4f}",
                Severity.HIGH,
            ))
        return passed

    def check_audit_trail(self, season: int, errors: list, warnings: list) -> bool:
        s = self.settings
        history = self.weight_manager.weight_history(season)
        if not history:
            warnings.append(f"No weight change history for {season}")
            return True

        error_count = len(errors)
        seen_ids, seen_versions = set(), set()
        previous = None
        for entry in history:
            label = f"v{entry.version}"

            if len(entry.reason.strip()) < s.audit_reason_min_length:
                errors.append(_issue(
                    "MISSING_JUSTIFICATION",
                    f"{label}: justification shorter than {s.audit_reason_min_length} characters",
                    Severity.HIGH, entry_id=entry.entry_id,
                ))

            if entry.entry_id in seen_ids or entry.version in seen_versions:
                errors.append(_issue(
                    "DUPLICATE_ENTRY", f"{label}: duplicate history entry", Severity.HIGH,
                    entry_id=entry.entry_id,
                ))
            seen_ids.add(entry.entry_id)
            seen_versions.add(entry.version)

            if previous is not None:
                if not _vectors_equal(entry.previous_weights, previous.new_weights):
                    errors.append(_issue(
                        "BROKEN_CHAIN",
                        f"{label}: previous weights do not match v{previous.version} new weights",
                        Severity.CRITICAL, entry_id=entry.entry_id,
                    ))
                gap_hours = (entry.timestamp - previous.timestamp).total_seconds() / 3600
                if gap_hours < s.min_change_interval_hours:
                    warnings.append(
                        f"{label}: changed {gap_hours * 60:.0f} minutes after v{previous.version}"
                    )

            key, change = largest_relative_change(entry.previous_weights, entry.new_weights)
            if change > s.major_change_threshold and not mentions_magnitude(entry.reason):
                errors.append(_issue(
                    "UNJUSTIFIED_MAJOR_CHANGE",
                    f"{label}: {key} changed {change:.0%} without a major/significant justification",
                    Severity.HIGH, weight=key,
                ))

            if entry.is_manual_override and len(entry.reason.strip()) < s.manual_reason_min_length:
                errors.append(_issue(
                    "SHORT_OVERRIDE_REASON",
                    f"{label}: manual override reason shorter than {s.manual_reason_min_length} characters",
                    Severity.MEDIUM, entry_id=entry.entry_id,
                ))

            if entry.is_analysis_linked:
                analysis = self.store.get_analysis(entry.analysis_id)
                if analysis is None:
                    errors.append(_issue(
                        "MISSING_ANALYSIS", f"{label}: linked analysis {entry.analysis_id} not found",
                        Severity.HIGH,
                    ))
                elif analysis.overall_r_squared < s.r_squared_threshold:
                    message = (
                        f"{label}: linked analysis R² {analysis.overall_r_squared:.3f} "
                        f"below {s.r_squared_threshold}"
                    )
                    if analysis.statistical_significance_considered:
                        errors.append(_issue("LOW_R_SQUARED", message, Severity.MEDIUM))
                    else:
                        warnings.append(message)
            elif not entry.is_manual_override:
                warnings.append(f"{label}: change is neither analysis-linked nor a manual override")

            previous = entry
        return len(errors) == error_count

    def verify(self, season: int) -> WeightValidationResult:
        """Run every weight check for a season.

        Args:
            season: Season year

        Returns:
            WeightValidationResult (is_valid False with specific error codes on failure)
        """
        weights = self.weight_manager.get_current_weights(season)
        errors, warnings, recommendations = [], [], []

        consistent, derived = self.check_regression_consistency(season, weights, errors, warnings)
        checks = {
            "regression_consistency": consistent,
            "bounds": self.check_bounds(weights, errors),
            "formula_replay": self.check_formula_replay(weights, errors),
            "audit_trail": self.check_audit_trail(season, errors, warnings),
        }

        if not checks["regression_consistency"]:
            recommendations.append("Re-run regression analysis and re-derive weights")
        if not checks["audit_trail"]:
            recommendations.append("Review weight change history; entries are not auto-repaired")
        if weights.source in ("baseline", "prior_season"):
            recommendations.append(f"Derive {season} weights from a regression analysis")

        result = ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings, recommendations=recommendations,
            metadata={
                "season": season,
                "weights_version": weights.version,
                "weights_source": weights.source,
                "checks": checks,
                "category_sum": weights.category_sum,
                "categories": list(CATEGORY_WEIGHTS),
            },
        )
        if self.validation_logger is not None:
            self.validation_logger.log_result(result)
        logger.info(f"Weight verification {season}: valid={result.is_valid}, checks={checks}")
        return WeightValidationResult(
            season=season, weights=weights, result=result, checks=checks,
            derived_weights=derived,
        )
