"""System health monitoring.

Rolls data quality, model health, and (when available) prediction accuracy
into a single health score with alerts for anything needing attention.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from config.settings import Settings
from src.data.validators import DataValidator
from src.models.efficiency import TeamEfficiencyProfile
from src.validation.accuracy import AccuracyResults
from src.validation.regression_auditor import RegressionAuditResult
from src.validation.core import (
    Severity,
    ValidationComponent,
    ValidationIssue,
    ValidationLogger,
    ValidationResult,
)
from src.weights.manager import WeightManager, largest_relative_change

logger = logging.getLogger(__name__)

COMPONENT = ValidationComponent.SYSTEM_HEALTH_MONITOR

FAILURE_PENALTY = 5
MAX_FAILURE_PENALTY = 20
GOOD_FIT_R_SQUARED = 0.6
AUDIT_PENALTY = 10


def health_status(score: float) -> str:
    if score >= 85:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 55:
        return "fair"
    return "poor"


def accuracy_score(accuracy: AccuracyResults) -> float:
    """Composite 0-100 score from winner accuracy, Brier score and calibration."""
    return (
        accuracy.winner_accuracy * 0.5
        + (1 - accuracy.brier_score) * 100 * 0.3
        + accuracy.calibration_score * 0.2
    )


@dataclass
class DataQualityStatus:
    score: float
    status: str
    completeness: float
    consistency: float
    validity: float
    issue_count: int
    critical_issues: int


@dataclass
class ModelHealthStatus:
    score: float
    status: str
    regression_model_fit: float
    statistical_significance: float  # percent of metrics significant
    convergence_stability: float
    weight_stability: float
    weights_valid: bool
    last_successful_analysis: Optional[datetime] = None
    regression_audit_score: Optional[float] = None


@dataclass
class SystemAlert:
    level: str  # critical, warning, info
    component: str
    message: str
    recommendations: list = field(default_factory=list)


@dataclass
class SystemHealth:
    """Point-in-time health of the prediction system for a season."""

    season: int
    overall_health: str
    health_score: float
    data_quality: DataQualityStatus
    model_health: ModelHealthStatus
    prediction_reliability: Optional[float] = None
    processing_failures: int = 0
    alerts: list = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        model = asdict(self.model_health)
        last = self.model_health.last_successful_analysis
        model["last_successful_analysis"] = last.isoformat() if last else None
        return {
            "season": self.season,
            "overall_health": self.overall_health,
            "health_score": self.health_score,
            "data_quality": asdict(self.data_quality),
            "model_health": model,
            "prediction_reliability": self.prediction_reliability,
            "processing_failures": self.processing_failures,
            "alerts": [asdict(a) for a in self.alerts],
            "checked_at": self.checked_at.isoformat(),
        }


class SystemHealthMonitor:
    """Computes SystemHealth from the data validator, stored weights and analyses."""

    def __init__(
        self,
        settings: Settings,
        data_validator: DataValidator,
        weight_manager: WeightManager,
        store,
        validation_logger: Optional[ValidationLogger] = None,
    ):
        self.settings = settings
        self.data_validator = data_validator
        self.weight_manager = weight_manager
        self.store = store
        self.validation_logger = validation_logger

    def data_quality(self, season: int, alerts: list) -> DataQualityStatus:
        result = self.data_validator.validate_season(season)
        completeness = float(result.metadata.get("average_completeness", 0.0))
        consistency = float(result.metadata.get("consistency_rate", 0.0))
        validity = result.score
        score = 0.5 * completeness + 0.3 * consistency + 0.2 * validity
        critical = sum(e.severity == Severity.CRITICAL for e in result.errors)

        if critical:
            alerts.append(SystemAlert(
                "critical", COMPONENT.value,
                f"{critical} critical data issues: {', '.join(result.error_codes())}",
                ["Re-ingest the season's games and box scores"],
            ))
        elif completeness < self.settings.data_quality_completeness:
            alerts.append(SystemAlert(
                "warning", ValidationComponent.DATA_PIPELINE.value,
                f"Data completeness {completeness:.1f}% below {self.settings.data_quality_completeness}%",
                list(result.recommendations),
            ))
        return DataQualityStatus(
            score=score,
            status=health_status(score),
            completeness=completeness,
            consistency=consistency,
            validity=validity,
            issue_count=len(result.errors) + len(result.warnings),
            critical_issues=critical,
        )

    def model_health(
        self,
        season: int,
        profiles: dict[str, TeamEfficiencyProfile],
        alerts: list,
        regression_audit: Optional[RegressionAuditResult] = None,
    ) -> ModelHealthStatus:
        s = self.settings
        analysis = self.store.latest_analysis(season)
        if analysis is not None:
            fit = analysis.overall_r_squared
            metrics = analysis.metric_results
            significance = 100.0 * len(analysis.significant_metrics) / len(metrics) if metrics else 0.0
        else:
            fit, significance = 0.0, 0.0
            alerts.append(SystemAlert(
                "warning", ValidationComponent.REGRESSION_ANALYSIS.value,
                f"No regression analysis for {season}",
                ["Run regression analysis once enough games are final"],
            ))

        played = [p.convergence_score for p in profiles.values() if p.games_played]
        convergence = 100.0 * float(np.mean(played)) if played else 0.0

        weights = self.weight_manager.get_current_weights(season)
        weight_errors = self.weight_manager.validate_weight_values(weights.as_dict())
        history = self.weight_manager.weight_history(season)
        if history:
            _, change = largest_relative_change(history[-1].previous_weights, history[-1].new_weights)
            stability = 100.0 * (1.0 - min(change, 1.0))
        else:
            stability = 100.0 if weights.source != "baseline" else 70.0

        fit_score = min(100.0, 100.0 * fit / GOOD_FIT_R_SQUARED)
        score = 0.4 * fit_score + 0.2 * significance + 0.2 * convergence + 0.2 * stability
        if weight_errors:
            score = max(0.0, score - 30)
            alerts.append(SystemAlert(
                "critical", ValidationComponent.WEIGHT_CALCULATION.value,
                f"Current weights invalid: {'; '.join(weight_errors)}",
                ["Reset weights to baseline or re-derive from regression"],
            ))
        if analysis is not None and fit < s.r_squared_threshold:
            alerts.append(SystemAlert(
                "warning", ValidationComponent.REGRESSION_ANALYSIS.value,
                f"Weak regression fit (R² = {fit:.3f})",
                ["Collect more games before re-deriving weights"],
            ))
        if regression_audit is not None and not regression_audit.is_valid:
            score = max(0.0, score - AUDIT_PENALTY)
            alerts.append(SystemAlert(
                "critical" if regression_audit.result.has_critical else "warning",
                ValidationComponent.REGRESSION_ANALYSIS.value,
                f"Regression audit failed: {', '.join(regression_audit.result.error_codes())}",
                list(regression_audit.result.recommendations),
            ))

        return ModelHealthStatus(
            score=score,
            status=health_status(score),
            regression_model_fit=fit,
            statistical_significance=significance,
            convergence_stability=convergence,
            weight_stability=stability,
            weights_valid=not weight_errors,
            last_successful_analysis=analysis.created_at if analysis is not None else None,
            regression_audit_score=regression_audit.score if regression_audit is not None else None,
        )

    def check(
        self,
        season: int,
        profiles: dict[str, TeamEfficiencyProfile],
        processing_failures: int = 0,
        accuracy: Optional[AccuracyResults] = None,
        regression_audit: Optional[RegressionAuditResult] = None,
    ) -> SystemHealth:
        """Assess system health for a season.

        Args:
            season: Season year
            profiles: Current season profiles keyed by team
            processing_failures: Units that failed in the last season run
            accuracy: Latest accuracy results, if any
            regression_audit: Audit of the latest regression analysis, if any

        Returns:
            SystemHealth
        """
        alerts: list[SystemAlert] = []
        data = self.data_quality(season, alerts)
        model = self.model_health(season, profiles, alerts, regression_audit)

        reliability = None
        if accuracy is not None and accuracy.games:
            reliability = accuracy_score(accuracy)
            score = 0.35 * data.score + 0.35 * model.score + 0.3 * reliability
        else:
            score = 0.5 * data.score + 0.5 * model.score

        if processing_failures:
            score -= min(MAX_FAILURE_PENALTY, FAILURE_PENALTY * processing_failures)
            alerts.append(SystemAlert(
                "warning", ValidationComponent.DATA_PIPELINE.value,
                f"{processing_failures} units failed during season processing",
                ["Inspect the run summary errors"],
            ))
        score = max(0.0, min(100.0, score))

        errors = [
            ValidationIssue("HEALTH_ALERT", a.message, Severity.CRITICAL, COMPONENT,
                            {"component": a.component})
            for a in alerts if a.level == "critical"
        ]
        warnings = [a.message for a in alerts if a.level == "warning"]
        validation = ValidationResult.build(
            COMPONENT, errors=errors, warnings=warnings,
            recommendations=[r for a in alerts for r in a.recommendations],
            metadata={"season": season, "health_score": score},
        )
        if self.validation_logger is not None:
            self.validation_logger.log_result(validation)

        health = SystemHealth(
            season=season,
            overall_health=health_status(score),
            health_score=score,
            data_quality=data,
            model_health=model,
            prediction_reliability=reliability,
            processing_failures=processing_failures,
            alerts=alerts,
            validation=validation,
        )
        logger.info(f"System health {season}: {health.overall_health} ({score:.1f})")
        return health
