"""Human-readable analysis reports.

Turns sample-game analyses, accuracy results and system health into an
IntuitiveAnalysisReport: confidence scores per area, worked examples of
successful and failed predictions, and a guide for reading confidence values.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional

import numpy as np

from src.validation.accuracy import AccuracyResults
from src.validation.health import SystemHealth, accuracy_score
from src.validation.sample_games import GameAnalysisResult

logger = logging.getLogger(__name__)

# (low, high, label, expected winner accuracy, typical score error, recommended use)
CONFIDENCE_BANDS = (
    (90, 100, "very_high", "85-95%", "±8 points", "Suitable for high-stakes decisions and public predictions"),
    (75, 89, "high", "75-85%", "±12 points", "Reliable for most decision-making purposes"),
    (60, 74, "moderate", "65-75%", "±16 points", "Use with caution and additional analysis"),
    (45, 59, "low", "55-65%", "±20 points", "Informational only, not suitable for important decisions"),
    (0, 44, "very_low", "45-55%", "±25+ points", "Not recommended for any decision-making"),
)

MAX_SUCCESSFUL_EXAMPLES = 3
MAX_FAILED_EXAMPLES = 3
MAX_INSIGHTFUL_EXAMPLES = 2


def confidence_label(score: float) -> str:
    if score >= 90:
        return "very_high"
    if score >= 75:
        return "high"
    if score >= 60:
        return "moderate"
    if score >= 45:
        return "low"
    return "very_low"


@dataclass
class ConfidenceMetric:
    score: float
    level: str
    explanation: str
    supporting_evidence: list = field(default_factory=list)
    concerns: list = field(default_factory=list)


@dataclass
class PredictionExample:
    kind: str  # successful, failed, insightful
    game_id: str
    matchup: str
    predicted: str
    actual: str
    confidence: float
    quality: str
    key_factors: list = field(default_factory=list)
    explanation: str = ""
    confidence_justification: str = ""


@dataclass
class ConfidenceBand:
    low: int
    high: int
    label: str
    expected_accuracy: str
    typical_error: str
    recommended_use: str
    observed_games: int = 0
    observed_accuracy: Optional[float] = None


@dataclass
class ExecutiveSummary:
    overall_system_health: str
    key_findings: list
    prediction_accuracy_summary: str
    confidence_in_system: float
    recommendations: list = field(default_factory=list)


@dataclass
class IntuitiveAnalysisReport:
    """Everything an operator needs to judge whether predictions can be trusted."""

    season: int
    executive_summary: ExecutiveSummary
    data_quality_confidence: ConfidenceMetric
    model_confidence: ConfidenceMetric
    accuracy_confidence: ConfidenceMetric
    overall_confidence: ConfidenceMetric
    successful_examples: list = field(default_factory=list)
    failed_examples: list = field(default_factory=list)
    insightful_examples: list = field(default_factory=list)
    confidence_guide: list = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        result = asdict(self)
        result["generated_at"] = self.generated_at.isoformat()
        return result


class AnalysisReporter:
    """Builds IntuitiveAnalysisReports."""

    def data_quality_confidence(self, health: SystemHealth) -> ConfidenceMetric:
        dq = health.data_quality
        evidence, concerns = [], []
        if dq.completeness >= 90:
            evidence.append(f"Excellent data completeness ({dq.completeness:.1f}%)")
        elif dq.completeness >= 80:
            evidence.append(f"Good data completeness ({dq.completeness:.1f}%)")
        else:
            concerns.append(f"Data completeness below optimal ({dq.completeness:.1f}%)")
        if dq.consistency >= 85:
            evidence.append(f"High data consistency ({dq.consistency:.1f}%)")
        else:
            concerns.append(f"Data consistency issues detected ({dq.consistency:.1f}%)")
        if dq.critical_issues:
            concerns.append(f"{dq.critical_issues} critical data quality issues require attention")
        else:
            evidence.append("No critical data quality issues")
        return ConfidenceMetric(
            score=dq.score,
            level=confidence_label(dq.score),
            explanation=f"Data quality scored {dq.score:.0f}/100 from completeness, consistency and validity",
            supporting_evidence=evidence,
            concerns=concerns,
        )

    def model_confidence(self, health: SystemHealth) -> ConfidenceMetric:
        mh = health.model_health
        evidence, concerns = [], []
        fit = mh.regression_model_fit
        if fit >= 0.6:
            evidence.append(f"Strong regression model fit (R² = {fit:.3f})")
        elif fit >= 0.3:
            evidence.append(f"Moderate regression model fit (R² = {fit:.3f})")
        else:
            concerns.append(f"Weak regression model fit (R² = {fit:.3f})")
        if mh.statistical_significance >= 80:
            evidence.append("High statistical significance in model predictors")
        else:
            concerns.append("Limited statistical significance in model predictors")
        if mh.weight_stability >= 85:
            evidence.append("Stable weight calculations over time")
        else:
            concerns.append("Weight calculations show instability")
        if not mh.weights_valid:
            concerns.append("Current weights fail bounds or sum validation")
        if mh.regression_audit_score is not None and mh.regression_audit_score < 70:
            concerns.append(f"Regression audit flagged issues (score {mh.regression_audit_score:.0f})")

        if mh.score >= 85:
            explanation = "High confidence in statistical models. Strong predictive power and stable performance."
        elif mh.score >= 70:
            explanation = "Moderate confidence in statistical models. Generally reliable with some areas for improvement."
        else:
            explanation = "Low confidence in statistical models. Significant improvements needed for reliable predictions."
        return ConfidenceMetric(mh.score, confidence_label(mh.score), explanation, evidence, concerns)

    def accuracy_confidence(self, accuracy: AccuracyResults) -> ConfidenceMetric:
        score = accuracy_score(accuracy) if accuracy.games else 0.0
        evidence, concerns = [], []
        win = accuracy.winner_accuracy
        if win >= 70:
            evidence.append(f"Strong win prediction accuracy ({win:.1f}%)")
        elif win >= 60:
            evidence.append(f"Moderate win prediction accuracy ({win:.1f}%)")
        else:
            concerns.append(f"Win prediction accuracy below expectations ({win:.1f}%)")
        if accuracy.brier_score <= 0.2:
            evidence.append(f"Excellent probability calibration (Brier score: {accuracy.brier_score:.3f})")
        elif accuracy.brier_score <= 0.25:
            evidence.append(f"Good probability calibration (Brier score: {accuracy.brier_score:.3f})")
        else:
            concerns.append(f"Probability calibration needs improvement (Brier score: {accuracy.brier_score:.3f})")
        if accuracy.calibration_score >= 80:
            evidence.append(f"Well-calibrated confidence levels ({accuracy.calibration_score:.1f}%)")
        else:
            concerns.append(f"Confidence calibration issues detected ({accuracy.calibration_score:.1f}%)")

        if score >= 80:
            explanation = "High confidence in prediction accuracy. Consistently reliable predictions with good calibration."
        elif score >= 65:
            explanation = "Moderate confidence in prediction accuracy. Generally reliable with room for improvement."
        else:
            explanation = "Low confidence in prediction accuracy. Significant improvements needed for reliable forecasting."
        return ConfidenceMetric(score, confidence_label(score), explanation, evidence, concerns)

    def _justify(self, result: GameAnalysisResult) -> str:
        factors = []
        n = len(result.key_factors)
        if n >= 3:
            factors.append(f"{n} significant matchup advantages")
        elif n >= 1:
            factors.append(f"{n} key matchup factor{'s' if n > 1 else ''}")
        if result.model_r_squared > 0.6:
            factors.append("strong statistical model (R² > 0.6)")
        elif result.model_r_squared > 0.3:
            factors.append("moderate statistical model")
        if result.boundary_adjusted:
            factors.append("boundary adjustments applied")
        if not factors:
            factors.append("baseline scoring only")
        return f"{result.confidence:.0f}% confidence based on " + ", ".join(factors)

    def _example(self, result: GameAnalysisResult, kind: str) -> PredictionExample:
        if kind == "successful":
            reasons = []
            if result.winner_correct:
                reasons.append("the correct winner was identified")
            if result.total_error <= 14:
                reasons.append("score predictions were highly accurate")
            if len(result.key_factors) >= 2:
                reasons.append("multiple key advantages were correctly identified")
            explanation = "This prediction succeeded because " + (", ".join(reasons) or "errors stayed small") + "."
        elif kind == "failed":
            reasons = []
            if not result.winner_correct:
                reasons.append("the wrong winner was predicted")
            if result.total_error > 21:
                reasons.append("score predictions were significantly inaccurate")
            if result.error_type != "statistical_noise":
                reasons.append(f"the error was classified as {result.error_type.replace('_', ' ')}")
            explanation = "This prediction failed because " + (", ".join(reasons) or "errors were large") + "."
        else:
            explanation = result.explanation

        return PredictionExample(
            kind=kind,
            game_id=result.game_id,
            matchup=f"{result.away_team} @ {result.home_team}",
            predicted=f"{result.home_team} {result.predicted_home:.0f}, {result.away_team} {result.predicted_away:.0f}",
            actual=f"{result.home_team} {result.actual_home:.0f}, {result.away_team} {result.actual_away:.0f}",
            confidence=result.confidence,
            quality=result.quality,
            key_factors=list(result.key_factors[:3]),
            explanation=explanation,
            confidence_justification=self._justify(result),
        )

    def examples(self, analyses: list[GameAnalysisResult]) -> tuple[list, list, list]:
        """Successful (excellent/good), failed (poor), and insightful examples."""
        successful = [r for r in analyses if r.quality in ("excellent", "good")]
        failed = [r for r in analyses if r.quality == "poor"]
        insightful = [r for r in analyses if len(r.key_factors) >= 2 and r.confidence >= 70]
        return (
            [self._example(r, "successful") for r in successful[:MAX_SUCCESSFUL_EXAMPLES]],
            [self._example(r, "failed") for r in failed[:MAX_FAILED_EXAMPLES]],
            [self._example(r, "insightful") for r in insightful[:MAX_INSIGHTFUL_EXAMPLES]],
        )

    def confidence_guide(self, analyses: list[GameAnalysisResult]) -> list[ConfidenceBand]:
        """The five interpretation bands with observed accuracy where games fall in them."""
        guide = []
        for low, high, label, expected, error, use in CONFIDENCE_BANDS:
            in_band = [r for r in analyses if low <= round(r.confidence) <= high]
            observed = (
                100.0 * sum(r.winner_correct for r in in_band) / len(in_band) if in_band else None
            )
            guide.append(ConfidenceBand(low, high, label, expected, error, use, len(in_band), observed))
        return guide

    def executive_summary(
        self,
        analyses: list[GameAnalysisResult],
        accuracy: AccuracyResults,
        health: SystemHealth,
    ) -> ExecutiveSummary:
        n = len(analyses)
        winner_accuracy = 100.0 * sum(r.winner_correct for r in analyses) / n if n else 0.0
        avg_error = float(np.mean([r.total_error for r in analyses])) if n else 0.0

        findings = []
        if health.overall_health in ("excellent", "good"):
            findings.append(
                f"System is operating at {health.overall_health} health with "
                f"{health.health_score:.0f}% overall score"
            )
        else:
            findings.append(
                f"System health needs attention ({health.overall_health}, {health.health_score:.0f}% score)"
            )
        if winner_accuracy >= 70:
            findings.append(f"Strong prediction accuracy: {winner_accuracy:.1f}% of game winners predicted correctly")
        elif winner_accuracy >= 60:
            findings.append(f"Moderate prediction accuracy: {winner_accuracy:.1f}% of game winners predicted correctly")
        else:
            findings.append(f"Prediction accuracy needs improvement: {winner_accuracy:.1f}% of game winners predicted correctly")
        if avg_error <= 14:
            findings.append(f"Excellent score prediction accuracy with average error of {avg_error:.1f} points")
        elif avg_error <= 21:
            findings.append(f"Good score prediction accuracy with average error of {avg_error:.1f} points")
        else:
            findings.append(f"Score prediction accuracy could be improved (average error: {avg_error:.1f} points)")
        dq = health.data_quality.score
        if dq >= 85:
            findings.append(f"High data quality ({dq:.0f}%) supports reliable predictions")
        elif dq >= 70:
            findings.append(f"Adequate data quality ({dq:.0f}%) with room for improvement")
        else:
            findings.append(f"Data quality concerns ({dq:.0f}%) may impact prediction reliability")

        confidence = (
            min(winner_accuracy, 100) * 0.4
            + health.health_score * 0.3
            + dq * 0.2
            + min(100 - avg_error * 3, 100) * 0.1
        )

        recommendations = []
        for alert in health.alerts:
            if alert.level == "critical":
                recommendations.extend(alert.recommendations)
        if accuracy.validation is not None:
            recommendations.extend(accuracy.validation.recommendations)
        error_types = Counter(r.error_type for r in analyses if r.quality == "poor")
        if error_types:
            common, count = error_types.most_common(1)[0]
            recommendations.append(
                f"Investigate {common.replace('_', ' ')}: behind {count} poor predictions"
            )

        return ExecutiveSummary(
            overall_system_health=health.overall_health,
            key_findings=findings,
            prediction_accuracy_summary=(
                f"The system correctly predicted {winner_accuracy:.1f}% of game winners with an "
                f"average score error of {avg_error:.1f} points across {n} analyzed games."
            ),
            confidence_in_system=round(confidence),
            recommendations=list(dict.fromkeys(recommendations))[:5],
        )

    def generate(
        self,
        season: int,
        analyses: list[GameAnalysisResult],
        accuracy: AccuracyResults,
        health: SystemHealth,
    ) -> IntuitiveAnalysisReport:
        """Build the full report.

        Args:
            season: Season year
            analyses: Sample game analyses
            accuracy: Accuracy results for the same games
            health: Current system health

        Returns:
            IntuitiveAnalysisReport
        """
        data_conf = self.data_quality_confidence(health)
        model_conf = self.model_confidence(health)
        acc_conf = self.accuracy_confidence(accuracy)
        overall_score = round(data_conf.score * 0.3 + model_conf.score * 0.4 + acc_conf.score * 0.3)
        overall = ConfidenceMetric(
            score=overall_score,
            level=confidence_label(overall_score),
            explanation=(
                f"Overall system confidence based on data quality ({data_conf.score:.0f}%), "
                f"model performance ({model_conf.score:.0f}%), and prediction accuracy "
                f"({acc_conf.score:.0f}%)"
            ),
            supporting_evidence=data_conf.supporting_evidence + model_conf.supporting_evidence
            + acc_conf.supporting_evidence,
            concerns=data_conf.concerns + model_conf.concerns + acc_conf.concerns,
        )
        successful, failed, insightful = self.examples(analyses)

        report = IntuitiveAnalysisReport(
            season=season,
            executive_summary=self.executive_summary(analyses, accuracy, health),
            data_quality_confidence=data_conf,
            model_confidence=model_conf,
            accuracy_confidence=acc_conf,
            overall_confidence=overall,
            successful_examples=successful,
            failed_examples=failed,
            insightful_examples=insightful,
            confidence_guide=self.confidence_guide(analyses),
        )
        logger.info(f"Generated analysis report for {season}: overall confidence {overall_score} ({overall.level})")
        return report
