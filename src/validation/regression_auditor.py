"""Regression analysis auditing.

Audits a stored RegressionAnalysisResult, optionally against the dataset it
was fitted on:

1. Model fit: finite fit statistics, R² and F p-value against thresholds.
2. Significance: per-metric statistics in range, significance flags that
   match the configured thresholds, confidence intervals consistent with
   p-values.
3. Sample size: at least the configured minimum and 15 rows per predictor.
4. Residual assumptions (dataset required): linearity (residuals vs fitted²),
   homoscedasticity (Breusch-Pagan), normality (Shapiro-Wilk).
5. Predictive power: overfitting risk from the R² / adjusted R² gap.
6. Coefficients: magnitudes within a plausible range.
"""

import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.linear_model import LinearRegression

from config.settings import Settings
from src.models.regression import RegressionAnalysisResult
from src.validation.core import (
    Severity,
    ValidationComponent,
    ValidationIssue,
    ValidationLogger,
    ValidationResult,
)

logger = logging.getLogger(__name__)

COMPONENT = ValidationComponent.REGRESSION_ANALYSIS

ASSUMPTION_ALPHA = 0.05
MODEL_F_ALPHA = 0.05
OBSERVATIONS_PER_PREDICTOR = 15
MAX_SINGLE_R_SQUARED = 0.95
MAX_REASONABLE_COEFFICIENT = 100.0


def _issue(code: str, message: str, severity: Severity, **details) -> ValidationIssue:
    return ValidationIssue(code, message, severity, COMPONENT, details)


def overfitting_risk(r_squared: float, adjusted_r_squared: float) -> str:
    gap = r_squared - adjusted_r_squared
    if gap < 0.05:
        return "low"
    if gap < 0.15:
        return "medium"
    return "high"


@dataclass
class AssumptionTest:
    name: str
    passed: bool
    statistic: Optional[float] = None
    p_value: Optional[float] = None
    detail: str = ""


@dataclass
class RegressionAuditResult:
    """Outcome of auditing one regression analysis."""

    season: int
    analysis_id: Optional[str]
    result: ValidationResult
    checks: dict = field(default_factory=dict)  # check name -> passed
    assumptions: dict = field(default_factory=dict)  # test name -> AssumptionTest
    minimum_sample: int = 0
    overfitting_risk: str = "low"

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
            "analysis_id": self.analysis_id,
            "checks": dict(self.checks),
            "assumptions": {k: asdict(v) for k, v in self.assumptions.items()},
            "minimum_sample": self.minimum_sample,
            "overfitting_risk": self.overfitting_risk,
            **self.result.to_dict(),
        }


class RegressionAuditor:
    """Checks a regression analysis for fit, significance and model assumptions."""

    def __init__(self, settings: Settings, validation_logger: Optional[ValidationLogger] = None):
        self.settings = settings
        self.validation_logger = validation_logger

    def check_model_fit(self, analysis: RegressionAnalysisResult, errors: list) -> bool:
        values = {
            "overall_r_squared": analysis.overall_r_squared,
            "adjusted_r_squared": analysis.adjusted_r_squared,
            "f_statistic": analysis.f_statistic,
            "f_p_value": analysis.f_p_value,
            "residual_standard_error": analysis.residual_standard_error,
        }
        bad = [k for k, v in values.items() if not math.isfinite(v)]
        if not 0.0 <= analysis.overall_r_squared <= 1.0:
            bad.append("overall_r_squared")
        if not 0.0 <= analysis.f_p_value <= 1.0:
            bad.append("f_p_value")
        if analysis.f_statistic < 0 or analysis.residual_standard_error < 0:
            bad.append("f_statistic/residual_standard_error")
        if bad:
            errors.append(_issue(
                "INVALID_FIT_STATISTIC",
                f"Invalid model fit statistics: {', '.join(sorted(set(bad)))}",
                Severity.CRITICAL, fields=sorted(set(bad)),
            ))
            return False

        threshold = self.settings.r_squared_threshold
        if analysis.overall_r_squared < threshold or analysis.f_p_value >= MODEL_F_ALPHA:
            errors.append(_issue(
                "LOW_MODEL_FIT",
                f"Model fit R² = {analysis.overall_r_squared:.3f} (F p-value "
                f"{analysis.f_p_value:.3f}) below R² {threshold} / p {MODEL_F_ALPHA}",
                Severity.HIGH, r_squared=analysis.overall_r_squared, f_p_value=analysis.f_p_value,
            ))
            return False
        return True

    def check_significance(self, analysis: RegressionAnalysisResult, errors: list, warnings: list) -> bool:
        s = self.settings
        passed = True
        for r in analysis.metric_results:
            lower, upper = r.confidence_interval
            finite = all(math.isfinite(v) for v in (r.coefficient, r.r_squared, r.p_value, lower, upper))
            if not finite or not 0.0 <= r.p_value <= 1.0 or not 0.0 <= r.r_squared <= 1.0:
                errors.append(_issue(
                    "INVALID_METRIC_STATISTIC",
                    f"{r.metric}: p-value {r.p_value}, R² {r.r_squared} or interval out of range",
                    Severity.CRITICAL, metric=r.metric,
                ))
                passed = False
                continue

            expected = r.p_value < s.significance_threshold and r.r_squared > s.r_squared_threshold
            if r.is_statistically_significant != expected:
                errors.append(_issue(
                    "SIGNIFICANCE_FLAG_MISMATCH",
                    f"{r.metric} flagged {'significant' if r.is_statistically_significant else 'not significant'} "
                    f"but p={r.p_value:.4f}, R²={r.r_squared:.3f} against p<{s.significance_threshold}, "
                    f"R²>{s.r_squared_threshold}",
                    Severity.HIGH, metric=r.metric,
                ))
                passed = False

            if r.p_value <= 0.05 and lower <= 0.0 <= upper:
                warnings.append(
                    f"{r.metric}: p-value {r.p_value:.4f} suggests significance but the "
                    f"confidence interval [{lower:.3f}, {upper:.3f}] contains zero"
                )
            if r.r_squared > MAX_SINGLE_R_SQUARED:
                warnings.append(
                    f"{r.metric}: R² {r.r_squared:.3f} is suspiciously high for a single predictor"
                )

        if not analysis.statistical_significance_considered:
            warnings.append(
                f"Sample of {analysis.sample_size} below {s.min_regression_sample}; "
                f"statistical significance was not considered"
            )
        elif analysis.metric_results and not analysis.significant_metrics:
            errors.append(_issue(
                "NO_SIGNIFICANT_PREDICTORS",
                f"No metric met p<{s.significance_threshold} and R²>{s.r_squared_threshold}",
                Severity.MEDIUM,
            ))
            passed = False
        return passed

    def minimum_sample(self, analysis: RegressionAnalysisResult) -> int:
        return max(
            self.settings.min_regression_sample,
            OBSERVATIONS_PER_PREDICTOR * len(analysis.metric_results),
        )

    def model_metrics(self, analysis: RegressionAnalysisResult) -> list[str]:
        """Metrics the analysis used in its multiple regression."""
        if analysis.statistical_significance_considered:
            return list(analysis.significant_metrics)
        return [r.metric for r in analysis.metric_results]

    def residuals(
        self,
        analysis: RegressionAnalysisResult,
        data: Optional[pd.DataFrame],
    ) -> Optional[tuple[np.ndarray, np.ndarray, np.ndarray]]:
        """Refit the multiple regression; returns (X, fitted, residuals) or None."""
        if data is None or data.empty or "points" not in data.columns:
            return None
        metrics = [m for m in self.model_metrics(analysis) if m in data.columns]
        if not metrics or len(data) <= len(metrics) + 1:
            return None
        X = data[metrics].to_numpy(dtype=float)
        y = data["points"].to_numpy(dtype=float)
        fitted = LinearRegression().fit(X, y).predict(X)
        return X, fitted, y - fitted

    def test_linearity(self, fitted: np.ndarray, resid: np.ndarray) -> AssumptionTest:
        """Residuals should carry no curvature left over in the fitted values."""
        curvature = fitted ** 2
        if len(resid) < 4 or np.ptp(curvature) == 0 or np.ptp(resid) == 0:
            return AssumptionTest("linearity", True, detail="not testable")
        fit = stats.linregress(curvature, resid)
        p = float(fit.pvalue) if math.isfinite(fit.pvalue) else 1.0
        return AssumptionTest(
            "linearity", p >= ASSUMPTION_ALPHA, float(fit.rvalue), p,
            "residuals vs squared fitted values",
        )

    def test_homoscedasticity(self, X: np.ndarray, resid: np.ndarray) -> AssumptionTest:
        """Breusch-Pagan: n·R² of squared residuals regressed on the predictors."""
        squared = resid ** 2
        n, k = X.shape
        if n <= k + 1 or np.ptp(squared) == 0:
            return AssumptionTest("homoscedasticity", True, detail="not testable")
        aux_r_squared = max(0.0, float(LinearRegression().fit(X, squared).score(X, squared)))
        lm = n * aux_r_squared
        p = float(stats.chi2.sf(lm, k))
        return AssumptionTest("homoscedasticity", p >= ASSUMPTION_ALPHA, lm, p, "Breusch-Pagan LM")

    def test_normality(self, resid: np.ndarray) -> AssumptionTest:
        if len(resid) < 3 or np.ptp(resid) == 0:
            return AssumptionTest("normality", True, detail="not testable")
        statistic, p = stats.shapiro(resid)
        return AssumptionTest("normality", float(p) >= ASSUMPTION_ALPHA, float(statistic), float(p), "Shapiro-Wilk")

    def check_assumptions(
        self,
        analysis: RegressionAnalysisResult,
        data: Optional[pd.DataFrame],
        warnings: list,
        recommendations: list,
    ) -> tuple[bool, dict]:
        fitted = self.residuals(analysis, data)
        if fitted is None:
            warnings.append("Residual diagnostics skipped: no dataset or no model metrics")
            return True, {}

        X, predictions, resid = fitted
        tests = {
            t.name: t for t in (
                self.test_linearity(predictions, resid),
                self.test_homoscedasticity(X, resid),
                self.test_normality(resid),
            )
        }
        advice = {
            "linearity": "Consider transforming predictors; residuals show curvature",
            "homoscedasticity": "Residual variance changes with the predictors; treat intervals with caution",
            "normality": "Residuals are not normal; p-values and intervals are approximate",
        }
        for name, test in tests.items():
            if not test.passed:
                warnings.append(f"{name.capitalize()} assumption violated (p = {test.p_value:.4f})")
                recommendations.append(advice[name])
        return all(t.passed for t in tests.values()), tests

    def audit(
        self,
        analysis: RegressionAnalysisResult,
        data: Optional[pd.DataFrame] = None,
    ) -> RegressionAuditResult:
        """Audit a regression analysis.

        Args:
            analysis: Stored analysis to audit
            data: Dataset from ``RegressionAnalyzer.build_dataset`` for residual
                diagnostics (skipped if None)

        Returns:
            RegressionAuditResult wrapping a regression_analysis ValidationResult
        """
        errors, warnings, recommendations = [], [], []

        fit_ok = self.check_model_fit(analysis, errors)
        significance_ok = self.check_significance(analysis, errors, warnings)

        minimum = self.minimum_sample(analysis)
        sample_ok = analysis.sample_size >= minimum
        if not sample_ok:
            warnings.append(f"Sample of {analysis.sample_size} below recommended {minimum}")
            recommendations.append(
                f"Increase sample size to at least {minimum} observations for reliable results"
            )

        assumptions_ok, tests = self.check_assumptions(analysis, data, warnings, recommendations)

        risk = overfitting_risk(analysis.overall_r_squared, analysis.adjusted_r_squared)
        if risk == "high":
            warnings.append(
                f"High overfitting risk: R² {analysis.overall_r_squared:.3f} vs adjusted "
                f"{analysis.adjusted_r_squared:.3f}"
            )

        unreasonable = [
            r.metric for r in analysis.metric_results
            if math.isfinite(r.coefficient) and abs(r.coefficient) >= MAX_REASONABLE_COEFFICIENT
        ]
        for metric in unreasonable:
            warnings.append(f"{metric}: coefficient outside the plausible range (|b| < {MAX_REASONABLE_COEFFICIENT:.0f})")

        if not fit_ok:
            recommendations.append(
                "Consider adding more predictive variables or transforming existing ones to improve model fit"
            )
        if not analysis.significant_metrics:
            recommendations.append(
                "No statistically significant predictors found; review data quality and variable selection"
            )
        for warning in analysis.warnings:
            if warning.startswith("Possible multicollinearity"):
                warnings.append(warning)
                recommendations.append("Remove or combine highly correlated predictors")
                break

        result = ValidationResult.build(
            COMPONENT,
            errors=errors,
            warnings=warnings,
            recommendations=list(dict.fromkeys(recommendations)),
            metadata={
                "season": analysis.season,
                "analysis_id": analysis.analysis_id,
                "sample_size": analysis.sample_size,
                "r_squared": analysis.overall_r_squared,
            },
        )
        if self.validation_logger is not None:
            self.validation_logger.log_result(result)

        audit = RegressionAuditResult(
            season=analysis.season,
            analysis_id=analysis.analysis_id,
            result=result,
            checks={
                "model_fit": fit_ok,
                "significance": significance_ok,
                "sample_size": sample_ok,
                "assumptions": assumptions_ok,
                "predictive_power": risk != "high",
                "coefficients": not unreasonable,
            },
            assumptions=tests,
            minimum_sample=minimum,
            overfitting_risk=risk,
        )
        logger.info(
            f"Regression audit {analysis.season} ({analysis.analysis_id}): "
            f"{'valid' if audit.is_valid else 'invalid'}, score {audit.score:.0f}"
        )
        return audit

    def validate(
        self,
        analysis: RegressionAnalysisResult,
        data: Optional[pd.DataFrame] = None,
    ) -> ValidationResult:
        return self.audit(analysis, data).result

    def missing(self, season: int) -> RegressionAuditResult:
        """Audit result for a season with no stored analysis."""
        result = ValidationResult.build(
            COMPONENT,
            errors=[_issue("NO_ANALYSIS", f"No regression analysis on record for {season}", Severity.HIGH)],
            recommendations=["Run regression analysis once enough games are final"],
            metadata={"season": season},
        )
        if self.validation_logger is not None:
            self.validation_logger.log_result(result)
        return RegressionAuditResult(season=season, analysis_id=None, result=result)
