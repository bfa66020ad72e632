"""Tests for auditing a regression analysis.

Tests:
1. A clean linear relationship audits valid with tested assumptions
2. Residual diagnostics catch heteroscedastic, skewed and curved data
3. Fit, significance and statistic-range problems become errors
4. Small samples, overfitting and implausible coefficients become warnings
5. Missing analyses and serialization
"""

import numpy as np
import pandas as pd
import pytest

from config.settings import Settings
from src.models.regression import (
    REGRESSION_METRICS,
    MetricRegressionResult,
    RegressionAnalysisResult,
    RegressionAnalyzer,
)
from src.validation.core import Severity, ValidationComponent, ValidationLogger
from src.validation.regression_auditor import RegressionAuditor, overfitting_risk


def _make_dataset(n=400, seed=11, driver=None, noise=None):
    """passing_offense drives points; every other metric is pure noise."""
    rng = np.random.default_rng(seed)
    data = {metric: rng.normal(0, 10, n) for metric in REGRESSION_METRICS}
    if driver is not None:
        data['passing_offense'] = driver(rng, n)
    x = data['passing_offense']
    data['points'] = 28 + 0.8 * x + (noise(rng, x) if noise else rng.normal(0, 4, n))
    return pd.DataFrame(data)


def _audit(data, settings=None):
    settings = settings or Settings()
    analysis = RegressionAnalyzer(settings).analyze(2024, data)
    return RegressionAuditor(settings).audit(analysis, data)


def _metric(name='passing_offense', coefficient=0.5, r_squared=0.4, p_value=0.001,
            interval=(0.3, 0.7), significant=True):
    return MetricRegressionResult(
        metric=name, coefficient=coefficient, intercept=20.0, r_squared=r_squared,
        p_value=p_value, std_error=0.1, confidence_interval=interval,
        calculated_weight=abs(coefficient) * 0.1, is_statistically_significant=significant,
    )


def _analysis(metrics=None, **overrides):
    values = dict(
        season=2024, sample_size=200, overall_r_squared=0.5, adjusted_r_squared=0.49,
        f_statistic=120.0, f_p_value=0.0001, residual_standard_error=5.0,
        metric_results=[_metric()] if metrics is None else metrics,
    )
    values.update(overrides)
    return RegressionAnalysisResult(**values)


# =============================================================================
# Residual diagnostics on fitted data
# =============================================================================

class TestResidualDiagnostics:
    """Assumption tests run on a refit of the analysis' model metrics."""

    def test_clean_relationship(self):
        audit = _audit(_make_dataset())
        assert audit.is_valid, audit.errors
        assert audit.checks['model_fit']
        assert audit.checks['significance']
        assert audit.checks['sample_size']
        assert audit.checks['coefficients']
        assert audit.overfitting_risk == 'low'
        assert set(audit.assumptions) == {'linearity', 'homoscedasticity', 'normality'}
        for test in audit.assumptions.values():
            assert 0.0 <= test.p_value <= 1.0

    def test_heteroscedastic_residuals(self):
        data = _make_dataset(
            driver=lambda rng, n: rng.uniform(1, 20, n),
            noise=lambda rng, x: rng.normal(0, 0.3 * x),
        )
        audit = _audit(data)
        assert not audit.assumptions['homoscedasticity'].passed
        assert not audit.checks['assumptions']
        assert any(w.startswith('Homoscedasticity assumption violated') for w in audit.warnings)

    def test_skewed_residuals(self):
        data = _make_dataset(noise=lambda rng, x: rng.exponential(5, len(x)) - 5)
        audit = _audit(data)
        assert not audit.assumptions['normality'].passed
        assert any(w.startswith('Normality assumption violated') for w in audit.warnings)
        assert 'Residuals are not normal; p-values and intervals are approximate' in audit.result.recommendations

    def test_curved_relationship(self):
        rng = np.random.default_rng(5)
        data = pd.DataFrame({metric: rng.normal(0, 10, 400) for metric in REGRESSION_METRICS})
        data['passing_offense'] = rng.uniform(0, 20, 400)
        data['points'] = 10 + 0.1 * data['passing_offense'] ** 2 + rng.normal(0, 1, 400)
        audit = _audit(data)
        assert audit.checks['model_fit']
        assert not audit.assumptions['linearity'].passed

    def test_diagnostics_skipped_without_data(self):
        audit = RegressionAuditor(Settings()).audit(_analysis())
        assert audit.assumptions == {}
        assert audit.checks['assumptions']
        assert 'Residual diagnostics skipped: no dataset or no model metrics' in audit.warnings


# =============================================================================
# Errors
# =============================================================================

class TestAuditErrors:

    def test_low_model_fit(self):
        audit = RegressionAuditor(Settings()).audit(_analysis(overall_r_squared=0.1, adjusted_r_squared=0.09))
        assert not audit.is_valid
        assert audit.result.error_codes() == ['LOW_MODEL_FIT']
        assert audit.errors[0].severity == Severity.HIGH
        assert not audit.checks['model_fit']

    def test_insignificant_model_f_test(self):
        audit = RegressionAuditor(Settings()).audit(_analysis(f_p_value=0.2))
        assert 'LOW_MODEL_FIT' in audit.result.error_codes()

    def test_non_finite_fit_statistic(self):
        audit = RegressionAuditor(Settings()).audit(_analysis(f_statistic=float('nan')))
        assert audit.result.error_codes() == ['INVALID_FIT_STATISTIC']
        assert audit.result.has_critical

    def test_significance_flag_mismatch(self):
        """p=0.5 can never be significant at the default threshold."""
        metric = _metric(p_value=0.5, interval=(-0.2, 1.2), significant=True)
        audit = RegressionAuditor(Settings()).audit(_analysis(metrics=[metric]))
        assert 'SIGNIFICANCE_FLAG_MISMATCH' in audit.result.error_codes()
        assert not audit.checks['significance']

    def test_metric_p_value_out_of_range(self):
        metric = _metric(p_value=1.5, significant=False)
        audit = RegressionAuditor(Settings()).audit(_analysis(metrics=[metric]))
        assert 'INVALID_METRIC_STATISTIC' in audit.result.error_codes()
        assert audit.result.has_critical

    def test_no_significant_predictors(self):
        metric = _metric(r_squared=0.05, p_value=0.4, interval=(-0.2, 1.2), significant=False)
        audit = RegressionAuditor(Settings()).audit(_analysis(metrics=[metric]))
        assert 'NO_SIGNIFICANT_PREDICTORS' in audit.result.error_codes()
        assert (
            'No statistically significant predictors found; review data quality and variable selection'
            in audit.result.recommendations
        )


# =============================================================================
# Warnings
# =============================================================================

class TestAuditWarnings:

    def test_small_sample(self):
        metrics = [_metric(name) for name in REGRESSION_METRICS]
        audit = RegressionAuditor(Settings()).audit(_analysis(metrics=metrics, sample_size=60))
        assert audit.minimum_sample == 15 * len(REGRESSION_METRICS)
        assert not audit.checks['sample_size']
        assert f'Sample of 60 below recommended {audit.minimum_sample}' in audit.warnings
        assert audit.is_valid

    def test_significance_not_considered(self):
        metric = _metric(r_squared=0.05, p_value=0.4, interval=(-0.2, 1.2), significant=False)
        analysis = _analysis(metrics=[metric], sample_size=20, statistical_significance_considered=False)
        audit = RegressionAuditor(Settings()).audit(analysis)
        assert 'Sample of 20 below 30; statistical significance was not considered' in audit.warnings
        assert 'NO_SIGNIFICANT_PREDICTORS' not in audit.result.error_codes()

    def test_confidence_interval_contains_zero(self):
        metric = _metric(p_value=0.04, interval=(-0.1, 1.1))
        audit = RegressionAuditor(Settings()).audit(_analysis(metrics=[metric]))
        assert any('contains zero' in w for w in audit.warnings)

    @pytest.mark.parametrize('r_squared,adjusted,risk', [
        (0.5, 0.49, 'low'),
        (0.5, 0.40, 'medium'),
        (0.5, 0.30, 'high'),
    ])
    def test_overfitting_risk(self, r_squared, adjusted, risk):
        assert overfitting_risk(r_squared, adjusted) == risk

    def test_high_overfitting_warns(self):
        audit = RegressionAuditor(Settings()).audit(_analysis(overall_r_squared=0.5, adjusted_r_squared=0.3))
        assert audit.overfitting_risk == 'high'
        assert not audit.checks['predictive_power']
        assert any(w.startswith('High overfitting risk') for w in audit.warnings)

    def test_implausible_coefficient(self):
        metric = _metric(coefficient=150.0, interval=(140.0, 160.0))
        audit = RegressionAuditor(Settings()).audit(_analysis(metrics=[metric]))
        assert not audit.checks['coefficients']
        assert any('coefficient outside the plausible range' in w for w in audit.warnings)

    def test_multicollinearity_carried_over(self):
        analysis = _analysis(warnings=['Possible multicollinearity between passing_offense and scoring_efficiency'])
        audit = RegressionAuditor(Settings()).audit(analysis)
        assert analysis.warnings[0] in audit.warnings
        assert 'Remove or combine highly correlated predictors' in audit.result.recommendations

    def test_warnings_lower_score_only(self):
        clean = RegressionAuditor(Settings()).audit(_analysis())
        flagged = RegressionAuditor(Settings()).audit(_analysis(overall_r_squared=0.5, adjusted_r_squared=0.3))
        assert flagged.is_valid
        assert flagged.score == pytest.approx(clean.score - 2)


# =============================================================================
# Missing analyses and output
# =============================================================================

class TestAuditOutput:

    def test_missing_analysis(self):
        audit = RegressionAuditor(Settings()).missing(2024)
        assert not audit.is_valid
        assert audit.analysis_id is None
        assert audit.result.error_codes() == ['NO_ANALYSIS']

    def test_results_logged(self):
        validation_logger = ValidationLogger()
        RegressionAuditor(Settings(), validation_logger).audit(_analysis())
        assert len(validation_logger.history(ValidationComponent.REGRESSION_ANALYSIS)) == 1

    def test_validate_returns_component_result(self):
        result = RegressionAuditor(Settings()).validate(_analysis(overall_r_squared=0.1, adjusted_r_squared=0.09))
        assert result.component == ValidationComponent.REGRESSION_ANALYSIS
        assert result.error_codes() == ['LOW_MODEL_FIT']

    def test_to_dict(self):
        analysis = _analysis()
        record = RegressionAuditor(Settings()).audit(analysis, None).to_dict()
        assert record['component'] == 'regression_analysis'
        assert record['analysis_id'] == analysis.analysis_id
        assert record['checks']['model_fit'] is True
        assert record['overfitting_risk'] == 'low'
