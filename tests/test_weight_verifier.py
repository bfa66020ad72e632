"""Tests for WeightVerifier checks: regression consistency, bounds, replay, audit trail."""

from datetime import timedelta

import pytest

from config.settings import Settings
from src.data.store import SQLiteStore
from src.models.regression import MetricRegressionResult, RegressionAnalysisResult
from src.predictions.boundary import BoundaryConfig, BoundaryValidator
from src.predictions.engine import PredictionEngine
from src.validation.core import Severity, ValidationLogger
from src.validation.weight_verifier import WeightVerifier
from src.weights.manager import BASELINE_WEIGHTS, PredictionWeights, WeightChangeEntry, WeightManager


REASON = 'Manual adjustment after reviewing week 6 results against closing lines for all games'


def _metric(name, coefficient, r_squared=0.5, p_value=0.01):
    return MetricRegressionResult(
        metric=name, coefficient=coefficient, intercept=28.0, r_squared=r_squared,
        p_value=p_value, std_error=0.1, confidence_interval=(coefficient - 0.2, coefficient + 0.2),
        calculated_weight=abs(coefficient) * 0.1, is_statistically_significant=True,
    )


def _analysis(sample_size=120, considered=True, r_squared=0.45):
    return RegressionAnalysisResult(
        season=2024,
        sample_size=sample_size,
        overall_r_squared=r_squared,
        metric_results=[_metric('passing_offense', 2.0), _metric('turnover_margin', 6.0)],
        statistical_significance_considered=considered,
    )


def _setup(settings=None):
    settings = settings or Settings()
    store = SQLiteStore()
    manager = WeightManager(settings, store)
    engine = PredictionEngine(settings, BoundaryValidator(BoundaryConfig()))
    verifier = WeightVerifier(settings, manager, store, engine, ValidationLogger())
    return verifier, manager, store


def _shifted(delta=0.02):
    values = dict(BASELINE_WEIGHTS)
    values['passing_offense'] += delta
    values['rushing_offense'] -= delta
    return values


# =============================================================================
# Regression consistency
# =============================================================================

class TestRegressionConsistency:

    def test_derived_weights_verify(self):
        verifier, manager, store = _setup()
        analysis = _analysis()
        store.save_analysis(analysis)
        manager.derive_weights_from_regression(analysis)

        result = verifier.verify(2024)
        assert result.is_valid, result.errors
        assert result.checks == {
            'regression_consistency': True, 'bounds': True,
            'formula_replay': True, 'audit_trail': True,
        }
        assert result.derived_weights['turnover_margin'] == pytest.approx(0.75)

    def test_small_sample_warning(self):
        verifier, manager, store = _setup()
        analysis = _analysis(sample_size=5, considered=False)
        store.save_analysis(analysis)
        manager.derive_weights_from_regression(analysis)

        result = verifier.verify(2024)
        assert any('statistical significance was not considered' in w for w in result.warnings)
        assert result.is_valid

    def test_stored_weights_differ_from_analysis(self):
        verifier, manager, store = _setup()
        analysis = _analysis()
        store.save_analysis(analysis)
        manager.derive_weights_from_regression(analysis)

        newer = RegressionAnalysisResult(
            season=2024, sample_size=120, overall_r_squared=0.5,
            metric_results=[_metric('passing_offense', 6.0), _metric('turnover_margin', 2.0)],
            created_at=analysis.created_at + timedelta(seconds=5),
        )
        store.save_analysis(newer)

        result = verifier.verify(2024)
        assert 'WEIGHT_MISMATCH' in result.result.error_codes()
        assert result.checks['regression_consistency'] is False

    def test_manual_weights_skip_rederivation(self):
        verifier, manager, store = _setup()
        store.save_analysis(_analysis())
        manager.update_weights(2024, _shifted(), REASON)
        result = verifier.verify(2024)
        assert result.checks['regression_consistency']
        assert any("re-derivation comparison skipped" in w for w in result.warnings)

    def test_baseline_recommends_derivation(self):
        verifier, _, _ = _setup()
        result = verifier.verify(2024)
        assert result.is_valid
        assert any('No regression analysis' in w for w in result.warnings)
        assert any('Derive 2024 weights' in r for r in result.result.recommendations)


# =============================================================================
# Bounds and replay
# =============================================================================

class TestBoundsAndReplay:

    def test_out_of_bounds_detected(self):
        verifier, _, _ = _setup()
        weights = PredictionWeights.from_values(2024, dict(BASELINE_WEIGHTS, special_teams=2.4))
        errors = []
        assert not verifier.check_bounds(weights, errors)
        codes = [e.code for e in errors]
        assert codes == ['WEIGHT_OUT_OF_BOUNDS', 'WEIGHT_SUM_OUT_OF_TOLERANCE']
        assert all(e.severity == Severity.CRITICAL for e in errors)

    def test_formula_replay_passes(self):
        verifier, _, _ = _setup()
        errors = []
        assert verifier.check_formula_replay(PredictionWeights.baseline(2024), errors)
        assert errors == []

    def test_formula_replay_catches_broken_engine(self):
        class DoublingEngine(PredictionEngine):
            def home_field_points(self, weights, neutral_site):
                return 2 * super().home_field_points(weights, neutral_site)

        settings = Settings()
        store = SQLiteStore()
        manager = WeightManager(settings, store)
        verifier = WeightVerifier(
            settings, manager, store, DoublingEngine(settings, BoundaryValidator(BoundaryConfig())),
        )
        errors = []
        assert not verifier.check_formula_replay(PredictionWeights.baseline(2024), errors)
        assert [e.code for e in errors] == ['HOME_FIELD_MISMATCH']


# =============================================================================
# Audit trail
# =============================================================================

class TestAuditTrail:

    def test_broken_chain(self):
        verifier, manager, store = _setup()
        manager.update_weights(2024, _shifted(0.01), REASON)
        first = manager.weight_history(2024)[0]

        # Second entry claims a previous vector that was never stored
        new = _shifted(0.02)
        store.append_weights(
            PredictionWeights.from_values(2024, new, version=2, source='manual'),
            WeightChangeEntry(
                season=2024, version=2, reason=REASON,
                previous_weights=dict(BASELINE_WEIGHTS), new_weights=new,
                is_manual_override=True,
                timestamp=first.timestamp + timedelta(hours=2),
            ),
        )
        result = verifier.verify(2024)
        assert 'BROKEN_CHAIN' in result.result.error_codes()
        assert result.result.has_critical
        assert not result.checks['audit_trail']

    def test_unjustified_major_change(self):
        verifier, manager, _ = _setup()
        manager.update_weights(2024, dict(BASELINE_WEIGHTS, home_field_advantage=0.25), REASON)
        result = verifier.verify(2024)
        assert 'UNJUSTIFIED_MAJOR_CHANGE' in result.result.error_codes()

    def test_justified_major_change(self):
        verifier, manager, _ = _setup()
        reason = 'Significant home field increase after reviewing two seasons of home/away splits'
        manager.update_weights(2024, dict(BASELINE_WEIGHTS, home_field_advantage=0.25), reason)
        assert verifier.verify(2024).is_valid

    def test_rapid_changes_warn(self):
        verifier, manager, _ = _setup()
        manager.update_weights(2024, _shifted(0.01), REASON)
        manager.update_weights(2024, _shifted(0.02), REASON)
        result = verifier.verify(2024)
        assert any('minutes after v1' in w for w in result.warnings)
        assert result.is_valid

    def test_missing_linked_analysis(self):
        verifier, manager, _ = _setup()
        # Derive without storing the analysis
        manager.derive_weights_from_regression(_analysis())
        result = verifier.verify(2024)
        assert 'MISSING_ANALYSIS' in result.result.error_codes()

    def test_low_r_squared_analysis(self):
        verifier, manager, store = _setup()
        analysis = _analysis(r_squared=0.1)
        store.save_analysis(analysis)
        manager.derive_weights_from_regression(analysis)
        result = verifier.verify(2024)
        assert 'LOW_R_SQUARED' in result.result.error_codes()

    def test_to_dict(self):
        verifier, _, _ = _setup()
        record = verifier.verify(2024).to_dict()
        assert record['component'] == 'weight_calculation'
        assert record['weights']['source'] == 'baseline'
        assert set(record['checks']) == {
            'regression_consistency', 'bounds', 'formula_replay', 'audit_trail',
        }
