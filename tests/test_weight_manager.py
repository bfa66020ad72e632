"""Tests for WeightManager: derivation, validation, fallback and audit chain.

Tests:
1. Retrieval falls back season -> prior season -> baseline
2. Regression weights are filtered, normalized and bounded
3. Invalid vectors and short manual reasons are rejected, previous weights kept
4. Every history entry chains to the previous one
5. A concurrent writer is rejected with a conflict error
"""

import pytest

from config.settings import Settings
from src.data.store import SQLiteStore
from src.models.regression import MetricRegressionResult, RegressionAnalysisResult
from src.weights.manager import (
    BASELINE_WEIGHTS,
    CATEGORY_WEIGHTS,
    PredictionWeights,
    WeightManager,
    WeightUpdateConflictError,
    WeightValidationError,
    largest_relative_change,
    mentions_magnitude,
)


REASON = 'Manual adjustment after reviewing week 6 results against closing lines for all games'


def _manager(settings=None):
    return WeightManager(settings or Settings(), SQLiteStore(':memory:'))


def _metric(name, coefficient, r_squared=0.5, p_value=0.01, significant=True):
    return MetricRegressionResult(
        metric=name,
        coefficient=coefficient,
        intercept=28.0,
        r_squared=r_squared,
        p_value=p_value,
        std_error=0.1,
        confidence_interval=(coefficient - 0.2, coefficient + 0.2),
        calculated_weight=abs(coefficient) * 0.1,
        is_statistically_significant=significant,
    )


def _analysis(metrics, season=2024, sample_size=120, considered=True):
    return RegressionAnalysisResult(
        season=season,
        sample_size=sample_size,
        overall_r_squared=0.45,
        metric_results=metrics,
        statistical_significance_considered=considered,
    )


def _shifted(delta=0.02):
    """A valid vector moving weight from rushing to passing offense."""
    values = dict(BASELINE_WEIGHTS)
    values['passing_offense'] += delta
    values['rushing_offense'] -= delta
    return values


# =============================================================================
# Retrieval and fallback
# =============================================================================

class TestGetCurrentWeights:
    """Latest season weights, else prior season, else baseline."""

    def test_baseline_when_nothing_stored(self):
        weights = _manager().get_current_weights(2024)
        assert weights.source == 'baseline'
        assert weights.version == 0
        assert weights.category_sum == pytest.approx(1.0)
        assert weights.home_field_advantage == pytest.approx(0.10)

    def test_baseline_relative_importance(self):
        weights = PredictionWeights.baseline(2024)
        assert weights.turnover_margin > weights.scoring_efficiency > weights.passing_offense
        assert weights.special_teams == min(weights.category_weights().values())

    def test_prior_season_fallback(self):
        manager = _manager()
        stored = manager.update_weights(2023, _shifted(), REASON)
        weights = manager.get_current_weights(2024)
        assert weights.source == 'prior_season'
        assert weights.season == 2024
        assert weights.as_dict() == stored.as_dict()

    def test_latest_version_wins(self):
        manager = _manager()
        manager.update_weights(2024, _shifted(0.01), REASON)
        manager.update_weights(2024, _shifted(0.03), REASON)
        weights = manager.get_current_weights(2024)
        assert weights.version == 2
        assert weights.source == 'manual'
        assert weights.passing_offense == pytest.approx(BASELINE_WEIGHTS['passing_offense'] + 0.03)

    def test_store_failure_falls_back_to_baseline(self, caplog):
        class BrokenStore:
            def latest_weights(self, season):
                raise RuntimeError('database locked')

        weights = WeightManager(Settings(), BrokenStore()).get_current_weights(2024)
        assert weights.source == 'baseline'
        assert 'database locked' in caplog.text


# =============================================================================
# Regression-derived weights
# =============================================================================

class TestComputeRegressionWeights:
    """Filter, scale by |coefficient|, normalize, clamp."""

    def test_normalized_by_coefficient(self):
        analysis = _analysis([_metric('passing_offense', 2.0), _metric('turnover_margin', -6.0)])
        weights = _manager().compute_regression_weights(analysis)
        assert weights['passing_offense'] == pytest.approx(0.25)
        assert weights['turnover_margin'] == pytest.approx(0.75)
        assert sum(weights[k] for k in CATEGORY_WEIGHTS) == pytest.approx(1.0)

    def test_unretained_categories_get_zero(self):
        analysis = _analysis([_metric('passing_offense', 2.0), _metric('turnover_margin', 6.0)])
        weights = _manager().compute_regression_weights(analysis)
        assert weights['special_teams'] == 0.0
        assert weights['rushing_defense'] == 0.0

    def test_home_field_carried_through(self):
        analysis = _analysis([_metric('passing_offense', 2.0)])
        weights = _manager().compute_regression_weights(analysis, home_field_advantage=0.2)
        assert weights['home_field_advantage'] == 0.2

    def test_insignificant_metrics_filtered(self):
        analysis = _analysis([
            _metric('passing_offense', 2.0),
            _metric('rushing_offense', 9.0, p_value=0.4, significant=False),
            _metric('special_teams', 9.0, r_squared=0.05, significant=False),
        ])
        weights = _manager().compute_regression_weights(analysis)
        assert weights['passing_offense'] == pytest.approx(1.0)
        assert weights['rushing_offense'] == 0.0

    def test_small_sample_keeps_all_metrics(self):
        analysis = _analysis([
            _metric('passing_offense', 1.0, p_value=0.6),
            _metric('rushing_offense', 3.0, r_squared=0.01),
        ], sample_size=5, considered=False)
        weights = _manager().compute_regression_weights(analysis)
        assert weights['passing_offense'] == pytest.approx(0.25)
        assert weights['rushing_offense'] == pytest.approx(0.75)

    def test_no_usable_metric_rejected(self):
        analysis = _analysis([_metric('passing_offense', 2.0, p_value=0.5, significant=False)])
        with pytest.raises(WeightValidationError, match='No usable metrics'):
            _manager().compute_regression_weights(analysis)

    def test_non_finite_coefficient_rejected(self):
        analysis = _analysis([_metric('passing_offense', float('nan'))])
        with pytest.raises(WeightValidationError, match='Non-finite'):
            _manager().compute_regression_weights(analysis)

    def test_derive_persists_linked_version(self):
        manager = _manager()
        analysis = _analysis([_metric('passing_offense', 2.0), _metric('turnover_margin', 6.0)])
        manager.store.save_analysis(analysis)

        weights = manager.derive_weights_from_regression(analysis)
        assert weights.version == 1
        assert weights.source == 'regression'

        entry = manager.weight_history(2024)[-1]
        assert entry.analysis_id == analysis.analysis_id
        assert not entry.is_manual_override
        assert entry.previous_weights == pytest.approx(BASELINE_WEIGHTS)
        assert 'major change' in entry.reason

    def test_rejected_derivation_keeps_previous_weights(self):
        manager = _manager()
        before = manager.update_weights(2024, _shifted(), REASON)
        analysis = _analysis([])
        with pytest.raises(WeightValidationError):
            manager.derive_weights_from_regression(analysis)
        assert manager.get_current_weights(2024).as_dict() == before.as_dict()
        assert len(manager.weight_history(2024)) == 1


# =============================================================================
# Validation and manual overrides
# =============================================================================

class TestValidation:
    """Bounds, sum tolerance and justification length."""

    def test_baseline_valid(self):
        assert _manager().validate_weight_values(BASELINE_WEIGHTS) == []

    def test_out_of_bounds(self):
        values = dict(BASELINE_WEIGHTS, home_field_advantage=2.5)
        errors = _manager().validate_weight_values(values)
        assert any('home_field_advantage' in e for e in errors)

    def test_non_finite(self):
        values = dict(BASELINE_WEIGHTS, special_teams=float('inf'))
        assert any('finite' in e for e in _manager().validate_weight_values(values))

    def test_missing_key(self):
        values = dict(BASELINE_WEIGHTS)
        del values['rushing_defense']
        assert _manager().validate_weight_values(values) == ['Missing weight: rushing_defense']

    def test_sum_outside_tolerance(self):
        values = dict(BASELINE_WEIGHTS, passing_offense=BASELINE_WEIGHTS['passing_offense'] + 0.2)
        errors = _manager().validate_weight_values(values)
        assert len(errors) == 1
        assert 'sum' in errors[0]

    def test_sum_within_tolerance(self):
        values = dict(BASELINE_WEIGHTS, passing_offense=BASELINE_WEIGHTS['passing_offense'] + 0.05)
        assert _manager().validate_weight_values(values) == []

    def test_short_manual_reason_rejected(self):
        manager = _manager()
        with pytest.raises(WeightValidationError, match='at least 50'):
            manager.update_weights(2024, _shifted(), 'tweak')
        assert manager.weight_history(2024) == []

    def test_invalid_manual_weights_rejected(self):
        manager = _manager()
        with pytest.raises(WeightValidationError):
            manager.update_weights(2024, dict(BASELINE_WEIGHTS, passing_offense=-1.0), REASON)
        assert manager.get_current_weights(2024).source == 'baseline'

    def test_manual_override_recorded(self):
        manager = _manager()
        manager.update_weights(2024, _shifted(), REASON, changed_by='analyst')
        entry = manager.weight_history(2024)[0]
        assert entry.is_manual_override
        assert entry.changed_by == 'analyst'
        assert entry.reason == REASON

    def test_reset_to_baseline(self):
        manager = _manager()
        manager.update_weights(2024, _shifted(), REASON)
        weights = manager.reset_to_baseline(2024, REASON)
        assert weights.as_dict() == pytest.approx(BASELINE_WEIGHTS)
        assert weights.version == 2

    def test_major_change_without_keyword_warns(self, caplog):
        manager = _manager()
        values = dict(BASELINE_WEIGHTS)
        values['special_teams'] += 0.05
        values['turnover_margin'] -= 0.05
        values['home_field_advantage'] = 0.2
        manager.update_weights(2024, values, REASON)
        assert 'magnitude justification' in caplog.text


# =============================================================================
# Audit chain and concurrency
# =============================================================================

class TestHistoryChain:
    """previous_weights of entry N equals new_weights of entry N-1."""

    def test_chain_invariant(self):
        manager = _manager()
        for delta in (0.01, 0.02, 0.03):
            manager.update_weights(2024, _shifted(delta), REASON)
        history = manager.weight_history(2024)
        assert [e.version for e in history] == [1, 2, 3]
        assert history[0].previous_weights == pytest.approx(BASELINE_WEIGHTS)
        for prev, entry in zip(history, history[1:]):
            assert entry.previous_weights == prev.new_weights

    def test_history_limit(self):
        manager = _manager()
        for delta in (0.01, 0.02, 0.03):
            manager.update_weights(2024, _shifted(delta), REASON)
        assert [e.version for e in manager.weight_history(2024, limit=2)] == [2, 3]

    def test_seasons_are_independent(self):
        manager = _manager()
        manager.update_weights(2023, _shifted(), REASON)
        manager.update_weights(2024, _shifted(), REASON)
        assert manager.get_current_weights(2024).version == 1
        assert len(manager.weight_history(2023)) == 1

    def test_concurrent_writer_rejected(self):
        manager = _manager()
        lock = manager.writer_lock(2024)
        lock.acquire()
        try:
            with pytest.raises(WeightUpdateConflictError):
                manager.update_weights(2024, _shifted(), REASON)
        finally:
            lock.release()
        assert manager.weight_history(2024) == []
        # Other seasons are not blocked
        lock.acquire()
        try:
            assert manager.update_weights(2025, _shifted(), REASON).version == 1
        finally:
            lock.release()


class TestHelpers:

    def test_largest_relative_change(self):
        previous = dict(BASELINE_WEIGHTS)
        new = dict(BASELINE_WEIGHTS, home_field_advantage=0.25)
        key, change = largest_relative_change(previous, new)
        assert key == 'home_field_advantage'
        assert change == pytest.approx(1.5)

    def test_change_from_zero_is_infinite(self):
        previous = dict(BASELINE_WEIGHTS, special_teams=0.0)
        key, change = largest_relative_change(previous, dict(BASELINE_WEIGHTS))
        assert key == 'special_teams'
        assert change == float('inf')

    def test_mentions_magnitude(self):
        assert mentions_magnitude('Significant shift after bye weeks')
        assert mentions_magnitude('MAJOR rebalance')
        assert not mentions_magnitude('small tweak')
