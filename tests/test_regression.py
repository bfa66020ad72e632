"""Tests for the regression analysis of points on efficiency features.

Tests:
1. Dataset has one row per team per final game with matchup features
2. A strong synthetic relationship is detected as significant
3. Samples below the minimum skip significance filtering and say so
4. Constant features are skipped rather than producing NaN results
5. Analysis results survive serialization
"""

import numpy as np
import pandas as pd
import pytest

from config.settings import Settings
from src.data.models import GameRecord
from src.models.efficiency import TeamEfficiencyProfile
from src.models.regression import (
    REGRESSION_METRICS,
    RegressionAnalysisResult,
    RegressionAnalyzer,
)


def _make_dataset(n, seed=7, slope=0.5, noise=2.0):
    """passing_offense drives points; every other metric is noise."""
    rng = np.random.default_rng(seed)
    data = {metric: rng.normal(0, 10, n) for metric in REGRESSION_METRICS}
    data['points'] = 28 + slope * data['passing_offense'] + rng.normal(0, noise, n)
    return pd.DataFrame(data)


def _profile(team, **values):
    return TeamEfficiencyProfile(team=team, season=2024, games_played=5, **values)


# =============================================================================
# Dataset construction
# =============================================================================

class TestBuildDataset:
    """Matchup features per team per game."""

    def test_two_rows_per_final_game(self):
        games = [
            GameRecord('g1', 2024, 1, 'TeamA', 'TeamB', 31, 17, completed=True),
            GameRecord('g2', 2024, 2, 'TeamA', 'TeamB', None, None, completed=False),
        ]
        profiles = {
            'TeamA': _profile('TeamA', passing_offense=12.0, scoring_offense=6.0, turnover_margin=1.0),
            'TeamB': _profile('TeamB', scoring_defense=-2.0, rushing_defense=4.0, turnover_margin=-0.5),
        }
        data = RegressionAnalyzer(Settings()).build_dataset(games, profiles)
        assert len(data) == 2

        row_a = data[data['team'] == 'TeamA'].iloc[0]
        assert row_a['points'] == 31
        assert row_a['passing_offense'] == 12.0
        assert row_a['scoring_efficiency'] == pytest.approx(8.0)
        assert row_a['rushing_defense'] == 4.0
        assert row_a['turnover_margin'] == pytest.approx(1.5)

    def test_skips_games_without_profiles(self):
        games = [GameRecord('g1', 2024, 1, 'TeamA', 'TeamZ', 31, 17, completed=True)]
        data = RegressionAnalyzer(Settings()).build_dataset(games, {'TeamA': _profile('TeamA')})
        assert data.empty
        assert 'points' in data.columns


# =============================================================================
# Analysis
# =============================================================================

class TestAnalyze:
    """Per-metric and multiple regression."""

    def test_detects_significant_metric(self):
        analysis = RegressionAnalyzer(Settings()).analyze(2024, _make_dataset(80))

        assert analysis.statistical_significance_considered
        assert analysis.sample_size == 80
        assert 'passing_offense' in analysis.significant_metrics
        result = analysis.metric('passing_offense')
        assert result.coefficient == pytest.approx(0.5, abs=0.1)
        assert result.confidence_interval[0] < result.coefficient < result.confidence_interval[1]
        assert result.calculated_weight == pytest.approx(abs(result.coefficient) * 0.1)
        assert analysis.overall_r_squared > 0.5

    def test_noise_metrics_not_significant(self):
        analysis = RegressionAnalyzer(Settings()).analyze(2024, _make_dataset(80))
        assert 'special_teams' not in analysis.significant_metrics

    def test_small_sample_skips_significance(self, caplog):
        """5 observations is below the 30-row minimum."""
        analysis = RegressionAnalyzer(Settings()).analyze(2024, _make_dataset(5))

        assert analysis.sample_size == 5
        assert analysis.statistical_significance_considered is False
        assert any('Small sample size' in w for w in analysis.warnings)
        assert 'Small sample size' in caplog.text

    def test_configurable_minimum(self):
        settings = Settings(min_regression_sample=4)
        analysis = RegressionAnalyzer(settings).analyze(2024, _make_dataset(5))
        assert analysis.statistical_significance_considered

    def test_constant_metric_skipped(self):
        data = _make_dataset(40)
        data['special_teams'] = 0.0
        analysis = RegressionAnalyzer(Settings()).analyze(2024, data)
        assert analysis.metric('special_teams') is None
        assert analysis.metric('passing_offense') is not None

    def test_empty_dataset(self):
        data = pd.DataFrame(columns=['points', *REGRESSION_METRICS])
        analysis = RegressionAnalyzer(Settings()).analyze(2024, data)
        assert analysis.sample_size == 0
        assert analysis.metric_results == []
        assert analysis.overall_r_squared == 0.0

    def test_collinear_metrics_warned(self):
        data = _make_dataset(60)
        data['rushing_offense'] = data['passing_offense'] * 2 + 0.01
        analysis = RegressionAnalyzer(Settings()).analyze(2024, data)
        assert any('multicollinearity' in w for w in analysis.warnings)


class TestSerialization:
    """Stored analyses must read back unchanged."""

    def test_roundtrip(self):
        analysis = RegressionAnalyzer(Settings()).analyze(2024, _make_dataset(40))
        restored = RegressionAnalysisResult.from_dict(analysis.to_dict())
        assert restored.analysis_id == analysis.analysis_id
        assert restored.created_at == analysis.created_at
        assert restored.significant_metrics == analysis.significant_metrics
        assert restored.metric('passing_offense').confidence_interval == \
            analysis.metric('passing_offense').confidence_interval
