"""Tests for stratified sample selection and per-game prediction analysis."""

import pandas as pd
import pytest

from config.settings import Settings
from src.data.models import GameRecord
from src.data.source import DataFrameSource
from src.models.efficiency import TeamEfficiencyProfile
from src.predictions.boundary import BoundaryConfig, BoundaryValidator
from src.predictions.engine import PredictionEngine
from src.validation.core import ErrorHandler, ValidationComponent, ValidationLogger
from src.validation.sample_games import (
    SampleGameAnalyzer,
    categorize_game,
    classify_error,
    prediction_quality,
)
from src.weights.manager import PredictionWeights


TEAMS_8 = [f'Team{c}' for c in 'ABCDEFGH']


def _make_games(n_weeks=10, seed=11):
    """Four games a week with a spread of margins (close, blowout, upset, regular)."""
    margins = [3, 35, -14, 10, -5, 28, -21, 17]
    rows = []
    for week in range(1, n_weeks + 1):
        for i in range(4):
            margin = margins[(week + i) % len(margins)]
            home_points = 24 + max(margin, 0)
            away_points = 24 + max(-margin, 0)
            rows.append({
                'game_id': f'{week}-{i}', 'season': 2024, 'week': week,
                'home_team': TEAMS_8[2 * i], 'away_team': TEAMS_8[2 * i + 1],
                'home_points': home_points, 'away_points': away_points,
                'completed': True,
            })
    return pd.DataFrame(rows)


def _profiles():
    return {
        team: TeamEfficiencyProfile(
            team=team, season=2024, games_played=10, data_quality='Good',
            confidence_level='High', convergence_score=0.7, average_points_for=28.0,
            scoring_offense=float(i - 4),
        )
        for i, team in enumerate(TEAMS_8)
    }


def _analyzer(games=None, seed=42):
    settings = Settings(sample_seed=seed)
    vlog = ValidationLogger()
    source = DataFrameSource(games if games is not None else _make_games())
    engine = PredictionEngine(settings, BoundaryValidator(BoundaryConfig()))
    return SampleGameAnalyzer(settings, source, engine, ErrorHandler(vlog), vlog)


def _weights():
    return PredictionWeights.baseline(2024)


# =============================================================================
# Categorization
# =============================================================================

class TestCategorize:

    @pytest.mark.parametrize('home,away,category', [
        (24, 21, 'close'),
        (21, 28, 'close'),
        (52, 24, 'blowout'),
        (10, 45, 'blowout'),
        (14, 27, 'upset'),
        (35, 21, 'regular'),
        (20, 29, 'regular'),
    ])
    def test_categories(self, home, away, category):
        game = GameRecord('g1', 2024, 1, 'TeamA', 'TeamB', home, away, completed=True)
        assert categorize_game(game) == category

    def test_error_types(self):
        assert classify_error(10.0, 40.0, 0.1) == 'statistical_noise'
        assert classify_error(20.0, 50.0, 0.6) == 'model_limitation'
        assert classify_error(20.0, 80.0, 0.1) == 'data_quality'
        assert classify_error(20.0, 80.0, 0.6) == 'systematic_bias'

    def test_quality(self):
        assert prediction_quality(True, 8.0) == 'excellent'
        assert prediction_quality(True, 18.0) == 'good'
        assert prediction_quality(True, 40.0) == 'fair'
        assert prediction_quality(False, 25.0) == 'fair'
        assert prediction_quality(False, 31.0) == 'poor'


# =============================================================================
# Sample selection
# =============================================================================

class TestSelectSample:

    def test_requested_size(self):
        sample = _analyzer().select_sample(2024, 20)
        assert len(sample) == 20
        assert len({g.game_id for g in sample}) == 20

    def test_stratified(self):
        sample = _analyzer().select_sample(2024, 20)
        counts = pd.Series([categorize_game(g) for g in sample]).value_counts()
        # ceil(30%), ceil(25%), ceil(20%) of 20
        assert counts['close'] == 6
        assert counts['blowout'] == 5
        assert counts['upset'] == 4

    def test_seeded(self):
        first = [g.game_id for g in _analyzer(seed=3).select_sample(2024, 12)]
        second = [g.game_id for g in _analyzer(seed=3).select_sample(2024, 12)]
        assert first == second

    def test_request_exceeds_available(self):
        sample = _analyzer(_make_games(n_weeks=2)).select_sample(2024, 50)
        assert len(sample) == 8

    def test_zero_requested(self):
        assert _analyzer().select_sample(2024, 0) == []

    def test_shortfall_filled_from_remaining(self):
        """Only close games exist, so every category target is filled from them."""
        games = _make_games()
        games['away_points'] = games['home_points'] - 3
        sample = _analyzer(games).select_sample(2024, 10)
        assert len(sample) == 10


# =============================================================================
# Analysis
# =============================================================================

class TestAnalyze:

    def test_results_per_game(self):
        analyzer = _analyzer()
        results = analyzer.analyze(2024, 12, _profiles(), _weights(), model_r_squared=0.4)
        assert len(results) == 12
        for r in results:
            assert r.home_error >= 0 and r.away_error >= 0
            assert r.total_error == pytest.approx(r.home_error + r.away_error)
            assert r.error_type in r.error_causes
            assert r.model_r_squared == 0.4
            assert r.explanation.startswith(r.predicted_winner)

    def test_analyze_game_fields(self):
        analyzer = _analyzer()
        profiles = _profiles()
        game = GameRecord('x1', 2024, 1, 'TeamH', 'TeamA', 30, 20, completed=True)
        prediction = analyzer.engine.predict(
            profiles['TeamH'], profiles['TeamA'], _weights(), model_r_squared=0.5, game_id='x1',
        )
        result = analyzer.analyze_game(game, prediction)

        assert result.predicted_winner == 'TeamH'
        assert result.actual_winner == 'TeamH'
        assert result.winner_correct
        assert result.category == 'regular'
        assert result.spread_error == pytest.approx(abs(prediction.spread - 10))
        assert 'Actual: TeamH 30-20' in result.explanation
        assert result.to_dict()['matchup'] == 'TeamA @ TeamH'

    def test_missing_profile_isolated(self):
        analyzer = _analyzer()
        profiles = _profiles()
        del profiles['TeamA']
        results = analyzer.analyze(2024, 40, profiles, _weights())
        # TeamA plays in 10 of 40 games
        assert len(results) == 30
        assert len(analyzer.error_handler.errors) == 10
        assert analyzer.error_handler.errors[0].component == ValidationComponent.SAMPLE_GAME_ANALYZER

    def test_validate_summary(self):
        analyzer = _analyzer()
        results = analyzer.analyze(2024, 20, _profiles(), _weights())
        summary = analyzer.validate(results, 20)
        assert summary.metadata['analyzed'] == 20
        assert summary.metadata['success_rate'] == 1.0
        assert set(summary.metadata['error_types']) == {
            'statistical_noise', 'model_limitation', 'data_quality', 'systematic_bias',
        }
        assert 'close' in summary.metadata['by_category']

    def test_validate_empty(self):
        summary = _analyzer().validate([], 20)
        assert summary.error_codes() == ['NO_GAMES_ANALYZED']

    def test_validate_low_success_rate(self):
        analyzer = _analyzer()
        results = analyzer.analyze(2024, 5, _profiles(), _weights())
        summary = analyzer.validate(results, 20)
        assert any('5 of 20' in w for w in summary.warnings)
