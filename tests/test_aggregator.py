"""Tests for the game source, statistics aggregation and data quality report.

Tests:
1. games_played counts final games that have the team's box-score row
2. Missing opponent rows give partial aggregation (points only)
3. Completeness score and quality tiers
4. Box-score parsing (third-down strings, clock strings)
5. Multi-season historical patterns
"""

import logging

import numpy as np
import pandas as pd
import pytest

from src.data.aggregator import StatisticsAggregator, completeness_score, quality_tier
from src.data.models import RawGameStat, parse_clock, parse_ratio
from src.data.source import DataFrameSource


def _game(game_id, week, home, away, home_points, away_points, completed=True, season=2024):
    return {
        'game_id': game_id, 'season': season, 'week': week,
        'home_team': home, 'away_team': away,
        'home_points': home_points, 'away_points': away_points,
        'completed': completed,
    }


def _box(game_id, team, **overrides):
    row = {
        'game_id': game_id, 'team': team,
        'passing_yards': 220, 'rushing_yards': 140, 'total_yards': 360,
        'turnovers': 1, 'sacks': 2, 'interceptions': 0,
        'field_goals_made': 1, 'field_goal_attempts': 2,
        'third_down_eff': '5-12', 'red_zone_attempts': 3, 'red_zone_scores': 2,
        'tackles_for_loss': 5, 'time_of_possession': '30:00',
    }
    row.update(overrides)
    return row


def _make_source():
    """TeamA: one full game, one partial (no opponent row), one without stats, one unplayed."""
    games = pd.DataFrame([
        _game('g1', 1, 'TeamA', 'TeamB', 31, 17),
        _game('g2', 2, 'TeamC', 'TeamA', 20, 24),
        _game('g3', 3, 'TeamA', 'TeamD', 10, 13),
        _game('g4', 4, 'TeamA', 'TeamB', None, None, completed=False),
    ])
    box = pd.DataFrame([
        _box('g1', 'TeamA', passing_yards=250, rushing_yards=120, total_yards=370),
        _box('g1', 'TeamB', passing_yards=180, sacks=None, tackles_for_loss=None),
        _box('g2', 'TeamA', passing_yards=400, rushing_yards=60, total_yards=460),
    ])
    return DataFrameSource(games, box)


# =============================================================================
# Source indexing
# =============================================================================

class TestDataFrameSource:
    """Games and box scores indexed by season, team and game."""

    def test_missing_game_columns_rejected(self):
        with pytest.raises(ValueError, match='missing columns'):
            DataFrameSource(pd.DataFrame([{'game_id': 1, 'season': 2024}]))

    def test_final_games_exclude_unplayed(self):
        source = _make_source()
        assert [g.game_id for g in source.games(2024)] == ['g1', 'g2', 'g3']
        assert len(source.games(2024, final_only=False)) == 4

    def test_week_lookup_includes_scheduled_games(self):
        source = _make_source()
        week4 = source.games_for_week(2024, 4)
        assert [g.game_id for g in week4] == ['g4']
        assert not week4[0].is_final

    def test_teams_sorted(self):
        assert _make_source().teams(2024) == ['TeamA', 'TeamB', 'TeamC', 'TeamD']

    def test_duplicate_box_row_keeps_first(self, caplog):
        games = pd.DataFrame([_game('g1', 1, 'TeamA', 'TeamB', 21, 14)])
        box = pd.DataFrame([
            _box('g1', 'TeamA', passing_yards=300),
            _box('g1', 'TeamA', passing_yards=100),
        ])
        with caplog.at_level(logging.WARNING):
            source = DataFrameSource(games, box)
        assert source.box_score('g1', 'TeamA').passing_yards == 300
        assert 'Duplicate box score' in caplog.text


# =============================================================================
# Aggregation
# =============================================================================

class TestAggregateTeamSeason:
    """Season totals and averages over included games."""

    def test_games_played_counts_games_with_team_stats(self):
        """Final game without TeamA's row and the unplayed game are not counted."""
        agg = StatisticsAggregator(_make_source()).aggregate_team_season('TeamA', 2024)
        assert agg.games_played == 2
        assert agg.games_with_opponent_stats == 1

    def test_partial_game_contributes_points_only(self):
        """g2 has no TeamC row, so TeamA's 400 passing yards there are unobserved."""
        agg = StatisticsAggregator(_make_source()).aggregate_team_season('TeamA', 2024)
        assert agg.points_for_avg == pytest.approx(27.5)
        assert agg.points_against_avg == pytest.approx(18.5)
        assert agg.averages['passing_yards'] == pytest.approx(250)
        assert agg.averages['passing_yards_allowed'] == pytest.approx(180)
        assert agg.totals['points'] == pytest.approx(55)

    def test_points_std_sample(self):
        agg = StatisticsAggregator(_make_source()).aggregate_team_season('TeamA', 2024)
        assert agg.points_std == pytest.approx(np.std([31, 24], ddof=1))

    def test_team_without_stats_is_empty(self):
        agg = StatisticsAggregator(_make_source()).aggregate_team_season('TeamD', 2024)
        assert agg.is_empty
        assert agg.average('points', default=28.0) == 28.0


# =============================================================================
# Data quality report
# =============================================================================

class TestQualityReport:
    """Completeness = 70% game coverage + 30% tracked-field coverage."""

    def test_partial_coverage_score(self):
        report = StatisticsAggregator(_make_source()).quality_report('TeamA', 2024)
        assert report.games_played == 3
        assert report.games_with_stats == 2
        assert report.missing_fields == ()
        # 2/3 * 70 + 30 = 76.7 -> 77
        assert report.completeness_score == 77
        assert report.data_quality == 'Limited'

    def test_missing_fields_listed_in_tracked_order(self):
        report = StatisticsAggregator(_make_source()).quality_report('TeamB', 2024)
        assert report.missing_fields == ('sacks', 'tackles_for_loss')
        # 70 + 10/12 * 30
        assert report.completeness_score == 95

    def test_no_statistics(self):
        report = StatisticsAggregator(_make_source()).quality_report('TeamD', 2024)
        assert report.missing_fields == ('all_statistics',)
        assert report.completeness_score == 0
        assert report.data_quality == 'Insufficient'

    def test_completeness_score_no_games(self):
        assert completeness_score(0, 0, 0) == 0.0
        assert completeness_score(10, 10, 0) == 100.0

    @pytest.mark.parametrize('games,score,tier', [
        (8, 90, 'Excellent'),
        (8, 89, 'Good'),
        (5, 70, 'Good'),
        (4, 95, 'Limited'),
        (3, 50, 'Limited'),
        (3, 49, 'Insufficient'),
        (2, 100, 'Insufficient'),
    ])
    def test_quality_tiers(self, games, score, tier):
        assert quality_tier(games, score) == tier


# =============================================================================
# Row parsing
# =============================================================================

class TestRowParsing:
    """Box-score rows from CSV exports."""

    def test_third_down_string(self):
        stat = RawGameStat.from_row({'game_id': 1, 'team': 'TeamA', 'third_down_eff': '5-12'})
        assert stat.third_down_conversions == 5
        assert stat.third_down_attempts == 12
        assert stat.value('third_down_efficiency') == 5

    def test_explicit_third_down_columns_take_precedence(self):
        stat = RawGameStat.from_row({
            'game_id': 1, 'team': 'TeamA',
            'third_down_conversions': 7, 'third_down_attempts': 14, 'third_down_eff': '1-2',
        })
        assert (stat.third_down_conversions, stat.third_down_attempts) == (7, 14)

    def test_unparseable_values_are_missing(self):
        stat = RawGameStat.from_row({
            'game_id': 1, 'team': 'TeamA', 'passing_yards': '', 'sacks': float('nan'),
            'third_down_eff': 'n/a',
        })
        assert stat.passing_yards is None
        assert stat.sacks is None
        assert 'third_down_efficiency' in stat.missing_fields()

    def test_parse_ratio_rejects_non_strings(self):
        assert parse_ratio(None) == (None, None)
        assert parse_ratio('a-b') == (None, None)

    def test_parse_clock(self):
        assert parse_clock('31:30') == 1890
        assert parse_clock(1800) == 1800
        assert parse_clock('xx:10') is None


# =============================================================================
# Historical patterns
# =============================================================================

class TestHistoricalPatterns:
    """League distributions over the lookback window."""

    def test_points_pattern(self):
        patterns = StatisticsAggregator(_make_source()).historical_patterns(2024, lookback=3)
        points = patterns['points']
        assert points.seasons == (2022, 2023, 2024)
        assert points.sample_size == 3
        assert points.mean == pytest.approx(np.mean([31, 17, 24]))
        assert points.min == 17
        assert points.max == 31

    def test_no_data_gives_no_patterns(self):
        assert StatisticsAggregator(_make_source()).historical_patterns(2019) == {}
