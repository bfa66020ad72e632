"""Prediction service facade and component wiring.

``build_service`` constructs every component exactly once, in dependency
order, and hands them to ``PredictionService``:

    settings -> store -> source/aggregator -> efficiency calculator
    -> regression analyzer -> weight manager -> boundary validator
    -> validation logger / error handler / tracer -> regression auditor
    -> prediction engine
    -> data validator, weight verifier, sample analyzer, accuracy tester,
       health monitor, reporter -> service

Nothing is global: two services built from different settings never share
state.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import pandas as pd

from config.baselines import LEAGUE_BASELINES, LeagueBaselines
from config.settings import Settings
from src.data.aggregator import StatisticsAggregator
from src.data.cache import ProfileCache
from src.data.models import HistoricalPattern
from src.data.source import DataFrameSource
from src.data.store import SQLiteStore
from src.data.validators import DataValidator
from src.models.efficiency import EfficiencyCalculator, TeamEfficiencyProfile
from src.models.regression import RegressionAnalysisResult, RegressionAnalyzer
from src.predictions.boundary import BoundaryConfig, BoundaryValidator
from src.predictions.engine import GamePrediction, PredictionEngine
from src.validation.accuracy import AccuracyResults, AccuracyTester
from src.validation.core import (
    CalculationTrace,
    CalculationTracer,
    ErrorHandler,
    ValidationComponent,
    ValidationLogger,
    ValidationResult,
)
from src.validation.health import SystemHealth, SystemHealthMonitor
from src.validation.regression_auditor import RegressionAuditor, RegressionAuditResult
from src.validation.reporter import AnalysisReporter, IntuitiveAnalysisReport
from src.validation.sample_games import GameAnalysisResult, SampleGameAnalyzer
from src.validation.weight_verifier import WeightValidationResult, WeightVerifier
from src.weights.manager import (
    PredictionWeights,
    WeightChangeEntry,
    WeightManager,
    WeightValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 20


@dataclass
class SeasonProcessingSummary:
    """Outcome of a batched season run."""

    season: int
    teams_total: int
    processed: int = 0
    failed: int = 0
    batches: int = 0
    errors: list = field(default_factory=list)
    snapshot_path: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        return self.processed / self.teams_total if self.teams_total else 1.0

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "season": self.season,
            "teams_total": self.teams_total,
            "processed": self.processed,
            "failed": self.failed,
            "batches": self.batches,
            "success_rate": self.success_rate,
            "errors": list(self.errors),
            "snapshot_path": self.snapshot_path,
            "duration_seconds": self.duration_seconds,
        }


class PredictionService:
    """Operations exposed to callers (route layer, CLI, notebooks)."""

    def __init__(
        self,
        settings: Settings,
        source: DataFrameSource,
        store: SQLiteStore,
        aggregator: StatisticsAggregator,
        efficiency: EfficiencyCalculator,
        regression: RegressionAnalyzer,
        weight_manager: WeightManager,
        engine: PredictionEngine,
        tracer: CalculationTracer,
        error_handler: ErrorHandler,
        validation_logger: ValidationLogger,
        data_validator: DataValidator,
        verifier: WeightVerifier,
        sample_analyzer: SampleGameAnalyzer,
        accuracy_tester: AccuracyTester,
        health_monitor: SystemHealthMonitor,
        reporter: AnalysisReporter,
        regression_auditor: Optional[RegressionAuditor] = None,
        cache: Optional[ProfileCache] = None,
    ):
        self.settings = settings
        self.source = source
        self.store = store
        self.aggregator = aggregator
        self.efficiency = efficiency
        self.regression = regression
        self.weight_manager = weight_manager
        self.engine = engine
        self.tracer = tracer
        self.error_handler = error_handler
        self.validation_logger = validation_logger
        self.data_validator = data_validator
        self.verifier = verifier
        self.sample_analyzer = sample_analyzer
        self.accuracy_tester = accuracy_tester
        self.health_monitor = health_monitor
        self.reporter = reporter
        self.regression_auditor = regression_auditor or RegressionAuditor(settings, validation_logger)
        self.cache = cache
        self._patterns: dict[int, dict[str, HistoricalPattern]] = {}
        self._last_summary: dict[int, SeasonProcessingSummary] = {}

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_team_efficiency_profile(self, team: str, season: int, refresh: bool = False) -> TeamEfficiencyProfile:
        """Stored profile for a team, computing and storing it on first use."""
        if not refresh:
            stored = self.store.get_profile(team, season)
            if stored is not None:
                return stored
        profile = self.efficiency.calculate_profile(team, season)
        if profile.games_played:
            self.store.upsert_profile(profile)
        return profile

    def season_profiles(self, season: int) -> dict[str, TeamEfficiencyProfile]:
        """Every team's profile for a season (stored profiles first)."""
        profiles = self.store.profiles(season)
        for team in self.source.teams(season):
            if team not in profiles:
                profiles[team] = self.get_team_efficiency_profile(team, season)
        return profiles

    def historical_patterns(self, season: int) -> dict[str, HistoricalPattern]:
        if season not in self._patterns:
            self._patterns[season] = self.aggregator.historical_patterns(
                season, self.settings.lookback_seasons
            )
        return self._patterns[season]

    def season_averages(self, season: int, teams: list[str]) -> dict[str, dict]:
        return {
            team: dict(self.aggregator.aggregate_team_season(team, season).averages)
            for team in teams
        }

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def _model_r_squared(self, season: int) -> float:
        analysis = self.store.latest_analysis(season)
        return analysis.overall_r_squared if analysis is not None else 0.0

    def get_game_prediction(
        self,
        home_team: str,
        away_team: str,
        season: int,
        game_id: Optional[str] = None,
        neutral_site: bool = False,
        trace: Optional[CalculationTrace] = None,
    ) -> GamePrediction:
        """Predict one matchup.

        Raises:
            InsufficientDataError: if either team has no efficiency profile
        """
        home = self.get_team_efficiency_profile(home_team, season)
        away = self.get_team_efficiency_profile(away_team, season)
        return self.engine.predict(
            home,
            away,
            self.weight_manager.get_current_weights(season),
            model_r_squared=self._model_r_squared(season),
            neutral_site=neutral_site,
            game_id=game_id,
            season_averages=self.season_averages(season, [home_team, away_team]),
            patterns=self.historical_patterns(season),
            trace=trace,
        )

    def trace_game_prediction(
        self,
        home_team: str,
        away_team: str,
        season: int,
        game_id: Optional[str] = None,
        neutral_site: bool = False,
    ) -> tuple[GamePrediction, CalculationTrace, ValidationResult]:
        """Predict with a calculation trace; the trace is closed before returning."""
        trace = self.tracer.start(
            f"{away_team} @ {home_team}", season=season, game_id=game_id,
        )
        try:
            prediction = self.get_game_prediction(
                home_team, away_team, season, game_id, neutral_site, trace=trace,
            )
        finally:
            result = self.tracer.complete(trace)
        return prediction, trace, result

    def get_weekly_predictions(self, season: int, week: int, persist: bool = True) -> list[GamePrediction]:
        """Predictions for every game in a week; failures are isolated per game."""
        predictions = []
        games = self.source.games_for_week(season, week)
        for game in games:
            try:
                prediction = self.get_game_prediction(
                    game.home_team, game.away_team, season,
                    game_id=game.game_id, neutral_site=game.neutral_site,
                )
            except Exception as e:
                self.error_handler.handle(
                    ValidationComponent.PREDICTION_ACCURACY, e, unit=game.game_id,
                    season=season, week=week,
                )
                continue
            if persist:
                self.store.save_prediction(season, prediction.to_dict())
            predictions.append(prediction)
        logger.info(f"Predicted {len(predictions)}/{len(games)} games for {season} week {week}")
        return predictions

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def get_current_weights(self, season: int) -> PredictionWeights:
        return self.weight_manager.get_current_weights(season)

    def weight_history(self, season: int) -> list[WeightChangeEntry]:
        return self.weight_manager.weight_history(season)

    def run_regression_analysis(
        self,
        season: int,
        derive_weights: bool = True,
        reason: Optional[str] = None,
    ) -> RegressionAnalysisResult:
        """Analyze the season's games, store the analysis and (optionally) derive weights.

        A rejected derivation is logged and the previous weights stay in place.
        """
        profiles = self.season_profiles(season)
        data = self.regression.build_dataset(self.source.games(season), profiles)
        analysis = self.regression.analyze(season, data)
        self.store.save_analysis(analysis)

        if derive_weights:
            try:
                self.weight_manager.derive_weights_from_regression(analysis, reason)
            except WeightValidationError as e:
                logger.warning(f"Weights for {season} not updated from analysis {analysis.analysis_id}: {e}")
        return analysis

    def update_weights(
        self,
        season: int,
        weights: dict,
        reason: str,
        changed_by: Optional[str] = None,
    ) -> PredictionWeights:
        return self.weight_manager.update_weights(season, weights, reason, changed_by)

    def reset_weights(self, season: int, reason: str, changed_by: Optional[str] = None) -> PredictionWeights:
        return self.weight_manager.reset_to_baseline(season, reason, changed_by)

    def validate_weights(self, season: int) -> WeightValidationResult:
        return self.verifier.verify(season)

    def audit_regression(self, season: int) -> RegressionAuditResult:
        """Audit the latest stored analysis against the season's current dataset."""
        analysis = self.store.latest_analysis(season)
        if analysis is None:
            return self.regression_auditor.missing(season)
        data = self.regression.build_dataset(self.source.games(season), self.season_profiles(season))
        return self.regression_auditor.audit(analysis, data)

    # ------------------------------------------------------------------
    # Validation and reporting
    # ------------------------------------------------------------------

    def validate_data(self, season: int) -> ValidationResult:
        result = self.data_validator.validate_season(season)
        self.validation_logger.log_result(result)
        return result

    def analyze_sample_games(self, season: int, sample_size: int = DEFAULT_SAMPLE_SIZE) -> list[GameAnalysisResult]:
        """Replay a stratified sample with the same inputs get_game_prediction uses."""
        results = self.sample_analyzer.analyze(
            season,
            sample_size,
            self.season_profiles(season),
            self.weight_manager.get_current_weights(season),
            model_r_squared=self._model_r_squared(season),
            season_averages=self.season_averages(season, self.source.teams(season)),
            patterns=self.historical_patterns(season),
        )
        requested = min(sample_size, len(self.source.games(season)))
        self.sample_analyzer.validate(results, requested)
        return results

    def test_accuracy(self, season: int, analyses: Optional[list[GameAnalysisResult]] = None) -> AccuracyResults:
        """Accuracy of sample-game predictions against final scores."""
        if analyses is None:
            analyses = self.analyze_sample_games(season)
        return self.accuracy_tester.evaluate_analyses(analyses)

    def system_health(self, season: int, accuracy: Optional[AccuracyResults] = None) -> SystemHealth:
        summary = self._last_summary.get(season)
        audit = self.audit_regression(season) if self.store.latest_analysis(season) is not None else None
        return self.health_monitor.check(
            season,
            self.season_profiles(season),
            processing_failures=summary.failed if summary else 0,
            accuracy=accuracy,
            regression_audit=audit,
        )

    def generate_intuitive_report(
        self,
        season: int,
        accuracy_results: AccuracyResults,
        system_health: SystemHealth,
        analyses: Optional[list[GameAnalysisResult]] = None,
    ) -> IntuitiveAnalysisReport:
        if analyses is None:
            analyses = self.analyze_sample_games(season)
        return self.reporter.generate(season, analyses, accuracy_results, system_health)

    # ------------------------------------------------------------------
    # Season processing
    # ------------------------------------------------------------------

    def process_season(
        self,
        season: int,
        teams: Optional[list[str]] = None,
        write_snapshot: bool = False,
    ) -> SeasonProcessingSummary:
        """Recompute and store every team's profile in batches.

        Teams are processed ``batch_size`` at a time with ``batch_delay_seconds``
        between batches. A failing team is recorded in the summary and does not
        stop the run.
        """
        s = self.settings
        teams = list(teams) if teams is not None else self.source.teams(season)
        summary = SeasonProcessingSummary(season=season, teams_total=len(teams))
        computed: dict[str, TeamEfficiencyProfile] = {}

        for start in range(0, len(teams), s.batch_size):
            if start and s.batch_delay_seconds:
                time.sleep(s.batch_delay_seconds)
            batch = teams[start:start + s.batch_size]
            summary.batches += 1
            logger.info(f"Season {season} batch {summary.batches}: {len(batch)} teams")
            for team in batch:
                try:
                    profile = self.efficiency.calculate_profile(team, season)
                    self.store.upsert_profile(profile)
                    computed[team] = profile
                    summary.processed += 1
                except Exception as e:
                    issue = self.error_handler.handle(
                        ValidationComponent.DATA_PIPELINE, e, unit=team, season=season,
                    )
                    summary.failed += 1
                    summary.errors.append({"team": team, "error": issue.message})

        if write_snapshot and self.cache is not None:
            path = self.cache.write(season, computed)
            summary.snapshot_path = str(path) if path else None

        summary.finished_at = datetime.now(timezone.utc)
        self._last_summary[season] = summary
        logger.info(
            f"Season {season} processed: {summary.processed}/{summary.teams_total} teams, "
            f"{summary.failed} failed"
        )
        return summary


def build_service(
    settings: Settings,
    games: pd.DataFrame,
    box_scores: Optional[pd.DataFrame] = None,
    store: Optional[SQLiteStore] = None,
    cache_dir: Optional[str] = None,
    baselines: LeagueBaselines = LEAGUE_BASELINES,
    boundary_config: Optional[BoundaryConfig] = None,
) -> PredictionService:
    """Wire every component from one Settings instance.

    Args:
        settings: Application settings
        games: Games DataFrame (see DataFrameSource)
        box_scores: Box-score DataFrame, one row per team per game
        store: Existing store; a new one at ``settings.database_path`` otherwise
        cache_dir: Directory for parquet profile snapshots (disabled if None)
        baselines: League baseline constants
        boundary_config: Explicit boundary multipliers; derived from settings otherwise

    Returns:
        PredictionService
    """
    errors = settings.validate()
    if errors:
        raise ValueError(f"Invalid settings: {'; '.join(errors)}")

    store = store if store is not None else SQLiteStore(settings.database_path)
    source = DataFrameSource(games, box_scores)
    aggregator = StatisticsAggregator(source)
    efficiency = EfficiencyCalculator(aggregator, baselines)
    regression = RegressionAnalyzer(settings)
    weight_manager = WeightManager(settings, store)
    boundary = BoundaryValidator(boundary_config or BoundaryConfig.from_settings(settings), baselines)

    validation_logger = ValidationLogger(settings.validation_history_cap)
    error_handler = ErrorHandler(validation_logger)
    regression_auditor = RegressionAuditor(settings, validation_logger)
    tracer = CalculationTracer(validation_logger)
    engine = PredictionEngine(settings, boundary, baselines, tracer=tracer)

    data_validator = DataValidator(settings, aggregator)
    verifier = WeightVerifier(settings, weight_manager, store, engine, validation_logger)
    sample_analyzer = SampleGameAnalyzer(settings, source, engine, error_handler, validation_logger)
    accuracy_tester = AccuracyTester(settings, validation_logger)
    health_monitor = SystemHealthMonitor(settings, data_validator, weight_manager, store, validation_logger)

    return PredictionService(
        settings=settings,
        source=source,
        store=store,
        aggregator=aggregator,
        efficiency=efficiency,
        regression=regression,
        weight_manager=weight_manager,
        engine=engine,
        tracer=tracer,
        error_handler=error_handler,
        validation_logger=validation_logger,
        data_validator=data_validator,
        verifier=verifier,
        sample_analyzer=sample_analyzer,
        accuracy_tester=accuracy_tester,
        health_monitor=health_monitor,
        reporter=AnalysisReporter(),
        regression_auditor=regression_auditor,
        cache=ProfileCache(cache_dir) if cache_dir else None,
    )
