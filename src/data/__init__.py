"""Data package: record types, game source, aggregation, and validation."""

from .models import GameRecord, RawGameStat, TeamSeasonAggregate, DataQualityReport, HistoricalPattern
from .source import DataFrameSource
from .aggregator import StatisticsAggregator
from .validators import DataValidator

__all__ = [
    "GameRecord",
    "RawGameStat",
    "TeamSeasonAggregate",
    "DataQualityReport",
    "HistoricalPattern",
    "DataFrameSource",
    "StatisticsAggregator",
    "DataValidator",
]
