"""Model components package.

- EfficiencyCalculator: opponent-relative efficiency profiles per team and season
- RegressionAnalyzer: per-metric and multiple regression of points on efficiency features
"""

from .efficiency import EfficiencyCalculator, TeamEfficiencyProfile
from .regression import RegressionAnalyzer, RegressionAnalysisResult, MetricRegressionResult

__all__ = [
    "EfficiencyCalculator",
    "TeamEfficiencyProfile",
    "RegressionAnalyzer",
    "RegressionAnalysisResult",
    "MetricRegressionResult",
]
