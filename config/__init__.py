"""Configuration package for the CFB efficiency prediction pipeline."""

from .baselines import LEAGUE_BASELINES, LeagueBaselines
from .settings import Settings, load_settings

__all__ = [
    "Settings",
    "load_settings",
    "LeagueBaselines",
    "LEAGUE_BASELINES",
]
