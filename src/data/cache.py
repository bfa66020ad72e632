"""Parquet snapshots of season efficiency profiles.

A season run can write its profiles to disk so later analysis (reports,
notebooks, comparisons across runs) reads them without recomputing.
"""

import logging
from pathlib import Path
from typing import Optional

import polars as pl

from src.models.efficiency import TeamEfficiencyProfile

logger = logging.getLogger(__name__)


class ProfileCache:
    """Disk-based parquet cache of TeamEfficiencyProfile snapshots."""

    def __init__(self, cache_dir: str = ".cache/profiles"):
        """Initialize the cache.

        Args:
            cache_dir: Directory to store snapshot files
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Initialized profile cache at {self.cache_dir.absolute()}")

    def _path(self, season: int) -> Path:
        return self.cache_dir / f"profiles_{season}.parquet"

    def has(self, season: int) -> bool:
        return self._path(season).exists()

    def write(self, season: int, profiles: dict[str, TeamEfficiencyProfile]) -> Optional[Path]:
        """Write a season snapshot. Returns the file path, or None if nothing to write."""
        if not profiles:
            return None
        rows = [profiles[team].to_dict() for team in sorted(profiles)]
        path = self._path(season)
        try:
            pl.DataFrame(rows).write_parquet(path)
        except Exception as e:
            logger.warning(f"Failed to write profile snapshot for {season}: {e}")
            return None
        logger.info(f"Wrote {len(rows)} profiles to {path}")
        return path

    def read(self, season: int) -> dict[str, TeamEfficiencyProfile]:
        """Read a season snapshot (empty dict when missing or unreadable)."""
        path = self._path(season)
        if not path.exists():
            return {}
        try:
            rows = pl.read_parquet(path).to_dicts()
        except Exception as e:
            logger.warning(f"Failed to read profile snapshot {path}: {e}")
            return {}
        return {row["team"]: TeamEfficiencyProfile.from_dict(row) for row in rows}

    def clear(self, season: Optional[int] = None) -> int:
        """Delete snapshots (one season or all). Returns files removed."""
        targets = [self._path(season)] if season is not None else list(
            self.cache_dir.glob("profiles_*.parquet")
        )
        removed = 0
        for path in targets:
            if path.exists():
                path.unlink()
                removed += 1
        return removed
