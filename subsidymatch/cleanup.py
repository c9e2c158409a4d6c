"""
Cleanup module for removing expired classical baseline entries.

Expired entries are never served, but they stay in the baseline_scores
table until purged. This keeps the cache table from growing without bound.
"""

from pathlib import Path
from typing import Tuple

from storage.repositories.baselines import SqlBaselineCache

from .logger import get_logger

logger = get_logger()


def purge_expired_baselines(db_path: Path) -> Tuple[int, int]:
    """
    Remove baseline cache entries whose TTL has elapsed.

    Args:
        db_path: Path to the SQLite database holding the baseline cache

    Returns:
        Tuple of (entries_before, entries_after)
        Difference = entries_removed
    """
    try:
        before, after = SqlBaselineCache(db_path).purge_expired()
        logger.info(
            f"Baseline cleanup complete: {before - after} removed, {after} remaining",
            entries_before=before,
            entries_removed=before - after,
            entries_after=after,
        )
        return (before, after)

    except Exception as e:
        logger.error(f"Baseline cleanup failed: {e}", error=str(e), db_path=str(db_path))
        return (0, 0)
