"""
Importer-specific SQLAlchemy models: runs, staged rows and merge history.
"""

from .schema import (
    ImportRow,
    ImportRowStatus,
    ImportRun,
    ImportRunStatus,
    MergeLog,
    MergeLogImmutableError,
)

__all__ = [
    "ImportRow",
    "ImportRowStatus",
    "ImportRun",
    "ImportRunStatus",
    "MergeLog",
    "MergeLogImmutableError",
]
