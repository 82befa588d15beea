"""Data models for the migration engine."""

from .migration import (
    MAX_PAGE_SIZE,
    MigrationConfig,
    MigrationRun,
    MigrationStep,
    MigrationStatus,
)
from .record import (
    JunctionRows,
    MigrationStats,
    RecordStatus,
    SourceRecord,
    TransformedRecord,
)

__all__ = [
    "MAX_PAGE_SIZE",
    "MigrationConfig",
    "MigrationRun",
    "MigrationStep",
    "MigrationStatus",
    "JunctionRows",
    "MigrationStats",
    "RecordStatus",
    "SourceRecord",
    "TransformedRecord",
]
