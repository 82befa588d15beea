"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class RecordStatus(str, Enum):
    """Outcome of a single record within a migration run."""
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SourceRecord:
    """A record extracted from the source system."""
    id: str
    entity_type: str  # Bubble object name, e.g. "sheetstatuses"
    data: Dict[str, Any]


@dataclass
class JunctionRows:
    """Rows for a many-to-many table hanging off a freshly written record.

    ``rows`` omit ``parent_column``; it is filled with the parent's
    destination id once the parent row exists.
    """
    table: str
    parent_column: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    conflict_columns: Optional[List[str]] = None

    def bind(self, parent_id: str) -> List[Dict[str, Any]]:
        """Return the rows with the parent column set."""
        return [{self.parent_column: parent_id, **row} for row in self.rows]


@dataclass
class TransformedRecord:
    """A source record reshaped into a destination row."""
    source_id: str
    entity_type: str  # mapping-store discriminator, e.g. "sheet_status"
    table: str
    data: Dict[str, Any]
    relations: List[JunctionRows] = field(default_factory=list)
    link_columns: List[str] = field(default_factory=list)  # foreign-key columns
    warnings: List[str] = field(default_factory=list)

    @property
    def pending_links(self) -> List[str]:
        """Foreign-key columns left empty for a later linking pass."""
        return [column for column in self.link_columns if self.data.get(column) is None]


@dataclass
class MigrationStats:
    """Counters for one entity-type run. Never persisted."""
    migrated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.migrated + self.skipped + self.failed

    def record(self, status: RecordStatus) -> None:
        """Count one record outcome."""
        if status == RecordStatus.MIGRATED:
            self.migrated += 1
        elif status == RecordStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def __add__(self, other: "MigrationStats") -> "MigrationStats":
        return MigrationStats(
            migrated=self.migrated + other.migrated,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
        )

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary representation."""
        return {
            "migrated": self.migrated,
            "skipped": self.skipped,
            "failed": self.failed,
        }
