"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from enum import Enum
from datetime import datetime
import os
import uuid

from .record import MigrationStats

# Bubble's Data API refuses page sizes above this.
MAX_PAGE_SIZE = 100

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


class MigrationStatus(str, Enum):
    """Status of a migration run or step."""
    PENDING = "pending"
    STREAMING = "streaming"
    LINKING = "linking"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class MigrationStep:
    """A single entity-type run (or linking pass) within a migration."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    entity: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_expected: int = 0
    stats: MigrationStats = field(default_factory=MigrationStats)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "entity": self.entity,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_expected": self.total_expected,
            **self.stats.to_dict(),
            "errors": self.errors,
            "warnings": self.warnings,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class MigrationRun:
    """A complete migration invocation, possibly spanning several entity types."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False

    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    steps: List[MigrationStep] = field(default_factory=list)
    current_step: Optional[str] = None

    errors: List[Dict[str, Any]] = field(default_factory=list)
    link_results: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        totals = self.totals
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "steps": [s.to_dict() for s in self.steps],
            "current_step": self.current_step,
            "total_migrated": totals.migrated,
            "total_skipped": totals.skipped,
            "total_failed": totals.failed,
            "errors": self.errors,
            "link_results": self.link_results,
        }

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def totals(self) -> MigrationStats:
        """Sum of the stats of every step."""
        total = MigrationStats()
        for step in self.steps:
            total = total + step.stats
        return total

    def add_step(self, name: str, entity: str) -> MigrationStep:
        """Add a new step to the migration."""
        step = MigrationStep(name=name, entity=entity)
        self.steps.append(step)
        return step


@dataclass
class MigrationConfig:
    """Process-wide configuration, built once at start-up and passed down."""
    source_api_url: str = ""
    source_api_token: Optional[str] = None
    database_url: str = ""

    # Execution options
    batch_size: int = MAX_PAGE_SIZE
    dry_run: bool = False
    strict: bool = False

    # Source transport
    rate_limit_delay: float = 0.05  # seconds between page requests
    max_retries: int = 5
    backoff_factor: float = 1.0
    request_timeout: float = 30.0

    # Output
    output_dir: str = "./data"
    save_report: bool = True

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when usable)."""
        errors = []

        if not self.source_api_url:
            errors.append("BUBBLE_API_URL is required")

        if not self.source_api_token:
            errors.append("BUBBLE_API_TOKEN is required")

        if not self.database_url:
            errors.append("DATABASE_URL is required")

        if self.batch_size < 1:
            errors.append("Batch size must be at least 1")

        return errors

    @property
    def page_size(self) -> int:
        """Batch size clamped to what the source system accepts."""
        return max(1, min(self.batch_size, MAX_PAGE_SIZE))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (the API token is never included)."""
        return {
            "source_api_url": self.source_api_url,
            "database_url": self.database_url,
            "batch_size": self.batch_size,
            "dry_run": self.dry_run,
            "strict": self.strict,
            "rate_limit_delay": self.rate_limit_delay,
            "max_retries": self.max_retries,
            "backoff_factor": self.backoff_factor,
            "request_timeout": self.request_timeout,
            "output_dir": self.output_dir,
            "save_report": self.save_report,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        return cls(
            source_api_url=data.get("source_api_url", ""),
            source_api_token=data.get("source_api_token"),
            database_url=data.get("database_url", ""),
            batch_size=int(data.get("batch_size", MAX_PAGE_SIZE)),
            dry_run=data.get("dry_run", False),
            strict=data.get("strict", False),
            rate_limit_delay=float(data.get("rate_limit_delay", 0.05)),
            max_retries=int(data.get("max_retries", 5)),
            backoff_factor=float(data.get("backoff_factor", 1.0)),
            request_timeout=float(data.get("request_timeout", 30.0)),
            output_dir=data.get("output_dir", "./data"),
            save_report=data.get("save_report", True),
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MigrationConfig":
        """Create from environment variables."""
        env = os.environ if environ is None else environ

        return cls(
            source_api_url=env.get("BUBBLE_API_URL", "").rstrip("/"),
            source_api_token=env.get("BUBBLE_API_TOKEN") or None,
            database_url=env.get("DATABASE_URL", ""),
            batch_size=int(env.get("MIGRATION_BATCH_SIZE") or MAX_PAGE_SIZE),
            dry_run=_env_bool(env.get("DRY_RUN")),
            strict=_env_bool(env.get("MIGRATION_STRICT")),
            rate_limit_delay=float(env.get("MIGRATION_RATE_LIMIT_DELAY") or 0.05),
            output_dir=env.get("MIGRATION_OUTPUT_DIR") or "./data",
        )
