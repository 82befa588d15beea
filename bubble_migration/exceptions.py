"""Exceptions raised by the migration engine."""

from typing import Optional


class MigrationError(Exception):
    """Base class for all migration errors."""


class ConfigError(MigrationError):
    """Required configuration is missing or invalid."""


class SourceError(MigrationError):
    """A page could not be fetched from the source system.

    Fatal to the current run. Records already mapped stay mapped, so the run
    can simply be re-invoked.
    """

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        status_code: Optional[int] = None,
        cursor: Optional[int] = None
    ):
        super().__init__(message)
        self.entity_type = entity_type
        self.status_code = status_code
        self.cursor = cursor


class TransformError(MigrationError):
    """A source record could not be narrowed into its destination shape."""

    def __init__(self, message: str, entity_type: str, source_id: Optional[str] = None):
        super().__init__(message)
        self.entity_type = entity_type
        self.source_id = source_id


class LoadError(MigrationError):
    """A destination write failed."""

    def __init__(self, message: str, table: Optional[str] = None):
        super().__init__(message)
        self.table = table


class MappingError(MigrationError):
    """The ID mapping ledger could not be read or written."""
