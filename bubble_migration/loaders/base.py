"""Base loader interface for the destination store."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple
import logging

from ..exceptions import LoadError
from ..models.record import TransformedRecord

logger = logging.getLogger(__name__)


class BaseLoader(ABC):
    """
    Base class for destination stores.

    Loaders write transformed rows keyed by table name and column set and
    hand back the destination-assigned identifier. They know nothing about
    the mapping ledger; ordering of writes is the driver's job.
    """

    id_column = "id"

    @abstractmethod
    def insert_record(self, table: str, row: Dict[str, Any]) -> str:
        """
        Insert a single row.

        Args:
            table: Destination table
            row: Column -> value

        Returns:
            The destination identifier of the new row

        Raises:
            LoadError: If the write fails
        """
        pass

    @abstractmethod
    def insert_rows_if_absent(
        self,
        table: str,
        rows: List[Dict[str, Any]],
        conflict_columns: Optional[List[str]] = None
    ) -> int:
        """
        Insert rows, ignoring ones that collide on ``conflict_columns``.

        Returns:
            Number of rows actually inserted
        """
        pass

    @abstractmethod
    def update_record(self, table: str, destination_id: str, values: Dict[str, Any]) -> bool:
        """Update one row in place. Returns False if the row does not exist."""
        pass

    @abstractmethod
    def delete_record(self, table: str, destination_id: str) -> bool:
        """Delete one row. Returns True if a row was deleted."""
        pass

    @abstractmethod
    def find_null_ids(self, table: str, column: str, destination_ids: Iterable[str]) -> Set[str]:
        """Return the subset of ``destination_ids`` whose ``column`` is NULL."""
        pass

    @abstractmethod
    def iter_key_pairs(
        self,
        table: str,
        key_column: str,
        batch_size: int = 1000
    ) -> Iterator[List[Tuple[str, str]]]:
        """Stream ``(destination_id, key)`` pairs for rows with a non-NULL key."""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Number of rows in a table."""
        pass

    def validate_connection(self) -> bool:
        """Validate the connection to the destination store."""
        return True

    def write_relations(self, record: TransformedRecord, parent_id: str) -> int:
        """
        Write the junction rows attached to a freshly inserted record.

        A failing junction table is logged and skipped; the parent row and
        its mapping are already durable at this point.

        Returns:
            Number of junction rows inserted
        """
        inserted = 0

        for relation in record.relations:
            if not relation.rows:
                continue

            try:
                inserted += self.insert_rows_if_absent(
                    relation.table,
                    relation.bind(parent_id),
                    relation.conflict_columns,
                )
            except LoadError as e:
                logger.warning(
                    f"Failed to insert {relation.table} rows for "
                    f"{record.entity_type} {record.source_id}: {e}"
                )

        return inserted
