"""Durable source -> destination identifier ledger."""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import (
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    delete,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import LoadError, MappingError
from ..loaders.sql_loader import INSERT_CHUNK_SIZE, chunked, insert_ignoring_conflicts

logger = logging.getLogger(__name__)


class IdMappingStore:
    """
    Mapping of ``(source_id, entity_type)`` to destination ids.

    The ledger doubles as the idempotency gate: an entry exists exactly when
    a destination row was written for that source record. Entries are
    created with an atomic insert-if-absent so that concurrent runs of the
    same entity type cannot both claim a record.

    Positive lookups are cached in memory. Misses are never cached, since a
    referent may be migrated later by another run.
    """

    def __init__(self, engine: Engine, table_name: str = "_migration_id_map"):
        """
        Initialize the store.

        Args:
            engine: SQLAlchemy engine for the database holding the ledger
            table_name: Name of the ledger table
        """
        self.engine = engine
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column("source_id", String, nullable=False),
            Column("entity_type", String, nullable=False),
            Column("destination_id", String, nullable=False),
            Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
            UniqueConstraint("source_id", "entity_type", name=f"uq_{table_name}_source"),
        )
        self._cache: Dict[Tuple[str, str], str] = {}

    def create_table(self) -> None:
        """Create the ledger table if it does not exist."""
        try:
            self.metadata.create_all(self.engine, tables=[self.table], checkfirst=True)
        except SQLAlchemyError as e:
            raise MappingError(f"Could not create {self.table.name}: {e}") from e

    def is_migrated(self, source_id: str, entity_type: str) -> bool:
        """Check whether a source record already has a destination row."""
        return self.get_destination_id(source_id, entity_type) is not None

    def get_destination_id(self, source_id: Optional[str], entity_type: str) -> Optional[str]:
        """
        Look up the destination id for one source record.

        Returns:
            The destination id, or None if the record has not been migrated
        """
        if not source_id:
            return None

        cached = self._cache.get((entity_type, source_id))
        if cached is not None:
            return cached

        stmt = select(self.table.c.destination_id).where(
            self.table.c.source_id == source_id,
            self.table.c.entity_type == entity_type,
        )

        try:
            with self.engine.connect() as conn:
                destination_id = conn.execute(stmt).scalar()
        except SQLAlchemyError as e:
            raise MappingError(f"Mapping lookup failed for {entity_type} {source_id}: {e}") from e

        if destination_id is not None:
            self._cache[(entity_type, source_id)] = destination_id
        return destination_id

    def get_destination_ids(self, source_ids: Iterable[Optional[str]], entity_type: str) -> Dict[str, str]:
        """
        Batch lookup. Ids that are empty or unmapped are absent from the result.
        """
        wanted = [sid for sid in dict.fromkeys(source_ids) if sid]
        found: Dict[str, str] = {}
        missing: List[str] = []

        for sid in wanted:
            cached = self._cache.get((entity_type, sid))
            if cached is not None:
                found[sid] = cached
            else:
                missing.append(sid)

        if not missing:
            return found

        try:
            with self.engine.connect() as conn:
                for chunk in chunked(missing):
                    stmt = select(self.table.c.source_id, self.table.c.destination_id).where(
                        self.table.c.entity_type == entity_type,
                        self.table.c.source_id.in_(chunk),
                    )
                    for source_id, destination_id in conn.execute(stmt):
                        found[source_id] = destination_id
                        self._cache[(entity_type, source_id)] = destination_id
        except SQLAlchemyError as e:
            raise MappingError(f"Batch mapping lookup failed for {entity_type}: {e}") from e

        return found

    def migrated_ids(self, source_ids: Iterable[str], entity_type: str) -> Set[str]:
        """Return the subset of ``source_ids`` that already have a mapping."""
        return set(self.get_destination_ids(source_ids, entity_type))

    def record_mapping(self, source_id: str, destination_id: str, entity_type: str) -> bool:
        """
        Record a mapping unless one already exists.

        Returns:
            True if this call created the entry, False if it was already there
        """
        inserted = self._insert_if_absent([(source_id, destination_id)], entity_type)

        if inserted:
            self._cache[(entity_type, source_id)] = destination_id
            return True

        # Keep the cache pointing at whichever row won.
        self._cache.pop((entity_type, source_id), None)
        return False

    def record_mappings(self, pairs: Iterable[Tuple[str, str]], entity_type: str) -> int:
        """
        Record many ``(source_id, destination_id)`` pairs.

        Returns:
            Number of entries created
        """
        pairs = [(s, d) for s, d in pairs if s and d]
        if not pairs:
            return 0

        created = 0
        for chunk in chunked(pairs, INSERT_CHUNK_SIZE):
            created += self._insert_if_absent(chunk, entity_type)

        for source_id, _ in pairs:
            self._cache.pop((entity_type, source_id), None)
        return created

    def _insert_if_absent(self, pairs: List[Tuple[str, str]], entity_type: str) -> int:
        now = datetime.utcnow()
        rows = [
            {
                "source_id": source_id,
                "entity_type": entity_type,
                "destination_id": destination_id,
                "created_at": now,
            }
            for source_id, destination_id in pairs
        ]

        try:
            stmt = insert_ignoring_conflicts(
                self.engine, self.table, ["source_id", "entity_type"]
            ).values(rows)
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except (SQLAlchemyError, LoadError) as e:
            raise MappingError(f"Could not record {entity_type} mapping: {e}") from e

        return max(result.rowcount, 0)

    def preload(self, entity_type: str) -> int:
        """
        Load every mapping of an entity type into the cache.

        Returns:
            Number of entries loaded
        """
        stmt = select(self.table.c.source_id, self.table.c.destination_id).where(
            self.table.c.entity_type == entity_type
        )

        loaded = 0
        try:
            with self.engine.connect() as conn:
                for source_id, destination_id in conn.execute(stmt):
                    self._cache[(entity_type, source_id)] = destination_id
                    loaded += 1
        except SQLAlchemyError as e:
            raise MappingError(f"Could not preload {entity_type} mappings: {e}") from e

        logger.info(f"Preloaded {loaded} {entity_type} mappings")
        return loaded

    def clear_cache(self) -> None:
        self._cache.clear()

    def delete_mappings(self, entity_type: str) -> int:
        """
        Delete every mapping of an entity type. Destination rows are untouched.

        Returns:
            Number of entries deleted
        """
        stmt = delete(self.table).where(self.table.c.entity_type == entity_type)

        try:
            with self.engine.begin() as conn:
                deleted = conn.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise MappingError(f"Could not reset {entity_type} mappings: {e}") from e

        self._cache = {k: v for k, v in self._cache.items() if k[0] != entity_type}
        logger.warning(f"Deleted {deleted} {entity_type} mappings")
        return deleted

    def count(self, entity_type: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(self.table)
        if entity_type:
            stmt = stmt.where(self.table.c.entity_type == entity_type)

        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar() or 0)
        except SQLAlchemyError as e:
            raise MappingError(f"Could not count mappings: {e}") from e

    def counts_by_type(self) -> Dict[str, int]:
        """Number of mappings per entity type."""
        stmt = (
            select(self.table.c.entity_type, func.count())
            .group_by(self.table.c.entity_type)
            .order_by(self.table.c.entity_type)
        )

        try:
            with self.engine.connect() as conn:
                return {entity_type: int(n) for entity_type, n in conn.execute(stmt)}
        except SQLAlchemyError as e:
            raise MappingError(f"Could not count mappings: {e}") from e
