"""SQLAlchemy loader for the relational destination store."""

import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from sqlalchemy import column, delete, func, insert, select, table, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.expression import TableClause

from .base import BaseLoader
from ..exceptions import LoadError

logger = logging.getLogger(__name__)

# Keeps IN (...) lists and multi-row inserts under driver parameter limits.
IN_CHUNK_SIZE = 500
INSERT_CHUNK_SIZE = 200


def chunked(values: List[Any], size: int = IN_CHUNK_SIZE) -> Iterator[List[Any]]:
    """Split a list into consecutive chunks."""
    for i in range(0, len(values), size):
        yield values[i:i + size]


def insert_ignoring_conflicts(engine: Engine, target: Any, conflict_columns: Optional[List[str]] = None):
    """
    Build an INSERT that silently skips rows violating a unique constraint.

    Supported for PostgreSQL and SQLite, the two backends the engine runs on.
    """
    dialect = engine.dialect.name

    if dialect == "postgresql":
        stmt = postgresql.insert(target)
    elif dialect == "sqlite":
        stmt = sqlite.insert(target)
    else:
        raise LoadError(f"Insert-if-absent is not supported on {dialect}")

    return stmt.on_conflict_do_nothing(index_elements=conflict_columns)


class SQLLoader(BaseLoader):
    """
    Destination loader issuing parameterised SQL through SQLAlchemy Core.

    Tables are addressed with lightweight ``table()``/``column()`` constructs
    built from each row's own keys, so the loader never reflects or creates
    schema. Every call runs in its own transaction.
    """

    def __init__(
        self,
        engine: Engine,
        id_column: str = "id",
        id_factory: Optional[Callable[[], str]] = None
    ):
        """
        Initialize the loader.

        Args:
            engine: SQLAlchemy engine for the destination database
            id_column: Primary-key column of every entity table
            id_factory: Generates ids client-side; when None the database
                default generates them and they are read back with RETURNING
        """
        self.engine = engine
        self.id_column = id_column
        self.id_factory = id_factory

    def _table(self, name: str, columns: Iterable[str]) -> TableClause:
        names = list(dict.fromkeys([self.id_column, *columns]))
        return table(name, *[column(c) for c in names])

    def insert_record(self, table_name: str, row: Dict[str, Any]) -> str:
        values = dict(row)
        if self.id_factory and values.get(self.id_column) is None:
            values[self.id_column] = self.id_factory()

        target = self._table(table_name, values.keys())
        stmt = insert(target).values(**values)

        try:
            with self.engine.begin() as conn:
                if values.get(self.id_column) is not None:
                    conn.execute(stmt)
                    return str(values[self.id_column])

                returned = conn.execute(stmt.returning(target.c[self.id_column])).first()
        except SQLAlchemyError as e:
            raise LoadError(f"Insert into {table_name} failed: {e}", table=table_name) from e

        if returned is None:
            raise LoadError(f"Insert into {table_name} returned no id", table=table_name)
        return str(returned[0])

    def insert_rows_if_absent(
        self,
        table_name: str,
        rows: List[Dict[str, Any]],
        conflict_columns: Optional[List[str]] = None
    ) -> int:
        if not rows:
            return 0

        columns = list(dict.fromkeys(key for row in rows for key in row))
        target = table(table_name, *[column(c) for c in columns])
        inserted = 0

        try:
            with self.engine.begin() as conn:
                for chunk in chunked(rows, INSERT_CHUNK_SIZE):
                    stmt = insert_ignoring_conflicts(self.engine, target, conflict_columns).values(chunk)
                    inserted += max(conn.execute(stmt).rowcount, 0)
        except SQLAlchemyError as e:
            raise LoadError(f"Insert into {table_name} failed: {e}", table=table_name) from e

        return inserted

    def update_record(self, table_name: str, destination_id: str, values: Dict[str, Any]) -> bool:
        if not values:
            return False

        target = self._table(table_name, values.keys())
        stmt = (
            update(target)
            .where(target.c[self.id_column] == destination_id)
            .values(**values)
        )

        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            raise LoadError(f"Update of {table_name} {destination_id} failed: {e}", table=table_name) from e

        return result.rowcount > 0

    def delete_record(self, table_name: str, destination_id: str) -> bool:
        target = self._table(table_name, [])
        stmt = delete(target).where(target.c[self.id_column] == destination_id)

        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            raise LoadError(f"Delete from {table_name} failed: {e}", table=table_name) from e

        return result.rowcount > 0

    def find_null_ids(self, table_name: str, column_name: str, destination_ids: Iterable[str]) -> Set[str]:
        ids = [i for i in dict.fromkeys(destination_ids) if i]
        if not ids:
            return set()

        target = self._table(table_name, [column_name])
        found: Set[str] = set()

        try:
            with self.engine.connect() as conn:
                for chunk in chunked(ids):
                    stmt = select(target.c[self.id_column]).where(
                        target.c[self.id_column].in_(chunk),
                        target.c[column_name].is_(None),
                    )
                    found.update(str(row[0]) for row in conn.execute(stmt))
        except SQLAlchemyError as e:
            raise LoadError(f"Lookup in {table_name} failed: {e}", table=table_name) from e

        return found

    def iter_key_pairs(
        self,
        table_name: str,
        key_column: str,
        batch_size: int = 1000
    ) -> Iterator[List[Tuple[str, str]]]:
        target = self._table(table_name, [key_column])
        id_col = target.c[self.id_column]
        last_id = None

        # Keyset pages, so no cursor stays open while the caller writes.
        while True:
            stmt = (
                select(id_col, target.c[key_column])
                .where(target.c[key_column].is_not(None))
                .order_by(id_col)
                .limit(batch_size)
            )
            if last_id is not None:
                stmt = stmt.where(id_col > last_id)

            try:
                with self.engine.connect() as conn:
                    rows = conn.execute(stmt).all()
            except SQLAlchemyError as e:
                raise LoadError(f"Scan of {table_name} failed: {e}", table=table_name) from e

            if not rows:
                return

            yield [(str(row[0]), str(row[1])) for row in rows]
            last_id = rows[-1][0]

            if len(rows) < batch_size:
                return

    def count(self, table_name: str) -> int:
        stmt = select(func.count()).select_from(table(table_name))

        try:
            with self.engine.connect() as conn:
                return int(conn.execute(stmt).scalar() or 0)
        except SQLAlchemyError as e:
            raise LoadError(f"Count of {table_name} failed: {e}", table=table_name) from e

    def validate_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Destination database unreachable: {e}")
            return False
