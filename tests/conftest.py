"""Shared pytest fixtures.

Tests run against an in-memory SQLite database through SQLAlchemy and an
in-memory fake of the paginated Bubble source.
"""

import uuid
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from bubble_migration.exceptions import SourceError
from bubble_migration.extractors.base import BaseExtractor, ListPage
from bubble_migration.loaders.sql_loader import SQLLoader
from bubble_migration.models.migration import MigrationConfig
from bubble_migration.models.record import SourceRecord
from bubble_migration.services.id_mapper import IdMappingStore
from bubble_migration.services.transformer import ENTITY_SPECS


# Sample record that every transform accepts; its output keys are the columns.
SAMPLE_RECORD = {
    "_id": "sample",
    "authentication": {"email": {"email": "sample@example.com"}},
}

JUNCTION_TABLES = {
    "association_companies": ("association_id", "company_id"),
    "tag_hidden_companies": ("tag_id", "company_id"),
    "question_tags": ("question_id", "tag_id"),
    "question_companies": ("question_id", "company_id"),
    "sheet_shareable_companies": ("sheet_id", "company_id"),
    "sheet_tags": ("sheet_id", "tag_id"),
    "sheet_supplier_users_assigned": ("sheet_id", "user_id"),
    "answer_shareable_companies": ("answer_id", "company_id"),
    "request_tags": ("request_id", "tag_id"),
}


class NullResolver:
    """Resolver that knows no mappings."""

    def get_destination_id(self, source_id, entity_type):
        return None

    def get_destination_ids(self, source_ids, entity_type):
        return {}


class FakeSource(BaseExtractor):
    """In-memory paginated source keyed by Bubble object name."""

    def __init__(self, data: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.data = data or {}
        self.calls: List[Dict[str, Any]] = []
        self.fail_at: Dict[str, int] = {}  # source type -> cursor that raises
        self.stale_remaining = False

    def add(self, source_type: str, *records: Dict[str, Any]) -> None:
        self.data.setdefault(source_type, []).extend(records)

    def list(self, entity_type, cursor=0, limit=100, constraints=None) -> ListPage:
        self.calls.append({"entity_type": entity_type, "cursor": cursor, "limit": limit})

        if self.fail_at.get(entity_type) == cursor:
            raise SourceError(
                f"Bubble API error for {entity_type} at cursor {cursor}: 500",
                entity_type=entity_type,
                status_code=500,
                cursor=cursor,
            )

        items = self.data.get(entity_type, [])
        page = items[cursor:cursor + limit]
        remaining = max(0, len(items) - cursor - len(page))
        if self.stale_remaining:
            remaining += 5

        return ListPage(
            results=[SourceRecord(id=i.get("_id") or "", entity_type=entity_type, data=i) for i in page],
            count=len(page),
            remaining=remaining,
            cursor=cursor,
        )


def create_entity_tables(engine) -> None:
    """Create one table per entity with the columns its transform emits."""
    resolver = NullResolver()

    with engine.begin() as conn:
        for spec in ENTITY_SPECS.values():
            record = SourceRecord(id="sample", entity_type=spec.source_type, data=SAMPLE_RECORD)
            columns = spec.transform(record, resolver).data.keys()
            column_sql = ", ".join(f'"{c}"' for c in columns)
            conn.execute(text(f'CREATE TABLE "{spec.table}" (id TEXT PRIMARY KEY, {column_sql})'))

        for table, (parent, child) in JUNCTION_TABLES.items():
            conn.execute(text(
                f'CREATE TABLE "{table}" ("{parent}" TEXT, "{child}" TEXT, UNIQUE ("{parent}", "{child}"))'
            ))

        conn.execute(text(
            'CREATE TABLE "sheet_questions" (sheet_id TEXT, question_id TEXT, order_number INTEGER, '
            'UNIQUE (sheet_id, question_id))'
        ))
        conn.execute(text(
            'CREATE TABLE "answer_text_choices" (answer_id TEXT, text_choice TEXT, order_number INTEGER)'
        ))


def rows(engine, table: str, order_by: str = "bubble_id") -> List[Dict[str, Any]]:
    """Every row of a table as dicts."""
    with engine.connect() as conn:
        result = conn.execute(text(f'SELECT * FROM "{table}" ORDER BY "{order_by}"'))
        return [dict(r._mapping) for r in result]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_entity_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def mapper(engine):
    store = IdMappingStore(engine)
    store.create_table()
    return store


@pytest.fixture
def loader(engine):
    return SQLLoader(engine, id_factory=lambda: str(uuid.uuid4()))


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def config(tmp_path):
    return MigrationConfig(
        source_api_url="https://example.test/version-test/api/1.1",
        source_api_token="test-token",
        database_url="sqlite://",
        batch_size=2,
        rate_limit_delay=0,
        output_dir=str(tmp_path),
        save_report=False,
    )
