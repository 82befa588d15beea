"""Service layer for the migration engine."""

from .id_mapper import IdMappingStore
from .transformer import (
    ENTITY_SPECS,
    MIGRATION_ORDER,
    EntitySpec,
    LinkSpec,
    get_entity_spec,
)
from .linker import LinkStats, ReconcileStats, SecondPassLinker

__all__ = [
    "IdMappingStore",
    "ENTITY_SPECS",
    "MIGRATION_ORDER",
    "EntitySpec",
    "LinkSpec",
    "get_entity_spec",
    "LinkStats",
    "ReconcileStats",
    "SecondPassLinker",
]
