"""Second-pass foreign-key linking and orphan reconciliation."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .id_mapper import IdMappingStore
from .transformer import MIGRATION_ORDER, EntitySpec, get_entity_spec
from ..exceptions import LoadError
from ..extractors.base import BaseExtractor
from ..loaders.base import BaseLoader
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


@dataclass
class LinkStats:
    """Outcome of one linking pass over an entity type."""
    updated: int = 0
    already_linked: int = 0
    unresolved: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "updated": self.updated,
            "already_linked": self.already_linked,
            "unresolved": self.unresolved,
            "failed": self.failed,
        }


@dataclass
class ReconcileStats:
    """Outcome of re-attaching unmapped destination rows to the ledger."""
    scanned: int = 0
    recovered: int = 0
    duplicates: List[str] = field(default_factory=list)  # destination ids

    def to_dict(self) -> Dict[str, object]:
        return {
            "scanned": self.scanned,
            "recovered": self.recovered,
            "duplicates": list(self.duplicates),
        }


class SecondPassLinker:
    """
    Fills foreign keys that were left NULL because their referent had not
    been migrated yet.

    Only rows whose column is still NULL are written, so repeated passes
    never rewrite a resolved key.
    """

    def __init__(
        self,
        source: BaseExtractor,
        mapper: IdMappingStore,
        loader: BaseLoader,
        batch_size: int = 100
    ):
        self.source = source
        self.mapper = mapper
        self.loader = loader
        self.batch_size = batch_size

    def link(self, entity_type: str) -> LinkStats:
        """Run one linking pass over an entity type."""
        spec = get_entity_spec(entity_type)
        stats = LinkStats()

        if not spec.links:
            return stats

        logger.info(f"Linking {entity_type} ({len(spec.links)} foreign keys)")

        for batch in self.source.iterate_all(spec.source_type, batch_size=self.batch_size):
            self._link_batch(spec, batch, stats)

        logger.info(
            f"Linking {entity_type} complete: {stats.updated} updated, "
            f"{stats.already_linked} already linked, {stats.unresolved} unresolved, "
            f"{stats.failed} failed"
        )
        return stats

    def _link_batch(self, spec: EntitySpec, batch: List[SourceRecord], stats: LinkStats) -> None:
        owners = self.mapper.get_destination_ids([r.id for r in batch], spec.entity_type)
        if not owners:
            return

        for link in spec.links:
            wanted = {
                record.id: link.source_value(record)
                for record in batch
                if record.id in owners and link.source_value(record)
            }
            if not wanted:
                continue

            referents = self.mapper.get_destination_ids(wanted.values(), link.target_type)
            candidates = [owners[source_id] for source_id in wanted]

            try:
                pending = self.loader.find_null_ids(spec.table, link.column, candidates)
            except LoadError as e:
                logger.warning(f"Could not inspect {spec.table}.{link.column}: {e}")
                stats.failed += len(candidates)
                continue

            stats.already_linked += len(candidates) - len(pending)

            for source_id, referent_source_id in wanted.items():
                owner_id = owners[source_id]
                if owner_id not in pending:
                    continue

                referent_id = referents.get(referent_source_id)
                if referent_id is None:
                    stats.unresolved += 1
                    logger.debug(
                        f"{spec.entity_type} {source_id}: {link.column} -> "
                        f"{link.target_type} {referent_source_id} not migrated"
                    )
                    continue

                try:
                    self.loader.update_record(spec.table, owner_id, {link.column: referent_id})
                    stats.updated += 1
                except LoadError as e:
                    stats.failed += 1
                    logger.warning(
                        f"Failed to link {spec.entity_type} {source_id}.{link.column}: {e}"
                    )

    def link_all(self, entity_types: Optional[Iterable[str]] = None) -> Dict[str, LinkStats]:
        """Link every requested entity type that declares links, in migration order."""
        requested = set(entity_types) if entity_types is not None else set(MIGRATION_ORDER)
        results = {}

        for entity_type in MIGRATION_ORDER:
            if entity_type in requested and get_entity_spec(entity_type).links:
                results[entity_type] = self.link(entity_type)

        return results

    def reconcile(self, entity_type: str) -> ReconcileStats:
        """
        Re-attach destination rows that were written but never mapped.

        A crash between the row write and the mapping write leaves a row
        carrying its ``bubble_id`` but no ledger entry. The first such row per
        ``bubble_id`` is recorded in the ledger; any further rows for the same
        ``bubble_id`` are reported as duplicates and left for an operator.
        """
        spec = get_entity_spec(entity_type)
        stats = ReconcileStats()
        seen = set()

        for pairs in self.loader.iter_key_pairs(spec.table, "bubble_id"):
            stats.scanned += len(pairs)
            mapped = self.mapper.get_destination_ids([bubble_id for _, bubble_id in pairs], entity_type)

            for destination_id, bubble_id in pairs:
                if bubble_id in mapped:
                    if mapped[bubble_id] != destination_id:
                        stats.duplicates.append(destination_id)
                    continue

                if bubble_id in seen:
                    stats.duplicates.append(destination_id)
                    continue

                seen.add(bubble_id)
                if self.mapper.record_mapping(bubble_id, destination_id, entity_type):
                    stats.recovered += 1
                else:
                    stats.duplicates.append(destination_id)

        if stats.duplicates:
            logger.warning(
                f"{len(stats.duplicates)} duplicate {entity_type} rows found in {spec.table}; "
                f"they are not mapped and were left in place"
            )
        logger.info(f"Reconciled {entity_type}: {stats.recovered} recovered of {stats.scanned} scanned")
        return stats
