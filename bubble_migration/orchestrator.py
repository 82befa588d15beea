"""Migration orchestrator - drives entity migrations in dependency order."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from .exceptions import LoadError, MigrationError, TransformError
from .extractors.base import BaseExtractor
from .loaders.base import BaseLoader
from .models.migration import MigrationConfig, MigrationRun, MigrationStatus, MigrationStep
from .models.record import MigrationStats, RecordStatus, SourceRecord
from .services.id_mapper import IdMappingStore
from .services.linker import SecondPassLinker
from .services.transformer import MIGRATION_ORDER, EntitySpec, get_entity_spec

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class EntityMigrator:
    """
    Migrates one entity type from the source into the destination.

    Per record: skip if already mapped, otherwise transform, write the row,
    then record the mapping. A record that fails to transform or write is
    counted and the run moves on; source and ledger failures end the run.
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: BaseExtractor,
        mapper: IdMappingStore,
        loader: BaseLoader,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """
        Initialize the migrator.

        Args:
            config: Migration configuration (batch size, dry run)
            source: Paginated source client
            mapper: Identifier mapping store
            loader: Destination store
            progress_callback: Called after every page with
                (processed, total, entity_type)
        """
        self.config = config
        self.source = source
        self.mapper = mapper
        self.loader = loader
        self.progress_callback = progress_callback
        self._stop_requested = False

    def request_stop(self) -> None:
        """Ask the running migration to stop after the current page."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def migrate(self, entity_type: str, step: Optional[MigrationStep] = None) -> MigrationStats:
        """
        Migrate every source record of an entity type.

        Args:
            entity_type: Mapping-store discriminator, e.g. "tag"
            step: Run step to record status, counts and errors on

        Returns:
            Final migrated/skipped/failed counts

        Raises:
            SourceError: If a page could not be fetched
            MappingError: If the mapping ledger is unavailable
        """
        spec = get_entity_spec(entity_type)
        step = step or MigrationStep(name=f"Migrate {entity_type}", entity=entity_type)
        stats = step.stats
        step.started_at = datetime.utcnow()
        step.status = MigrationStatus.STREAMING
        self._stop_requested = False

        try:
            total = self.source.count_all(spec.source_type)
            step.total_expected = total
            logger.info(f"Found {total} {entity_type} records to migrate")

            if spec.preload and not self.config.dry_run:
                for target_type in sorted({link.target_type for link in spec.links}):
                    self.mapper.preload(target_type)

            for batch in self.source.iterate_all(spec.source_type, batch_size=self.config.page_size):
                self._migrate_batch(spec, batch, step)
                self._report_progress(stats.processed, total, entity_type)

                if self._stop_requested:
                    step.status = MigrationStatus.CANCELLED
                    logger.warning(f"Stopping {entity_type} migration on request")
                    break

        except MigrationError as e:
            step.status = MigrationStatus.FAILED
            step.errors.append({"record_id": None, "error": str(e)})
            logger.error(f"{entity_type} migration aborted: {e}")
            raise

        finally:
            step.completed_at = datetime.utcnow()

        if step.status != MigrationStatus.CANCELLED:
            step.status = MigrationStatus.COMPLETED

        logger.info(
            f"{entity_type} migration complete: {stats.migrated} migrated, "
            f"{stats.skipped} skipped, {stats.failed} failed"
        )
        return stats

    def _migrate_batch(self, spec: EntitySpec, batch: List[SourceRecord], step: MigrationStep) -> None:
        done = self.mapper.migrated_ids([r.id for r in batch], spec.entity_type)

        if not self.config.dry_run:
            self._prefetch_references(spec, batch, done)

        for record in batch:
            status = self._migrate_record(spec, record, done, step)
            step.stats.record(status)

    def _prefetch_references(self, spec: EntitySpec, batch: List[SourceRecord], done: Set[str]) -> None:
        """Warm the mapping cache for every reference in the page."""
        for source_field, target_type in spec.references.items():
            wanted = []
            for record in batch:
                if record.id in done:
                    continue
                value = record.data.get(source_field)
                if isinstance(value, str):
                    wanted.append(value)
                elif isinstance(value, list):
                    wanted.extend(v for v in value if isinstance(v, str))

            if wanted:
                self.mapper.get_destination_ids(wanted, target_type)

    def _migrate_record(
        self,
        spec: EntitySpec,
        record: SourceRecord,
        done: Set[str],
        step: MigrationStep
    ) -> RecordStatus:
        if record.id in done:
            return RecordStatus.SKIPPED

        if self.config.dry_run:
            logger.debug(f"[DRY RUN] Would migrate {spec.entity_type} {record.id}")
            return RecordStatus.MIGRATED

        try:
            transformed = spec.transform(record, self.mapper)
            destination_id = self.loader.insert_record(spec.table, transformed.data)
        except (TransformError, LoadError) as e:
            logger.error(f"Failed to migrate {spec.entity_type} {record.id}: {e}")
            step.errors.append({"record_id": record.id, "error": str(e)})
            return RecordStatus.FAILED

        if not self.mapper.record_mapping(record.id, destination_id, spec.entity_type):
            # Another run mapped this record first; drop our copy of the row.
            logger.warning(
                f"{spec.entity_type} {record.id} was migrated concurrently; "
                f"removing duplicate row {destination_id}"
            )
            try:
                self.loader.delete_record(spec.table, destination_id)
            except LoadError as e:
                logger.error(f"Could not remove duplicate {spec.table} row {destination_id}: {e}")
                step.warnings.append(f"Unmapped duplicate row {destination_id} left in {spec.table}")
            return RecordStatus.SKIPPED

        self.loader.write_relations(transformed, destination_id)

        for warning in transformed.warnings:
            logger.debug(f"{spec.entity_type} {record.id}: {warning}")

        return RecordStatus.MIGRATED

    def _report_progress(self, processed: int, total: int, entity_type: str) -> None:
        pct = (processed / total * 100) if total else 100.0
        logger.info(f"{entity_type}: {processed}/{total} ({pct:.1f}%)")

        if self.progress_callback:
            self.progress_callback(processed, total, entity_type)


class MigrationOrchestrator:
    """
    Runs entity migrations in dependency order, then links forward
    references and writes a JSON report of the run.
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: BaseExtractor,
        mapper: IdMappingStore,
        loader: BaseLoader,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Paginated source client
            mapper: Identifier mapping store
            loader: Destination store
            progress_callback: Forwarded to the entity migrator
        """
        self.config = config
        self.source = source
        self.mapper = mapper
        self.loader = loader
        self.migrator = EntityMigrator(config, source, mapper, loader, progress_callback)
        self.linker = SecondPassLinker(source, mapper, loader, batch_size=config.page_size)
        self.run: Optional[MigrationRun] = None

    def _setup_directories(self):
        """Create output directories."""
        self.logs_dir = Path(self.config.output_dir) / "logs"
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def resolve_order(entity_types: Optional[Iterable[str]] = None) -> List[str]:
        """Return the requested entity types in migration order."""
        if entity_types is None:
            return list(MIGRATION_ORDER)

        requested = list(entity_types)
        for entity_type in requested:
            get_entity_spec(entity_type)
        return [e for e in MIGRATION_ORDER if e in requested]

    def run_migration(
        self,
        entity_types: Optional[Iterable[str]] = None,
        link: bool = True
    ) -> MigrationRun:
        """
        Migrate the requested entity types (default: all).

        A fatal error ends the run with status FAILED; per-record failures
        only show up in the step counts.

        Returns:
            MigrationRun with per-entity steps and link results
        """
        ordered = self.resolve_order(entity_types)

        self.run = MigrationRun(
            name=", ".join(ordered),
            dry_run=self.config.dry_run,
        )
        self.run.started_at = datetime.utcnow()
        self.run.status = MigrationStatus.STREAMING

        if self.config.dry_run:
            logger.warning("DRY RUN MODE - no data will be written")

        try:
            for index, entity_type in enumerate(ordered, start=1):
                logger.info(f"=== Step {index}/{len(ordered)}: {entity_type} ===")
                step = self.run.add_step(name=f"Migrate {entity_type}", entity=entity_type)
                self.run.current_step = step.id

                self.migrator.migrate(entity_type, step)

                if step.status == MigrationStatus.CANCELLED:
                    self.run.status = MigrationStatus.CANCELLED
                    break

            if link and not self.config.dry_run and self.run.status != MigrationStatus.CANCELLED:
                logger.info("=== Linking forward references ===")
                self.run.status = MigrationStatus.LINKING
                self.run.current_step = None
                results = self.linker.link_all(ordered)
                self.run.link_results = {k: v.to_dict() for k, v in results.items()}

            if not self.config.dry_run and self.run.status != MigrationStatus.CANCELLED:
                waiting = self.dependents_outside(ordered)
                if waiting:
                    flags = " ".join(f"--entity {e}" for e in waiting)
                    logger.warning(
                        f"{', '.join(waiting)} rows migrated earlier may reference these records; "
                        f"run 'bubble-migrate link {flags}' to fill their foreign keys"
                    )

            if self.run.status != MigrationStatus.CANCELLED:
                self.run.status = MigrationStatus.COMPLETED

        except MigrationError as e:
            logger.error(f"Migration failed: {e}")
            self.run.errors.append({
                "phase": self.run.status.value,
                "error": str(e),
                "timestamp": datetime.utcnow().isoformat(),
            })
            self.run.status = MigrationStatus.FAILED

        finally:
            self.run.completed_at = datetime.utcnow()
            if self.config.save_report:
                self._save_report()

        for line in self.summary_table(self.run):
            logger.info(line)

        return self.run

    def dependents_outside(self, entity_types: List[str]) -> List[str]:
        """
        Entity types outside ``entity_types`` that link to one of them and
        already have migrated rows, in migration order.
        """
        targets = set(entity_types)
        waiting = []

        for entity_type in MIGRATION_ORDER:
            if entity_type in targets:
                continue
            links = get_entity_spec(entity_type).links
            if any(link.target_type in targets for link in links) and self.mapper.count(entity_type):
                waiting.append(entity_type)

        return waiting

    def request_stop(self) -> None:
        self.migrator.request_stop()

    def _save_report(self) -> Path:
        """Save the migration report."""
        self._setup_directories()
        filepath = self.logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, 'w') as f:
            json.dump(self.run.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")
        return filepath

    @staticmethod
    def summary_table(run: MigrationRun) -> List[str]:
        """Fixed-width per-entity summary of a run."""
        rows = [("Entity", "Migrated", "Skipped", "Failed")]
        for step in run.steps:
            rows.append((step.entity, step.stats.migrated, step.stats.skipped, step.stats.failed))

        totals = run.totals
        rows.append(("TOTAL", totals.migrated, totals.skipped, totals.failed))

        lines = [
            f"{str(r[0]):<18} | {str(r[1]):>10} | {str(r[2]):>10} | {str(r[3]):>10}"
            for r in rows
        ]

        if totals.failed:
            lines.append(f"There were {totals.failed} failed records. Check the logs above for details.")
        return lines

    def status(self) -> Dict[str, Dict[str, int]]:
        """Mapping and destination row counts per entity type."""
        mapped = self.mapper.counts_by_type()
        report = {}

        for entity_type in MIGRATION_ORDER:
            spec = get_entity_spec(entity_type)
            try:
                rows = self.loader.count(spec.table)
            except LoadError as e:
                logger.warning(f"Could not count {spec.table}: {e}")
                rows = -1
            report[entity_type] = {"mapped": mapped.get(entity_type, 0), "rows": rows}

        return report
