"""Tests for the per-entity migration driver and the orchestrator."""

import json
from unittest.mock import patch

import pytest

from bubble_migration.exceptions import MappingError, SourceError
from bubble_migration.models.migration import MigrationStatus, MigrationStep
from bubble_migration.models.record import MigrationStats
from bubble_migration.orchestrator import EntityMigrator, MigrationOrchestrator

from conftest import rows


@pytest.fixture
def migrator(config, source, mapper, loader):
    return EntityMigrator(config, source, mapper, loader)


def tags(*ids):
    return [{"_id": i, "Name": f"Tag {i}"} for i in ids]


class TestEntityMigrator:
    def test_three_tags_then_rerun(self, migrator, source, mapper, engine):
        source.add("tag", *tags("t1", "t2", "t3"))

        first = migrator.migrate("tag")

        assert first == MigrationStats(migrated=3, skipped=0, failed=0)
        assert mapper.count("tag") == 3

        second = migrator.migrate("tag")

        assert second == MigrationStats(migrated=0, skipped=3, failed=0)
        assert mapper.count("tag") == 3
        assert len(rows(engine, "tags")) == 3

    def test_mapping_points_at_written_row(self, migrator, source, mapper, engine):
        source.add("tag", *tags("t1"))

        migrator.migrate("tag")

        row = rows(engine, "tags")[0]
        assert row["bubble_id"] == "t1"
        assert mapper.get_destination_id("t1", "tag") == row["id"]

    def test_malformed_record_is_isolated(self, migrator, source, engine):
        source.add("tag", *tags("t1", "t2"))
        source.add("tag", {"_id": "t3", "Group": "not a number"})
        source.add("tag", *tags("t4", "t5"))
        step = MigrationStep(entity="tag")

        stats = migrator.migrate("tag", step)

        assert stats == MigrationStats(migrated=4, skipped=0, failed=1)
        assert [r["bubble_id"] for r in rows(engine, "tags")] == ["t1", "t2", "t4", "t5"]
        assert step.errors[0]["record_id"] == "t3"
        assert step.status == MigrationStatus.COMPLETED

    def test_record_without_id_is_isolated(self, migrator, source, mapper):
        source.add("tag", *tags("t1"), {"Name": "no id"}, *tags("t3"))
        step = MigrationStep(entity="tag")

        stats = migrator.migrate("tag", step)

        assert stats == MigrationStats(migrated=2, skipped=0, failed=1)
        assert mapper.count("tag") == 2
        assert step.errors[0]["record_id"] == ""

    def test_write_failure_is_isolated(self, migrator, source, loader):
        source.add("tag", *tags("t1", "t2", "t3"))
        real_insert = loader.insert_record

        def flaky_insert(table, row):
            if row["bubble_id"] == "t2":
                return real_insert("no_such_table", row)
            return real_insert(table, row)

        with patch.object(loader, "insert_record", side_effect=flaky_insert):
            stats = migrator.migrate("tag")

        assert stats == MigrationStats(migrated=2, skipped=0, failed=1)

    def test_dry_run_writes_nothing(self, config, source, mapper, loader, engine):
        config.dry_run = True
        source.add("tag", *tags("t1", "t2", "t3"))
        mapper.record_mapping("t1", "existing", "tag")

        stats = EntityMigrator(config, source, mapper, loader).migrate("tag")

        assert stats == MigrationStats(migrated=2, skipped=1, failed=0)
        assert rows(engine, "tags") == []
        assert mapper.count("tag") == 1

    def test_lost_mapping_race_removes_duplicate_row(self, migrator, source, mapper, engine):
        source.add("tag", *tags("t1", "t2"))
        real_record_mapping = mapper.record_mapping

        def concurrent_winner(source_id, destination_id, entity_type):
            if source_id == "t1":
                real_record_mapping(source_id, "other-process-row", entity_type)
            return real_record_mapping(source_id, destination_id, entity_type)

        with patch.object(mapper, "record_mapping", side_effect=concurrent_winner):
            stats = migrator.migrate("tag")

        assert stats == MigrationStats(migrated=1, skipped=1, failed=0)
        assert [r["bubble_id"] for r in rows(engine, "tags")] == ["t2"]
        assert mapper.get_destination_id("t1", "tag") == "other-process-row"

    def test_source_error_is_fatal_and_resumable(self, config, source, mapper, loader):
        source.add("tag", *tags("t1", "t2", "t3", "t4", "t5"))
        source.fail_at["tag"] = 2
        step = MigrationStep(entity="tag")

        with pytest.raises(SourceError):
            EntityMigrator(config, source, mapper, loader).migrate("tag", step)

        assert step.status == MigrationStatus.FAILED
        assert step.stats.migrated == 2
        assert mapper.count("tag") == 2

        del source.fail_at["tag"]
        resumed = EntityMigrator(config, source, mapper, loader).migrate("tag")

        assert resumed == MigrationStats(migrated=3, skipped=2, failed=0)

    def test_mapping_error_is_fatal(self, migrator, source, mapper):
        source.add("tag", *tags("t1"))

        with patch.object(mapper, "migrated_ids", side_effect=MappingError("ledger down")):
            with pytest.raises(MappingError):
                migrator.migrate("tag")

    def test_progress_callback_per_page(self, config, source, mapper, loader):
        source.add("tag", *tags("t1", "t2", "t3"))
        calls = []

        EntityMigrator(config, source, mapper, loader, lambda *args: calls.append(args)).migrate("tag")

        assert calls == [(2, 3, "tag"), (3, 3, "tag")]

    def test_stop_request_is_honoured_between_pages(self, config, source, mapper, loader):
        source.add("tag", *tags("t1", "t2", "t3", "t4"))
        migrator = EntityMigrator(config, source, mapper, loader)
        migrator.progress_callback = lambda *args: migrator.request_stop()
        step = MigrationStep(entity="tag")

        stats = migrator.migrate("tag", step)

        assert stats.migrated == 2
        assert step.status == MigrationStatus.CANCELLED
        assert mapper.count("tag") == 2

    def test_junction_rows_written_after_mapping(self, migrator, source, mapper, engine):
        source.add("tag", *tags("t1", "t2"))
        migrator.migrate("tag")
        source.add("question", {"_id": "q1", "Name": "Q", "Tags": ["t1", "t2", "missing"]})

        migrator.migrate("question")

        question_id = mapper.get_destination_id("q1", "question")
        linked = rows(engine, "question_tags", order_by="tag_id")
        assert {r["tag_id"] for r in linked} == {
            mapper.get_destination_id("t1", "tag"),
            mapper.get_destination_id("t2", "tag"),
        }
        assert all(r["question_id"] == question_id for r in linked)

    def test_references_are_prefetched_per_page(self, migrator, source, mapper):
        source.add("tag", *tags("t1"))
        migrator.migrate("tag")
        source.add("question", {"_id": "q1", "Tags": ["t1"]}, {"_id": "q2", "Tags": ["t1"]})

        with patch.object(mapper, "get_destination_ids", wraps=mapper.get_destination_ids) as spy:
            migrator.migrate("question")

        prefetched = [c.args[1] for c in spy.call_args_list]
        assert "tag" in prefetched


class TestMigrationOrchestrator:
    def test_runs_in_dependency_order_and_links(self, config, source, mapper, loader, engine):
        source.add("answer", {"_id": "a1", "Parent Question": "q1"})
        source.add("question", {"_id": "q1", "Name": "Q1"})

        orchestrator = MigrationOrchestrator(config, source, mapper, loader)
        run = orchestrator.run_migration(["answer", "question"])

        assert run.status == MigrationStatus.COMPLETED
        assert [s.entity for s in run.steps] == ["question", "answer"]
        answer = rows(engine, "answers")[0]
        assert answer["parent_question_id"] == mapper.get_destination_id("q1", "question")

    def test_fatal_error_fails_run_and_writes_report(self, config, source, mapper, loader, tmp_path):
        config.save_report = True
        source.add("tag", *tags("t1", "t2", "t3"))
        source.fail_at["tag"] = 2

        run = MigrationOrchestrator(config, source, mapper, loader).run_migration(["tag"])

        assert run.status == MigrationStatus.FAILED
        assert "cursor 2" in run.errors[0]["error"]

        reports = list((tmp_path / "logs").glob("migration_report_*.json"))
        assert len(reports) == 1
        report = json.loads(reports[0].read_text())
        assert report["status"] == "failed"
        assert report["total_migrated"] == 2

    def test_dry_run_skips_linking(self, config, source, mapper, loader):
        config.dry_run = True
        source.add("tag", *tags("t1"))
        orchestrator = MigrationOrchestrator(config, source, mapper, loader)

        with patch.object(orchestrator.linker, "link_all") as link_all:
            run = orchestrator.run_migration(["tag"])

        link_all.assert_not_called()
        assert run.dry_run is True
        assert run.totals.migrated == 1

    def test_unknown_entity_is_rejected(self):
        with pytest.raises(KeyError):
            MigrationOrchestrator.resolve_order(["tag", "invoice"])

    def test_summary_table(self, config, source, mapper, loader):
        source.add("tag", *tags("t1", "t2"))
        orchestrator = MigrationOrchestrator(config, source, mapper, loader)
        run = orchestrator.run_migration(["tag"], link=False)

        lines = orchestrator.summary_table(run)

        assert lines[0].startswith("Entity")
        assert lines[1].split("|")[0].strip() == "tag"
        assert lines[1].split("|")[1].strip() == "2"
        assert lines[-1].startswith("TOTAL")

    def test_status_reports_mapped_and_rows(self, config, source, mapper, loader):
        source.add("tag", *tags("t1", "t2"))
        orchestrator = MigrationOrchestrator(config, source, mapper, loader)
        orchestrator.run_migration(["tag"], link=False)

        report = orchestrator.status()

        assert report["tag"] == {"mapped": 2, "rows": 2}
        assert report["answer"] == {"mapped": 0, "rows": 0}

    def test_earlier_dependents_are_named_for_linking(self, config, source, mapper, loader, engine, caplog):
        source.add("answer", {"_id": "a1", "Parent Question": "q1"})
        orchestrator = MigrationOrchestrator(config, source, mapper, loader)
        orchestrator.run_migration(["answer"])
        source.add("question", {"_id": "q1"})

        orchestrator.run_migration(["question"])

        assert orchestrator.dependents_outside(["question"]) == ["answer"]
        assert "bubble-migrate link --entity answer" in caplog.text
        assert rows(engine, "answers")[0]["parent_question_id"] is None
