"""Tests for configuration and run models."""

from bubble_migration.models.migration import MAX_PAGE_SIZE, MigrationConfig, MigrationRun, MigrationStatus
from bubble_migration.models.record import MigrationStats, RecordStatus


class TestMigrationConfig:
    def test_from_env(self):
        config = MigrationConfig.from_env({
            "BUBBLE_API_URL": "https://app.example.com/api/1.1/",
            "BUBBLE_API_TOKEN": "secret",
            "DATABASE_URL": "postgresql://localhost/app",
            "MIGRATION_BATCH_SIZE": "50",
            "DRY_RUN": "yes",
        })

        assert config.source_api_url == "https://app.example.com/api/1.1"
        assert config.source_api_token == "secret"
        assert config.batch_size == 50
        assert config.dry_run is True
        assert config.strict is False
        assert config.validate() == []

    def test_from_env_defaults(self):
        config = MigrationConfig.from_env({})

        assert config.batch_size == MAX_PAGE_SIZE
        assert config.source_api_token is None
        assert config.dry_run is False

    def test_validate_reports_every_problem(self):
        errors = MigrationConfig(batch_size=0).validate()

        assert errors == [
            "BUBBLE_API_URL is required",
            "BUBBLE_API_TOKEN is required",
            "DATABASE_URL is required",
            "Batch size must be at least 1",
        ]

    def test_page_size_is_clamped(self):
        assert MigrationConfig(batch_size=500).page_size == MAX_PAGE_SIZE
        assert MigrationConfig(batch_size=25).page_size == 25

    def test_token_is_never_serialized(self):
        config = MigrationConfig(source_api_token="secret")

        assert "source_api_token" not in config.to_dict()
        assert "secret" not in str(config.to_dict())

    def test_from_dict(self):
        config = MigrationConfig.from_dict({"source_api_url": "u", "batch_size": "10", "strict": True})

        assert config.batch_size == 10
        assert config.strict is True
        assert config.save_report is True


class TestRunModels:
    def test_stats_record_and_add(self):
        stats = MigrationStats()
        for status in (RecordStatus.MIGRATED, RecordStatus.MIGRATED, RecordStatus.SKIPPED, RecordStatus.FAILED):
            stats.record(status)

        assert stats == MigrationStats(migrated=2, skipped=1, failed=1)
        assert stats.processed == 4
        assert (stats + MigrationStats(migrated=1)).migrated == 3

    def test_run_totals_and_report(self):
        run = MigrationRun(name="tag, question")
        run.add_step("Migrate tag", "tag").stats.migrated = 3
        run.add_step("Migrate question", "question").stats.failed = 1
        run.status = MigrationStatus.COMPLETED

        report = run.to_dict()

        assert report["status"] == "completed"
        assert report["total_migrated"] == 3
        assert report["total_failed"] == 1
        assert [s["entity"] for s in report["steps"]] == ["tag", "question"]
