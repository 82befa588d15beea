"""Tests for the command-line entry point."""

import json
import signal

import pytest

from bubble_migration import cli
from bubble_migration.cli import EXIT_FAILED_RECORDS, EXIT_FATAL, EXIT_OK, build_parser, main


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("BUBBLE_API_URL", "https://example.test/version-test/api/1.1")
    monkeypatch.setenv("BUBBLE_API_TOKEN", "test-token")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("MIGRATION_OUTPUT_DIR", str(tmp_path))
    monkeypatch.setenv("MIGRATION_RATE_LIMIT_DELAY", "0")
    for name in ("DRY_RUN", "MIGRATION_STRICT", "MIGRATION_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def components(monkeypatch, source, mapper, loader):
    built = []

    def fake_build(config):
        built.append(config)
        return source, mapper, loader

    monkeypatch.setattr(cli, "build_components", fake_build)
    return built


class TestParser:
    def test_run_needs_a_target(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run"])

    def test_entity_and_all_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--all", "--entity", "tag"])

    def test_unknown_entity_is_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["run", "--entity", "invoice"])

    def test_verbose_after_subcommand(self):
        args = build_parser().parse_args(["run", "--entity", "tag", "--entity", "question", "-v"])

        assert args.verbose is True
        assert args.entity == ["tag", "question"]

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_OK
        assert "bubble-migrate" in capsys.readouterr().out


class TestRun:
    def test_clean_run(self, env, components, source, mapper, capsys):
        source.add("tag", {"_id": "t1"}, {"_id": "t2"})

        assert main(["run", "--entity", "tag"]) == EXIT_OK
        assert mapper.count("tag") == 2
        assert "MIGRATION COMPLETED" in capsys.readouterr().out

    def test_failed_records_only_fail_in_strict_mode(self, env, components, source):
        source.add("tag", {"_id": "t1"}, {"_id": "t2", "Group": "not a number"})

        assert main(["run", "--entity", "tag"]) == EXIT_OK
        assert main(["run", "--entity", "tag", "--strict"]) == EXIT_FAILED_RECORDS

    def test_strict_from_environment(self, env, components, source, monkeypatch):
        monkeypatch.setenv("MIGRATION_STRICT", "true")
        source.add("tag", {"_id": "t1", "Group": "not a number"})

        assert main(["run", "--entity", "tag"]) == EXIT_FAILED_RECORDS

    def test_source_failure_is_fatal(self, env, components, source, capsys):
        source.add("tag", {"_id": "t1"})
        source.fail_at["tag"] = 0

        assert main(["run", "--entity", "tag"]) == EXIT_FATAL
        assert "MIGRATION FAILED" in capsys.readouterr().out

    def test_missing_token_is_fatal(self, env, components, monkeypatch):
        monkeypatch.delenv("BUBBLE_API_TOKEN")

        assert main(["run", "--all"]) == EXIT_FATAL
        assert components == []

    def test_overrides_apply(self, env, components, source, mapper):
        source.add("tag", {"_id": "t1"})

        assert main(["run", "--entity", "tag", "--dry-run", "--batch-size", "250"]) == EXIT_OK

        config = components[0]
        assert config.dry_run is True
        assert config.page_size == 100
        assert mapper.count("tag") == 0

    def test_json_config_file(self, components, source, tmp_path, monkeypatch):
        monkeypatch.delenv("BUBBLE_API_TOKEN", raising=False)
        path = tmp_path / "migration.json"
        path.write_text(json.dumps({
            "source_api_url": "https://example.test/api/1.1",
            "source_api_token": "file-token",
            "database_url": "sqlite://",
            "output_dir": str(tmp_path),
            "save_report": False,
        }))
        source.add("tag", {"_id": "t1"})

        assert main(["--config", str(path), "run", "--entity", "tag"]) == EXIT_OK
        assert components[0].source_api_token == "file-token"

    def test_unreadable_config_file(self, components, tmp_path):
        assert main(["--config", str(tmp_path / "missing.json"), "run", "--all"]) == EXIT_FATAL


class TestMaintenanceCommands:
    def test_reset_requires_confirmation(self, env, components, mapper):
        mapper.record_mapping("t1", "d1", "tag")

        assert main(["reset", "--entity", "tag"]) == EXIT_FATAL
        assert mapper.count("tag") == 1

    def test_reset(self, env, components, mapper):
        mapper.record_mapping("t1", "d1", "tag")

        assert main(["reset", "--entity", "tag", "--yes"]) == EXIT_OK
        assert mapper.count("tag") == 0

    def test_reset_does_not_need_source_credentials(self, env, components, monkeypatch):
        monkeypatch.delenv("BUBBLE_API_TOKEN")

        assert main(["reset", "--entity", "tag", "--yes"]) == EXIT_OK

    def test_reconcile(self, env, components, loader, mapper, capsys):
        loader.insert_record("tags", {"id": "d1", "bubble_id": "t1"})

        assert main(["reconcile", "--entity", "tag"]) == EXIT_OK
        assert mapper.get_destination_id("t1", "tag") == "d1"
        assert "Recovered: 1" in capsys.readouterr().out

    def test_link(self, env, components, source, capsys):
        assert main(["link", "--entity", "answer"]) == EXIT_OK
        assert "answer" in capsys.readouterr().out

    def test_status(self, env, components, mapper, capsys):
        mapper.record_mapping("t1", "d1", "tag")

        assert main(["status"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "sheet_status" in out
        tag_line = next(line for line in out.splitlines() if line.startswith("tag "))
        assert [cell.strip() for cell in tag_line.split("|")] == ["tag", "1", "0"]


class TestInterrupt:
    def test_ctrl_c_stops_after_current_page(self, env, components, source, mapper, monkeypatch, capsys):
        monkeypatch.setenv("MIGRATION_BATCH_SIZE", "2")
        source.add("tag", *[{"_id": f"t{i}"} for i in range(5)])
        default_handler = signal.getsignal(signal.SIGINT)
        fetch_page = source.list

        def interrupted_list(entity_type, cursor=0, limit=100, constraints=None):
            page = fetch_page(entity_type, cursor=cursor, limit=limit, constraints=constraints)
            if cursor == 0 and limit == 2:
                signal.getsignal(signal.SIGINT)(signal.SIGINT, None)
            return page

        monkeypatch.setattr(source, "list", interrupted_list)

        assert main(["run", "--entity", "tag"]) == EXIT_OK
        assert "MIGRATION CANCELLED" in capsys.readouterr().out
        assert mapper.count("tag") == 2
        assert signal.getsignal(signal.SIGINT) is default_handler
