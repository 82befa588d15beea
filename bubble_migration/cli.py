"""Command-line entry point for the Bubble migration engine."""

import argparse
import json
import logging
import signal
import sys
from typing import List, Optional, Tuple

from sqlalchemy import create_engine

from .exceptions import ConfigError, MigrationError
from .extractors.bubble_extractor import BubbleClient
from .loaders.sql_loader import SQLLoader
from .models.migration import MigrationConfig, MigrationStatus
from .orchestrator import MigrationOrchestrator
from .services.id_mapper import IdMappingStore
from .services.linker import SecondPassLinker
from .services.transformer import MIGRATION_ORDER

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED_RECORDS = 1
EXIT_FATAL = 2


def load_config(args) -> MigrationConfig:
    """Build the configuration once, from a JSON file or the environment."""
    try:
        if getattr(args, "config", None):
            with open(args.config) as f:
                config = MigrationConfig.from_dict(json.load(f))
        else:
            config = MigrationConfig.from_env()
    except (OSError, ValueError) as e:
        raise ConfigError(f"Could not load configuration: {e}") from e

    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "strict", False):
        config.strict = True
    if getattr(args, "batch_size", None):
        config.batch_size = args.batch_size

    return config


def check_config(config: MigrationConfig, needs_source: bool = True) -> None:
    """Raise ConfigError if the settings a command needs are missing."""
    errors = config.validate()
    if not needs_source:
        errors = [e for e in errors if not e.startswith("BUBBLE_")]
    if errors:
        raise ConfigError("; ".join(errors))


def build_components(config: MigrationConfig) -> Tuple[BubbleClient, IdMappingStore, SQLLoader]:
    """Create the source client, mapping store and destination loader."""
    engine = create_engine(config.database_url, pool_pre_ping=True)

    mapper = IdMappingStore(engine)
    mapper.create_table()

    return BubbleClient(config), mapper, SQLLoader(engine)


def cmd_run(args) -> int:
    config = load_config(args)
    check_config(config)

    entity_types = None if args.all else args.entity
    MigrationOrchestrator.resolve_order(entity_types)

    source, mapper, loader = build_components(config)
    orchestrator = MigrationOrchestrator(config, source, mapper, loader)

    def stop_on_interrupt(signum, frame):
        logger.warning("Interrupt received; stopping after the current page (press Ctrl-C again to abort)")
        signal.signal(signal.SIGINT, previous_handler)
        orchestrator.request_stop()

    previous_handler = signal.signal(signal.SIGINT, stop_on_interrupt)
    try:
        result = orchestrator.run_migration(entity_types, link=not args.no_link)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print("\n" + "=" * 60)
    print(f"MIGRATION {result.status.value.upper()}")
    print("=" * 60)
    for line in orchestrator.summary_table(result):
        print(line)
    if result.duration_seconds is not None:
        print(f"Duration: {result.duration_seconds:.2f} seconds")

    if result.status == MigrationStatus.FAILED:
        for error in result.errors:
            print(f"Error: {error['error']}")
        return EXIT_FATAL

    if config.strict and result.totals.failed > 0:
        return EXIT_FAILED_RECORDS

    return EXIT_OK


def cmd_link(args) -> int:
    config = load_config(args)
    check_config(config)

    entity_types = args.entity or None

    source, mapper, loader = build_components(config)
    linker = SecondPassLinker(source, mapper, loader, batch_size=config.page_size)
    results = linker.link_all(entity_types)

    for entity_type, stats in results.items():
        print(
            f"{entity_type:<18} | updated {stats.updated:>8} | already linked "
            f"{stats.already_linked:>8} | unresolved {stats.unresolved:>8} | failed {stats.failed:>8}"
        )

    failed = sum(s.failed for s in results.values())
    return EXIT_FAILED_RECORDS if config.strict and failed else EXIT_OK


def cmd_reconcile(args) -> int:
    config = load_config(args)
    check_config(config, needs_source=False)

    source, mapper, loader = build_components(config)
    stats = SecondPassLinker(source, mapper, loader).reconcile(args.entity)

    print(f"Scanned:   {stats.scanned}")
    print(f"Recovered: {stats.recovered}")
    print(f"Duplicates: {len(stats.duplicates)}")
    for destination_id in stats.duplicates:
        print(f"  - {destination_id}")

    return EXIT_OK


def cmd_reset(args) -> int:
    config = load_config(args)
    check_config(config, needs_source=False)

    if not args.yes:
        print(f"Refusing to delete {args.entity} mappings without --yes")
        return EXIT_FATAL

    _, mapper, _ = build_components(config)
    deleted = mapper.delete_mappings(args.entity)
    print(f"Deleted {deleted} {args.entity} mappings")
    return EXIT_OK


def cmd_status(args) -> int:
    config = load_config(args)
    check_config(config, needs_source=False)

    source, mapper, loader = build_components(config)
    report = MigrationOrchestrator(config, source, mapper, loader).status()

    print(f"{'Entity':<18} | {'Mapped':>10} | {'Rows':>10}")
    for entity_type, counts in report.items():
        print(f"{entity_type:<18} | {counts['mapped']:>10} | {counts['rows']:>10}")

    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bubble-migrate",
        description="Migrate Bubble data into a relational database",
    )
    parser.add_argument("--config", help="Path to a JSON config file (default: environment)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Lets --verbose follow the subcommand too
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS, help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Migrate entity types",
        description="Migrate entity types in dependency order. Only the migrated types are linked; "
                    "types migrated by earlier runs need the link command.",
    )
    target = run_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--entity", action="append", choices=MIGRATION_ORDER, help="Entity type (repeatable)")
    target.add_argument("--all", action="store_true", help="Migrate every entity type in order")
    run_parser.add_argument("--dry-run", action="store_true", help="Count what would be migrated")
    run_parser.add_argument("--strict", action="store_true", help="Exit non-zero if any record failed")
    run_parser.add_argument("--batch-size", type=int, help="Records per source page (max 100)")
    run_parser.add_argument("--no-link", action="store_true", help="Skip the second-pass linker")
    run_parser.set_defaults(func=cmd_run)

    # Second-pass linking
    link_parser = subparsers.add_parser("link", parents=[common], help="Fill foreign keys left empty by earlier runs")
    link_parser.add_argument("--entity", action="append", choices=MIGRATION_ORDER, help="Entity type (repeatable)")
    link_parser.add_argument("--strict", action="store_true", help="Exit non-zero if any update failed")
    link_parser.set_defaults(func=cmd_link)

    # Reconcile unmapped rows
    reconcile_parser = subparsers.add_parser("reconcile", parents=[common], help="Map destination rows missing from the ledger")
    reconcile_parser.add_argument("--entity", required=True, choices=MIGRATION_ORDER)
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # Reset mappings
    reset_parser = subparsers.add_parser("reset", parents=[common], help="Delete the mappings of an entity type")
    reset_parser.add_argument("--entity", required=True, choices=MIGRATION_ORDER)
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the deletion")
    reset_parser.set_defaults(func=cmd_reset)

    # Status
    status_parser = subparsers.add_parser("status", parents=[common], help="Show mapping and row counts")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not args.command:
        parser.print_help()
        return EXIT_OK

    try:
        return args.func(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FATAL
    except MigrationError as e:
        logger.error(f"Migration aborted: {e}")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
