"""CLI for schema migrations.

Usage:
    python -m schemaledger migrate
    python -m schemaledger migrate --dry-run
    python -m schemaledger rollback
    python -m schemaledger rollback --step 2
    python -m schemaledger reset
    python -m schemaledger fresh
    python -m schemaledger refresh
    python -m schemaledger status --json
    python -m schemaledger new create_users
"""

import argparse
import asyncio
import json
import logging
import sys
from textwrap import dedent
from typing import List, Optional

from schemaledger.backends.sqlalchemy_backend import SQLAlchemyBackend
from schemaledger.commands import CommandResult, CommandStatus, MigrationCommands, MigrationStatusReport
from schemaledger.config import MigratorConfig, configure_logging, load_config
from schemaledger.database import Database
from schemaledger.errors import PartialMigrationFailure, SchemaLedgerError
from schemaledger.migrations.migration import Direction
from schemaledger.migrations.migration_source import DirectoryMigrationSource, write_migration_template
from schemaledger.models import build_ledger_tables

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_LOCKED = 2


def build_commands(config: MigratorConfig) -> MigrationCommands:
    """Wire database, backend, source and commands from configuration."""
    backend = SQLAlchemyBackend(
        Database(config.database_url),
        build_ledger_tables(config.ledger_table, config.lock_table),
        transactional_ddl=config.transactional_ddl,
        lock_stale_after=config.lock_stale_after,
    )
    return MigrationCommands(
        backend,
        DirectoryMigrationSource(config.migrations_dir),
        lock_timeout=config.lock_timeout,
    )


def exit_code(result: CommandResult) -> int:
    if result.success:
        return EXIT_OK
    if result.status == CommandStatus.LOCK_CONTENTION:
        return EXIT_LOCKED
    return EXIT_FAILURE


def print_result(result: CommandResult, as_json: bool = False) -> None:
    """Print a command result for humans or as JSON."""
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return

    if result.status == CommandStatus.NO_OP:
        print(f"Nothing to {result.command}")
        return

    for warning in result.warnings:
        print(warning)
    if result.warnings:
        print()

    if result.executed:
        prefix = "[DRY-RUN] Would run" if result.dry_run else "Ran"
        print(f"{prefix} {len(result.executed)} migration(s):")
        for step in result.executed:
            sign = "+" if step.direction == Direction.FORWARD else "-"
            batch = f" [batch {step.batch}]" if step.batch else ""
            time_str = "" if step.dry_run else f" ({step.execution_time_ms}ms)"
            print(f"  {sign} {step.name}{batch}{time_str}")

    error = result.error
    if error is not None:
        print(f"\nFailed ({result.status.value}): {error.message}")
        if isinstance(error, PartialMigrationFailure):
            for op in error.completed_operations:
                print(f"  done: {op}")
            print(f"  failed: {error.failed_operation}")
            if error.rolled_back:
                print("  Migration was rolled back; the ledger is unchanged.")
            else:
                print("  Completed operations were NOT rolled back; fix the schema by hand.")


def print_status(report: MigrationStatusReport, as_json: bool = False) -> None:
    if as_json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return

    if not report.applied and not report.pending:
        print("No migrations found")
        return

    print("-" * 60)
    for entry in report.applied:
        marker = "[!]" if entry.migration_name in report.checksum_mismatches else "[x]"
        if entry.migration_name in report.unknown:
            marker = "[?]"
        print(
            f"{marker} {entry.migration_name} "
            f"(batch {entry.batch}, applied: {entry.applied_at.strftime('%Y-%m-%d %H:%M')})"
        )
    for name in report.pending:
        print(f"[ ] {name}")
    print("-" * 60)
    print(
        f"Applied: {len(report.applied)} | Pending: {len(report.pending)} | "
        f"Latest batch: {report.latest_batch}"
    )
    if report.checksum_mismatches:
        print(f"Modified after applying: {', '.join(report.checksum_mismatches)}")
    if report.unknown:
        print(f"Missing from migrations dir: {', '.join(report.unknown)}")


async def cmd_migrate(commands: MigrationCommands, args: argparse.Namespace) -> int:
    """Apply pending migrations."""
    result = await commands.migrate(dry_run=args.dry_run)
    print_result(result, args.json)
    return exit_code(result)


async def cmd_rollback(commands: MigrationCommands, args: argparse.Namespace) -> int:
    """Rollback the latest batch(es) or a number of migrations."""
    result = await commands.rollback(
        batches=args.batches or 1,
        steps=args.step,
        dry_run=args.dry_run,
    )
    print_result(result, args.json)
    return exit_code(result)


async def cmd_reset(commands: MigrationCommands, args: argparse.Namespace) -> int:
    result = await commands.reset(dry_run=args.dry_run)
    print_result(result, args.json)
    return exit_code(result)


async def cmd_fresh(commands: MigrationCommands, args: argparse.Namespace) -> int:
    result = await commands.fresh(dry_run=args.dry_run)
    print_result(result, args.json)
    return exit_code(result)


async def cmd_refresh(commands: MigrationCommands, args: argparse.Namespace) -> int:
    result = await commands.refresh(dry_run=args.dry_run)
    print_result(result, args.json)
    return exit_code(result)


async def cmd_status(commands: MigrationCommands, args: argparse.Namespace) -> int:
    """Show migration status."""
    report = await commands.status()
    print_status(report, args.json)
    return EXIT_OK


def cmd_new(config: MigratorConfig, args: argparse.Namespace) -> int:
    """Create a new migration file."""
    try:
        path = write_migration_template(config.migrations_dir, args.name)
    except (FileExistsError, SchemaLedgerError) as e:
        print(f"Error: {e}")
        return EXIT_FAILURE

    print(f"Created migration: {path}")
    print("Edit the file to add your forward and backward operations.")
    return EXIT_OK


COMMANDS = {
    'migrate': cmd_migrate,
    'rollback': cmd_rollback,
    'reset': cmd_reset,
    'fresh': cmd_fresh,
    'refresh': cmd_refresh,
    'status': cmd_status,
}


def positive_int(value: str) -> int:
    """Argument type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="schemaledger",
        description="Versioned schema migrations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=dedent("""
            Examples:
              # Apply all pending migrations
              python -m schemaledger -c config.yaml migrate

              # Preview a rollback of the last batch
              python -m schemaledger rollback --dry-run

              # Roll back the last 3 migrations, across batches
              python -m schemaledger rollback --step 3

              # Create new migration
              python -m schemaledger new add_email_to_users
        """),
    )

    parser.add_argument(
        "-c", "--config",
        help="Config file (JSON or YAML)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abort the command after this many seconds",
    )

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON",
    )

    mutating = argparse.ArgumentParser(add_help=False, parents=[output])
    mutating.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without applying",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", parents=[mutating], help="Apply pending migrations")

    rollback_parser = subparsers.add_parser(
        "rollback",
        parents=[mutating],
        help="Rollback the latest batch",
    )
    amount = rollback_parser.add_mutually_exclusive_group()
    amount.add_argument(
        "--batches",
        type=positive_int,
        help="Number of batches to rollback (default: 1)",
    )
    amount.add_argument(
        "--step",
        type=positive_int,
        help="Number of individual migrations to rollback",
    )

    subparsers.add_parser("reset", parents=[mutating], help="Rollback all migrations")
    subparsers.add_parser(
        "fresh",
        parents=[mutating],
        help="Drop all tables and re-run all migrations",
    )
    subparsers.add_parser(
        "refresh",
        parents=[mutating],
        help="Reset and re-run all migrations",
    )
    subparsers.add_parser("status", parents=[output], help="Show migration status")

    new_parser = subparsers.add_parser("new", help="Create a new migration file")
    new_parser.add_argument(
        "name",
        help="Migration name (e.g., create_users, add_email_to_users)",
    )

    return parser


async def async_main(args: argparse.Namespace, config: MigratorConfig) -> int:
    """Async main entry point."""
    commands = build_commands(config)
    try:
        async with asyncio.timeout(args.timeout):
            return await COMMANDS[args.command](commands, args)
    except TimeoutError:
        print(f"Error: {args.command} timed out after {args.timeout}s")
        return EXIT_FAILURE
    except SchemaLedgerError as e:
        print(f"Error: {e.message}")
        return EXIT_FAILURE
    finally:
        await commands.backend.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except SchemaLedgerError as e:
        print(f"Error: {e.message}")
        return EXIT_FAILURE

    configure_logging('debug' if args.verbose else config.log_level, config.log_file)

    if args.command == 'new':
        return cmd_new(config, args)

    return asyncio.run(async_main(args, config))


if __name__ == "__main__":
    sys.exit(main())
