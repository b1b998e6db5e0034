"""Command line utilities for managing database audit triggers."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, Dict, Optional, Sequence

from alembic.config import Config
from alembic.util import CommandError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from audit_triggers.config import AuditSettings, get_settings
from audit_triggers.lib.exceptions import AuditTriggerError
from audit_triggers.lib.logging_config import configure_logging
from audit_triggers.lib.triggers.lifecycle import (
    BatchResult,
    DropResult,
    Outcome,
    OutcomeStatus,
    TriggerManager,
    parse_table_list,
)
from audit_triggers.lib.triggers.migration_events import upgrade_with_trigger_refresh
from audit_triggers.models.sql.audit_log import ensure_audit_table
from audit_triggers.models.sql.database import create_audit_engine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1

_STATUS_MARKERS = {
    OutcomeStatus.CREATED: "OK  ",
    OutcomeStatus.SKIPPED: "SKIP",
    OutcomeStatus.FAILED: "FAIL",
}


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="audit-triggers",
        description="Create, drop and rebuild database audit triggers",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database connection string (defaults to AUDIT_DATABASE_URL/DATABASE_URL)",
    )
    parser.add_argument(
        "--excluded-tables",
        default=None,
        help="Comma-separated tables to leave unaudited (defaults to AUDIT_EXCLUDED_TABLES)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup-triggers", help="Install audit triggers")
    setup_parser.add_argument("--tables", help="Comma-separated tables (default: all)")

    drop_parser = subparsers.add_parser("drop-triggers", help="Remove audit triggers")
    drop_parser.add_argument("--tables", help="Comma-separated tables (default: all)")
    drop_parser.add_argument("--force", action="store_true", help="Skip confirmation prompt")

    rebuild_parser = subparsers.add_parser("rebuild-triggers", help="Drop and recreate audit triggers")
    rebuild_parser.add_argument("--tables", help="Comma-separated tables (default: all)")
    rebuild_parser.add_argument("--force", action="store_true", help="Skip confirmation prompt")

    subparsers.add_parser("create-audit-table", help="Create the audit log table if it is missing")

    migrate_parser = subparsers.add_parser(
        "migrate", help="Run Alembic migrations and recreate triggers on changed tables"
    )
    migrate_parser.add_argument(
        "--alembic-config",
        default="alembic.ini",
        help="Path to alembic.ini (default: alembic.ini)",
    )
    migrate_parser.add_argument("--revision", default="head", help="Target revision (default: head)")

    return parser.parse_args(list(argv))


def _build_settings(args: argparse.Namespace) -> AuditSettings:
    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.excluded_tables is not None:
        overrides["excluded_tables"] = args.excluded_tables
    return get_settings().model_copy(update=overrides)


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _print_outcome(table: str, outcome: Outcome) -> None:
    line = f"  {_STATUS_MARKERS[outcome.status]}  {table}"
    if outcome.reason is not None:
        line += f" ({outcome.reason.value})"
    if outcome.status == OutcomeStatus.FAILED and outcome.detail:
        line += f": {outcome.detail}"
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


def _print_summary(result: BatchResult) -> None:
    if result.error:
        sys.stderr.write(f"Could not list tables: {result.error}\n")
        return
    sys.stdout.write(
        "Success: {created}  Skipped: {skipped}  Errors: {failed}\n".format(
            created=result.created_count,
            skipped=result.skipped_count,
            failed=result.failed_count,
        )
    )


def _print_batch(result: BatchResult) -> None:
    for table, outcome in result.outcomes.items():
        _print_outcome(table, outcome)
    _print_summary(result)


def _print_drop(result: DropResult) -> None:
    if result.error:
        sys.stderr.write(f"Could not list tables: {result.error}\n")
        return
    for table, reason in result.failed.items():
        sys.stdout.write(f"  FAIL  {table}: {reason}\n")
    sys.stdout.write(f"Dropped {result.dropped} trigger(s)\n")


def _setup(manager: TriggerManager, args: argparse.Namespace) -> int:
    result = manager.create(parse_table_list(args.tables), on_outcome=_print_outcome)
    _print_summary(result)
    return EXIT_FAILURE if result.has_errors else EXIT_OK


def _drop(manager: TriggerManager, args: argparse.Namespace) -> int:
    if not args.force and not _confirm("This will drop all audit triggers. Continue?"):
        sys.stdout.write("Operation cancelled.\n")
        return EXIT_OK
    result = manager.drop(parse_table_list(args.tables))
    _print_drop(result)
    return EXIT_FAILURE if result.error or result.failed else EXIT_OK


def _rebuild(manager: TriggerManager, args: argparse.Namespace) -> int:
    if not args.force and not _confirm("This will drop and recreate all audit triggers. Continue?"):
        sys.stdout.write("Operation cancelled.\n")
        return EXIT_OK

    def _dropped(drop_result: DropResult) -> None:
        _print_drop(drop_result)
        if drop_result.ok:
            sys.stdout.write("Creating triggers\n")
            sys.stdout.flush()

    sys.stdout.write("Dropping existing triggers\n")
    sys.stdout.flush()
    result = manager.rebuild(parse_table_list(args.tables), on_outcome=_print_outcome, on_drop=_dropped)
    if result.aborted:
        sys.stderr.write("Failed to drop triggers. Aborting rebuild.\n")
        return EXIT_FAILURE

    _print_summary(result.create)
    return EXIT_FAILURE if result.has_errors else EXIT_OK


def _migrate(manager: TriggerManager, args: argparse.Namespace, settings: AuditSettings) -> int:
    alembic_config = Config(args.alembic_config)
    # ConfigParser interpolation treats "%" specially
    alembic_config.set_main_option("sqlalchemy.url", settings.database_url.replace("%", "%%"))
    try:
        result = upgrade_with_trigger_refresh(alembic_config, manager, args.revision, settings)
    except (CommandError, SQLAlchemyError) as exc:
        sys.stderr.write(f"Migration failed: {exc}\n")
        return EXIT_FAILURE

    if result is None:
        sys.stdout.write("Migrations applied; no audit triggers recreated\n")
    else:
        sys.stdout.write("Migrations applied; recreated audit triggers:\n")
        _print_batch(result)
    # Trigger regeneration problems never fail a completed migration.
    return EXIT_OK


def _create_audit_table(engine: Engine, settings: AuditSettings) -> int:
    try:
        created = ensure_audit_table(engine, settings.audit_table)
    except SQLAlchemyError as exc:
        sys.stderr.write(f"Database error: {exc}\n")
        return EXIT_FAILURE
    if created:
        sys.stdout.write(f"Created audit table {settings.audit_table}\n")
    else:
        sys.stdout.write(f"Audit table {settings.audit_table} already exists\n")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    settings = _build_settings(args)
    configure_logging(settings.log_level, settings.log_format)

    engine = create_audit_engine(settings.database_url)
    try:
        if args.command == "create-audit-table":
            return _create_audit_table(engine, settings)

        try:
            manager = TriggerManager.for_engine(engine, settings)
        except AuditTriggerError as exc:
            sys.stderr.write(f"{exc}\n")
            return EXIT_FAILURE

        if args.command == "migrate":
            return _migrate(manager, args, settings)

        handlers: Dict[str, Callable[[TriggerManager, argparse.Namespace], int]] = {
            "setup-triggers": _setup,
            "drop-triggers": _drop,
            "rebuild-triggers": _rebuild,
        }
        return handlers[args.command](manager, args)
    finally:
        engine.dispose()


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    run()
