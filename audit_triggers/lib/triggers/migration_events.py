"""Migration event correlator.

Watches the statements executed during a migration batch, remembers which
tables were created or altered, and regenerates audit triggers for exactly
those tables when the batch ends. Regeneration problems are logged and never
raised: a migration that succeeded stays successful, and a stale trigger can
always be fixed with ``rebuild-triggers``.

The batch state is an explicit ``MigrationBatch`` owned by whoever drives the
migration; only one batch should be active at a time.

Usage:
    correlator = MigrationEventCorrelator(manager)
    with migration_batch(correlator, engine) as batch:
        command.upgrade(alembic_config, "head")
    result = batch.result
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from alembic import command
from alembic.config import Config
from sqlalchemy import event
from sqlalchemy.engine import Engine

from audit_triggers.config import AuditSettings, get_settings
from audit_triggers.lib.triggers.backends import POSTGRESQL
from audit_triggers.lib.triggers.lifecycle import BatchResult, OutcomeStatus, TriggerManager

logger = logging.getLogger(__name__)

# CREATE [UNLOGGED] TABLE [IF NOT EXISTS] name / ALTER [ONLINE|IGNORE] TABLE [IF EXISTS] [ONLY] name.
# Temporary tables cannot carry triggers and are not matched.
_NAME_PART = r'(?:`(?:[^`]|``)+`|"(?:[^"]|"")+"|\[[^\]]+\]|[^\s`"\[.(;,]+)'
TABLE_STATEMENT_PATTERN = re.compile(
    r"""
    ^\s*(?:/\*.*?\*/\s*)*
    (?:
        CREATE\s+(?:UNLOGGED\s+)?TABLE(?:\s+IF\s+NOT\s+EXISTS)?
      | ALTER\s+(?:ONLINE\s+|IGNORE\s+)?TABLE(?:\s+IF\s+EXISTS)?(?:\s+ONLY)?
    )
    \s+
    (?P<name>{part}(?:\s*\.\s*{part})*)
    """.format(part=_NAME_PART),
    re.IGNORECASE | re.VERBOSE | re.DOTALL,
)
_PART_PATTERN = re.compile(_NAME_PART)


def _unquote(part: str) -> Tuple[str, bool]:
    """Strip identifier quoting; the flag tells whether the part was quoted."""
    if part.startswith("`") and part.endswith("`"):
        return part[1:-1].replace("``", "`"), True
    if part.startswith('"') and part.endswith('"'):
        return part[1:-1].replace('""', '"'), True
    if part.startswith("[") and part.endswith("]"):
        return part[1:-1], True
    return part, False


def extract_table_name(statement: str, fold_unquoted: bool = False) -> Optional[str]:
    """Return the unquoted, unqualified table a CREATE/ALTER TABLE statement targets.

    With ``fold_unquoted`` an unquoted name is lower-cased the way PostgreSQL
    folds it; quoted names are always kept verbatim.
    """
    match = TABLE_STATEMENT_PATTERN.match(statement)
    if not match:
        return None
    parts = _PART_PATTERN.findall(match.group("name"))
    if not parts:
        return None
    name, quoted = _unquote(parts[-1])
    if fold_unquoted and not quoted:
        name = name.lower()
    return name or None


@dataclass
class MigrationBatch:
    """State of one migration batch: whether it is collecting and what it touched."""

    active: bool = False
    # dedup key -> name as first written, in first-seen order
    _touched: Dict[str, str] = field(default_factory=dict)
    # Outcome of the regeneration that closed the batch, if any.
    result: Optional[BatchResult] = None

    @property
    def touched_tables(self) -> List[str]:
        return list(self._touched.values())

    def touch(self, table_name: str, case_sensitive: bool = False) -> None:
        key = table_name if case_sensitive else table_name.lower()
        self._touched.setdefault(key, table_name)

    def reset(self) -> None:
        self.active = False
        self._touched.clear()


class MigrationEventCorrelator:
    """Correlate executed DDL with trigger regeneration.

    ``backend`` defaults to the manager's generator backend and decides how
    unquoted table names are normalized.
    """

    def __init__(self, manager: TriggerManager, backend: Optional[str] = None):
        self.manager = manager
        self.backend = backend if backend is not None else manager.generator.backend

    def begin_batch(self, batch: Optional[MigrationBatch] = None) -> MigrationBatch:
        batch = batch or MigrationBatch()
        batch.reset()
        batch.result = None
        batch.active = True
        return batch

    def observe_statement(self, batch: MigrationBatch, statement: str) -> None:
        if not batch.active:
            return
        postgres = self.backend == POSTGRESQL
        table_name = extract_table_name(statement, fold_unquoted=postgres)
        if table_name:
            logger.debug("Migration touched table %s", table_name)
            batch.touch(table_name, case_sensitive=postgres)

    def end_batch(self, batch: MigrationBatch) -> Optional[BatchResult]:
        """Regenerate triggers for the touched tables and reset the batch.

        Returns:
            The create result, or None when nothing was touched or
            regeneration failed.
        """
        tables = batch.touched_tables if batch.active else []
        batch.reset()
        if not tables:
            return None

        logger.info("Recreating audit triggers for migrated tables: %s", ", ".join(tables))
        try:
            result = self.manager.create(tables)
        except Exception:
            logger.exception("Failed to recreate audit triggers after migration")
            return None

        for table, outcome in result.outcomes.items():
            if outcome.status == OutcomeStatus.FAILED:
                logger.error(
                    "Audit triggers for %s could not be recreated after migration: %s",
                    table,
                    outcome.detail,
                    extra={"table": table},
                )
        return result

    def discard_batch(self, batch: MigrationBatch) -> None:
        if batch.touched_tables:
            logger.warning(
                "Migration failed; not recreating audit triggers for: %s",
                ", ".join(batch.touched_tables),
            )
        batch.reset()


@contextmanager
def migration_batch(correlator: MigrationEventCorrelator, target: Any = Engine) -> Iterator[MigrationBatch]:
    """Collect CREATE/ALTER TABLE statements executed on ``target`` while the block runs.

    ``target`` is any SQLAlchemy event target for ``before_cursor_execute``:
    an Engine, a Connection, or the Engine class to observe every engine in
    the process (Alembic's env.py usually builds its own engine). Triggers are
    regenerated when the block exits normally and the create result is left
    on ``batch.result``; if the block raises, the batch is discarded and the
    exception propagates.
    """
    batch = correlator.begin_batch()

    def _observe(conn, cursor, statement, parameters, context, executemany):
        correlator.observe_statement(batch, statement)

    succeeded = False
    event.listen(target, "before_cursor_execute", _observe)
    try:
        yield batch
        succeeded = True
    finally:
        event.remove(target, "before_cursor_execute", _observe)
        if not succeeded:
            correlator.discard_batch(batch)
    batch.result = correlator.end_batch(batch)


def upgrade_with_trigger_refresh(
    alembic_config: Config,
    manager: TriggerManager,
    revision: str = "head",
    settings: Optional[AuditSettings] = None,
) -> Optional[BatchResult]:
    """Run ``alembic upgrade`` and recreate triggers for the tables it changed.

    When auto-recreation is disabled in settings this is a plain upgrade.
    """
    settings = settings or get_settings()
    if not settings.auto_recreate_triggers_on_migration:
        command.upgrade(alembic_config, revision)
        return None

    correlator = MigrationEventCorrelator(manager)
    with migration_batch(correlator, Engine) as batch:
        command.upgrade(alembic_config, revision)
    return batch.result
