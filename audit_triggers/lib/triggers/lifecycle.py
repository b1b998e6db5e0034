"""Trigger lifecycle manager.

Creates, drops and rebuilds audit triggers table by table. Every table ends
in exactly one terminal outcome (created, skipped with a reason, or failed)
and a failing table never stops the rest of the batch; no exception leaves
``create``, ``drop`` or ``rebuild``.

Lifecycle operations are not locked against each other. Two processes
rebuilding the same tables at once can race on DROP/CREATE of the same
trigger names; callers serialize runs themselves (e.g. a deployment lock).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.engine import Engine

from audit_triggers.config import AuditSettings, get_settings
from audit_triggers.lib.exceptions import (
    DdlExecutionFailed,
    IntrospectionUnavailable,
    TriggerGenerationError,
)
from audit_triggers.lib.triggers.backends import backend_name
from audit_triggers.lib.triggers.catalog import SchemaCatalog
from audit_triggers.lib.triggers.eligibility import (
    ExclusionRules,
    Skipped,
    SkipReason,
    check_eligibility,
)
from audit_triggers.lib.triggers.executor import DdlExecutor, SqlAlchemyDdlExecutor
from audit_triggers.lib.triggers.generator import ACTIONS, TriggerGenerator, generator_for, trigger_name

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[str, "Outcome"], None]


class OutcomeStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    reason: Optional[SkipReason] = None
    detail: Optional[str] = None

    @classmethod
    def created(cls) -> "Outcome":
        return cls(OutcomeStatus.CREATED)

    @classmethod
    def skipped(cls, reason: SkipReason, detail: Optional[str] = None) -> "Outcome":
        return cls(OutcomeStatus.SKIPPED, reason=reason, detail=detail)

    @classmethod
    def failed(cls, detail: str) -> "Outcome":
        return cls(OutcomeStatus.FAILED, detail=detail)


@dataclass
class BatchResult:
    """Per-table outcomes of a create run, in processing order."""

    outcomes: Dict[str, Outcome] = field(default_factory=dict)
    # Set when the table list itself could not be read.
    error: Optional[str] = None

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.status == status)

    @property
    def created_count(self) -> int:
        return self._count(OutcomeStatus.CREATED)

    @property
    def skipped_count(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def has_errors(self) -> bool:
        return self.error is not None or self.failed_count > 0


@dataclass
class DropResult:
    dropped: int = 0
    failed: Dict[str, str] = field(default_factory=dict)
    # Process-level failure: the table list could not be read.
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RebuildResult:
    drop: DropResult
    create: Optional[BatchResult] = None

    @property
    def aborted(self) -> bool:
        return self.create is None

    @property
    def has_errors(self) -> bool:
        return self.aborted or self.create.has_errors


def parse_table_list(value: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated table list; None or blank means all tables."""
    if value is None:
        return None
    tables = [name.strip() for name in value.split(",") if name.strip()]
    return tables or None


class TriggerManager:
    """Create, drop and rebuild audit triggers."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        executor: DdlExecutor,
        generator: TriggerGenerator,
        exclusions: Optional[ExclusionRules] = None,
    ):
        self.catalog = catalog
        self.executor = executor
        self.generator = generator
        self.exclusions = exclusions or ExclusionRules()

    @classmethod
    def for_engine(cls, engine: Engine, settings: Optional[AuditSettings] = None) -> "TriggerManager":
        """Wire the SQLAlchemy-backed catalog, executor and generator for an engine."""
        settings = settings or get_settings()
        return cls(
            catalog=SchemaCatalog.for_engine(engine),
            executor=SqlAlchemyDdlExecutor(engine),
            generator=generator_for(backend_name(engine), settings.audit_table),
            exclusions=ExclusionRules(configured=settings.excluded_table_names),
        )

    def _candidate_tables(self, tables: Optional[Iterable[str]]) -> List[str]:
        if tables is None:
            return self.catalog.list_tables()
        seen = set()
        candidates = []
        for name in tables:
            name = name.strip()
            if name and name not in seen:
                seen.add(name)
                candidates.append(name)
        return candidates

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        tables: Optional[Iterable[str]] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> BatchResult:
        """Install triggers on every eligible table (or only the given ones).

        ``on_outcome`` is called with each table and its outcome as soon as
        that table is done.
        """
        result = BatchResult()
        try:
            candidates = self._candidate_tables(tables)
        except IntrospectionUnavailable as exc:
            logger.error("Could not list tables: %s", exc)
            result.error = str(exc)
            return result

        for table in candidates:
            outcome = self._create_for_table(table)
            result.outcomes[table] = outcome
            self._log_outcome(table, outcome)
            if on_outcome is not None:
                on_outcome(table, outcome)

        logger.info(
            "Trigger setup finished: %d created, %d skipped, %d failed",
            result.created_count,
            result.skipped_count,
            result.failed_count,
        )
        return result

    def _create_for_table(self, table: str) -> Outcome:
        if self.exclusions.matches(table):
            return Outcome.skipped(SkipReason.EXCLUDED)

        try:
            descriptor = self.catalog.describe_table(table)
        except IntrospectionUnavailable as exc:
            return Outcome.skipped(SkipReason.INTROSPECTION_UNAVAILABLE, str(exc))

        eligibility = check_eligibility(descriptor, self.exclusions)
        if isinstance(eligibility, Skipped):
            return Outcome.skipped(eligibility.reason, eligibility.detail)

        try:
            trigger_set = self.generator.build_trigger_set(eligibility)
            self._drop_if_exists(table)
            for trigger in trigger_set:
                for statement in trigger.statements:
                    self.executor.execute(statement)
        except (TriggerGenerationError, DdlExecutionFailed) as exc:
            return Outcome.failed(str(exc))

        return Outcome.created()

    def _drop_if_exists(self, table: str) -> None:
        for action in ACTIONS:
            for statement in self.generator.drop_statements(action, table):
                self.executor.execute(statement)

    @staticmethod
    def _log_outcome(table: str, outcome: Outcome) -> None:
        extra = {"table": table, "outcome": outcome.status.value}
        if outcome.status == OutcomeStatus.CREATED:
            logger.info("Created triggers for %s", table, extra=extra)
        elif outcome.reason == SkipReason.INTROSPECTION_UNAVAILABLE:
            logger.error("Skipped %s, metadata unavailable: %s", table, outcome.detail, extra=extra)
        elif outcome.status == OutcomeStatus.SKIPPED:
            logger.info("Skipped %s (%s)", table, outcome.reason.value, extra=extra)
        else:
            logger.error("Failed to create triggers for %s: %s", table, outcome.detail, extra=extra)

    # ------------------------------------------------------------------
    # drop
    # ------------------------------------------------------------------

    def drop(self, tables: Optional[Iterable[str]] = None) -> DropResult:
        """Drop existing audit triggers, counting only the ones that existed."""
        result = DropResult()
        try:
            candidates = self._candidate_tables(tables)
        except IntrospectionUnavailable as exc:
            logger.error("Could not list tables: %s", exc)
            result.error = str(exc)
            return result

        for table in candidates:
            if self.exclusions.matches(table):
                continue
            try:
                dropped = self._drop_existing(table)
            except DdlExecutionFailed as exc:
                logger.error("Failed to drop triggers for %s: %s", table, exc, extra={"table": table})
                result.failed[table] = str(exc)
                continue
            result.dropped += dropped
            if dropped:
                logger.info("Dropped %d trigger(s) from %s", dropped, table, extra={"table": table})

        logger.info("Dropped %d trigger(s)", result.dropped)
        return result

    def _drop_existing(self, table: str) -> int:
        dropped = 0
        for action in ACTIONS:
            if not self.executor.trigger_exists(table, trigger_name(action, table)):
                continue
            for statement in self.generator.drop_statements(action, table):
                self.executor.execute(statement)
            dropped += 1
        return dropped

    # ------------------------------------------------------------------
    # rebuild
    # ------------------------------------------------------------------

    def rebuild(
        self,
        tables: Optional[Iterable[str]] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        on_drop: Optional[Callable[[DropResult], None]] = None,
    ) -> RebuildResult:
        """Drop then recreate triggers; create is skipped if the drop phase failed outright.

        ``on_drop`` receives the drop result before the create phase starts;
        ``on_outcome`` is passed through to ``create``.
        """
        tables = list(tables) if tables is not None else None
        drop_result = self.drop(tables)
        if on_drop is not None:
            on_drop(drop_result)
        if not drop_result.ok:
            logger.error("Failed to drop triggers, aborting rebuild: %s", drop_result.error)
            return RebuildResult(drop=drop_result)
        return RebuildResult(drop=drop_result, create=self.create(tables, on_outcome))
