"""Audit trigger synthesis and lifecycle management."""

from .catalog import SchemaCatalog
from .eligibility import Eligible, ExclusionRules, Skipped, SkipReason, check_eligibility
from .generator import MySQLTriggerGenerator, PostgresTriggerGenerator, generator_for
from .lifecycle import BatchResult, DropResult, OutcomeStatus, RebuildResult, TriggerManager
from .migration_events import (
    MigrationBatch,
    MigrationEventCorrelator,
    migration_batch,
    upgrade_with_trigger_refresh,
)
from .types import ColumnDescriptor, TableDescriptor

__all__ = [
    "BatchResult",
    "ColumnDescriptor",
    "DropResult",
    "Eligible",
    "ExclusionRules",
    "MigrationBatch",
    "MigrationEventCorrelator",
    "MySQLTriggerGenerator",
    "OutcomeStatus",
    "PostgresTriggerGenerator",
    "RebuildResult",
    "SchemaCatalog",
    "SkipReason",
    "Skipped",
    "TableDescriptor",
    "TriggerManager",
    "check_eligibility",
    "generator_for",
    "migration_batch",
    "upgrade_with_trigger_refresh",
]
