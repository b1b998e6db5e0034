"""Eligibility rules deciding which tables and columns are audited."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple, Union

from audit_triggers.config import DEFAULT_AUDIT_TABLE
from audit_triggers.lib.triggers.types import ColumnDescriptor, TableDescriptor

# Bookkeeping, auth, session and queue tables that are never audited.
BUILT_IN_EXCLUSIONS = frozenset({
    DEFAULT_AUDIT_TABLE,
    "alembic_version",
    "migrations",
    "password_resets",
    "password_reset_tokens",
    "personal_access_tokens",
    "sessions",
    "cache",
    "cache_locks",
    "jobs",
    "job_batches",
    "failed_jobs",
})


class SkipReason(str, Enum):
    EXCLUDED = "excluded"
    NO_PRIMARY_KEY = "no_primary_key"
    COMPOSITE_KEY = "composite_key"
    UNSUPPORTED_KEY_TYPE = "unsupported_key_type"
    NO_ELIGIBLE_COLUMNS = "no_eligible_columns"
    INTROSPECTION_UNAVAILABLE = "introspection_unavailable"


@dataclass(frozen=True)
class ExclusionRules:
    """Built-in plus configured table exclusions, matched case-insensitively."""

    configured: FrozenSet[str] = frozenset()
    built_in: FrozenSet[str] = BUILT_IN_EXCLUSIONS

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "ExclusionRules":
        return cls(configured=frozenset(name.strip().lower() for name in names if name.strip()))

    def matches(self, table_name: str) -> bool:
        name = table_name.lower()
        return name in self.built_in or name in self.configured


@dataclass(frozen=True)
class Eligible:
    table_name: str
    primary_key: ColumnDescriptor
    columns: Tuple[ColumnDescriptor, ...]

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)


@dataclass(frozen=True)
class Skipped:
    table_name: str
    reason: SkipReason
    detail: Optional[str] = None


EligibilityResult = Union[Eligible, Skipped]


def check_eligibility(table: TableDescriptor, rules: ExclusionRules) -> EligibilityResult:
    """Decide whether a table gets audit triggers.

    Rules are applied in order: exclusion by name, primary-key count,
    eligible columns, then primary-key type. Eligible columns keep their
    catalog order, which fixes the key order of the generated JSON.
    """
    if rules.matches(table.name):
        return Skipped(table.name, SkipReason.EXCLUDED)

    pk_columns = table.primary_key_columns
    if not pk_columns:
        return Skipped(table.name, SkipReason.NO_PRIMARY_KEY, f"Table {table.name} has no primary key")
    if len(pk_columns) > 1:
        return Skipped(
            table.name,
            SkipReason.COMPOSITE_KEY,
            f"Table {table.name} has a composite primary key ({', '.join(pk_columns)})",
        )

    columns = tuple(column for column in table.columns if not column.excluded)
    # A table made only of binary/spatial columns reports the missing
    # columns rather than its key type.
    if not columns:
        return Skipped(table.name, SkipReason.NO_ELIGIBLE_COLUMNS, f"Table {table.name} has no suitable columns")

    primary_key = table.primary_key or ColumnDescriptor(pk_columns[0], "")
    if primary_key.excluded:
        return Skipped(
            table.name,
            SkipReason.UNSUPPORTED_KEY_TYPE,
            f"Table {table.name} has a primary key of unsupported type {primary_key.data_type}",
        )

    return Eligible(table_name=table.name, primary_key=primary_key, columns=columns)
