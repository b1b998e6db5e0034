"""
Pytest configuration and shared fakes for the audit trigger tests.
"""
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from audit_triggers.config import get_settings
from audit_triggers.lib.context import clear_context
from audit_triggers.lib.exceptions import DdlExecutionFailed, IntrospectionUnavailable
from audit_triggers.lib.triggers.types import ColumnDescriptor, TableDescriptor


def make_table(name: str, columns: Iterable[Tuple[str, str]], primary_key: Iterable[str] = ("id",)) -> TableDescriptor:
    """Build a TableDescriptor from (name, type) pairs."""
    return TableDescriptor(
        name=name,
        columns=tuple(ColumnDescriptor(col, data_type) for col, data_type in columns),
        primary_key_columns=tuple(primary_key),
    )


class FakeCatalog:
    """In-memory catalog; tables listed in ``unavailable`` cannot be described."""

    def __init__(
        self,
        tables: Iterable[TableDescriptor] = (),
        unavailable: Iterable[str] = (),
        list_error: Optional[str] = None,
    ):
        self.tables: Dict[str, TableDescriptor] = {table.name: table for table in tables}
        self.unavailable: Set[str] = set(unavailable)
        self.list_error = list_error

    def list_tables(self) -> List[str]:
        if self.list_error:
            raise IntrospectionUnavailable(self.list_error)
        return list(self.tables) + sorted(self.unavailable - set(self.tables))

    def describe_table(self, table_name: str) -> TableDescriptor:
        if table_name in self.unavailable or table_name not in self.tables:
            raise IntrospectionUnavailable(f"No metadata for {table_name}", table_name=table_name)
        return self.tables[table_name]


class FakeExecutor:
    """Records statements; any statement containing a ``fail_on`` fragment is rejected."""

    def __init__(self, fail_on: Iterable[str] = (), existing: Iterable[Tuple[str, str]] = ()):
        self.fail_on = list(fail_on)
        self.existing: Set[Tuple[str, str]] = set(existing)
        self.statements: List[str] = []

    def execute(self, statement: str) -> None:
        for fragment in self.fail_on:
            if fragment in statement:
                raise DdlExecutionFailed(f"rejected: {fragment}", statement=statement)
        self.statements.append(statement)
        if statement.startswith("DROP TRIGGER"):
            self.existing = {
                (table, name)
                for table, name in self.existing
                if f"`{name}`" not in statement and f'"{name}"' not in statement
            }

    def trigger_exists(self, table_name: str, trigger_name: str) -> bool:
        return (table_name, trigger_name) in self.existing


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Start every test from default settings and an empty audit context."""
    for var in (
        "AUDIT_DATABASE_URL",
        "DATABASE_URL",
        "AUDIT_TABLE",
        "AUDIT_EXCLUDED_TABLES",
        "AUDIT_AUTO_REGISTER_CONTEXT_PROPAGATION",
        "AUDIT_AUTO_RECREATE_TRIGGERS_ON_MIGRATION",
    ):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    clear_context()
    yield
    get_settings.cache_clear()
    clear_context()


@pytest.fixture
def orders_table() -> TableDescriptor:
    return make_table(
        "orders",
        [("id", "bigint"), ("customer", "varchar"), ("total", "decimal"), ("photo", "blob")],
    )


@pytest.fixture
def fake_catalog(orders_table) -> FakeCatalog:
    return FakeCatalog([orders_table])


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()
