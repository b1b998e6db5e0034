"""Schema catalog reader.

Reads table, column and primary-key metadata through an ordered list of
introspection strategies. The first strategy that answers wins; a failing
strategy defers to the next one. SQLAlchemy's Inspector is tried first and
raw ``information_schema`` queries second, because the Inspector cannot name
types its dialect does not know (PostGIS geometry, MySQL spatial types).

Usage:
    catalog = SchemaCatalog.for_engine(engine)
    for name in catalog.list_tables():
        descriptor = catalog.describe_table(name)
"""

import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import NullType, TypeEngine

from audit_triggers.lib.exceptions import IntrospectionUnavailable
from audit_triggers.lib.triggers.backends import POSTGRESQL, SCHEMA_FUNCTIONS, backend_name
from audit_triggers.lib.triggers.types import ColumnDescriptor, TableDescriptor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class IntrospectionStrategy(Protocol):
    """Capability interface for one way of reading the catalog."""

    name: str

    def list_tables(self) -> List[str]:
        ...

    def describe_table(self, table_name: str) -> TableDescriptor:
        ...


def _type_name(type_: TypeEngine) -> str:
    return type(type_).__name__.lower()


class InspectorStrategy:
    """Read the catalog through SQLAlchemy's Inspector."""

    name = "inspector"

    def __init__(self, engine: Engine):
        self._engine = engine

    def list_tables(self) -> List[str]:
        return list(inspect(self._engine).get_table_names())

    def describe_table(self, table_name: str) -> TableDescriptor:
        # A fresh Inspector per call; its reflection cache must not outlive
        # schema changes made by migrations.
        inspector = inspect(self._engine)
        columns = []
        for column in inspector.get_columns(table_name):
            if isinstance(column["type"], NullType):
                raise IntrospectionUnavailable(
                    f"Type of column {column['name']} on {table_name} is not "
                    f"recognised by the {self._engine.dialect.name} dialect",
                    table_name=table_name,
                )
            columns.append(ColumnDescriptor(column["name"], _type_name(column["type"])))

        if not columns:
            raise IntrospectionUnavailable(
                f"No columns reflected for {table_name}", table_name=table_name
            )

        pk = inspector.get_pk_constraint(table_name) or {}
        return TableDescriptor(
            name=table_name,
            columns=tuple(columns),
            primary_key_columns=tuple(pk.get("constrained_columns") or ()),
        )


class InformationSchemaStrategy:
    """Read the catalog with raw information_schema queries."""

    name = "information_schema"

    def __init__(self, engine: Engine):
        self._engine = engine
        self._schema = SCHEMA_FUNCTIONS[backend_name(engine)]
        self._postgres = backend_name(engine) == POSTGRESQL

    def list_tables(self) -> List[str]:
        query = text(f"""
            SELECT table_name AS table_name
            FROM information_schema.tables
            WHERE table_schema = {self._schema}
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """)
        with self._engine.connect() as conn:
            return [row.table_name for row in conn.execute(query)]

    def describe_table(self, table_name: str) -> TableDescriptor:
        cols_query = text(f"""
            SELECT column_name AS column_name,
                   data_type AS data_type,
                   {"udt_name" if self._postgres else "NULL"} AS udt_name
            FROM information_schema.columns
            WHERE table_schema = {self._schema}
            AND table_name = :table_name
            ORDER BY ordinal_position
        """)
        pk_query = text(f"""
            SELECT kcu.column_name AS column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
                AND tc.table_name = kcu.table_name
            WHERE tc.constraint_type = 'PRIMARY KEY'
            AND tc.table_schema = {self._schema}
            AND tc.table_name = :table_name
            ORDER BY kcu.ordinal_position
        """)
        with self._engine.connect() as conn:
            col_rows = conn.execute(cols_query, {"table_name": table_name}).all()
            pk_rows = conn.execute(pk_query, {"table_name": table_name}).all()

        if not col_rows:
            raise IntrospectionUnavailable(
                f"Table {table_name} not found in information_schema",
                table_name=table_name,
            )

        columns = tuple(
            ColumnDescriptor(row.column_name, _normalize_data_type(row.data_type, row.udt_name))
            for row in col_rows
        )
        return TableDescriptor(
            name=table_name,
            columns=columns,
            primary_key_columns=tuple(row.column_name for row in pk_rows),
        )


def _normalize_data_type(data_type: str, udt_name: Optional[str]) -> str:
    base = (data_type or "").lower()
    # PostgreSQL reports extension and domain types (e.g. PostGIS geometry)
    # as USER-DEFINED with the real name in udt_name.
    if base == "user-defined" and udt_name:
        return udt_name.lower()
    return base


class SchemaCatalog:
    """Ordered introspection strategies, first success wins."""

    def __init__(self, strategies: Sequence[IntrospectionStrategy]):
        if not strategies:
            raise ValueError("SchemaCatalog needs at least one strategy")
        self.strategies = list(strategies)

    @classmethod
    def for_engine(cls, engine: Engine) -> "SchemaCatalog":
        return cls([InspectorStrategy(engine), InformationSchemaStrategy(engine)])

    def list_tables(self) -> List[str]:
        """List base tables in the current schema.

        Raises:
            IntrospectionUnavailable: If no strategy could list the tables.
        """
        return self._first_success(lambda strategy: strategy.list_tables(), "list tables", None)

    def describe_table(self, table_name: str) -> TableDescriptor:
        """Describe one table.

        Raises:
            IntrospectionUnavailable: If no strategy could describe the table.
        """
        return self._first_success(
            lambda strategy: strategy.describe_table(table_name),
            f"describe table {table_name}",
            table_name,
        )

    def _first_success(self, call: Callable[[IntrospectionStrategy], T], what: str, table_name) -> T:
        attempts: Dict[str, str] = {}
        for strategy in self.strategies:
            try:
                return call(strategy)
            except (SQLAlchemyError, IntrospectionUnavailable, NotImplementedError) as exc:
                attempts[strategy.name] = str(exc)
                logger.debug("Strategy %s could not %s: %s", strategy.name, what, exc)

        raise IntrospectionUnavailable(
            f"Could not {what}: " + "; ".join(f"{name}: {msg}" for name, msg in attempts.items()),
            table_name=table_name,
            attempts=attempts,
        )
