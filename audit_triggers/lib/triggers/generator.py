"""Trigger code generator.

Turns an eligible table (primary key plus ordered audit columns) into three
AFTER ... FOR EACH ROW triggers that write into the audit table:

- insert: full new row in ``new_data``, ``old_data`` NULL
- delete: full old row in ``old_data``, ``new_data`` NULL
- update: only the columns whose value changed, compared NULL-aware, in both
  ``old_data`` and ``new_data``; updates that change no audited column write
  nothing

The acting user and request URL come from connection-scoped variables set
by the context propagation hook, and ``created_at`` from the database clock.

Generation is pure: the same input always yields byte-identical SQL. All
names are quoted through ``quoting``.
"""

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

from audit_triggers.config import DEFAULT_AUDIT_TABLE
from audit_triggers.lib.exceptions import ConfigurationError, TriggerGenerationError
from audit_triggers.lib.triggers.backends import MYSQL, POSTGRESQL
from audit_triggers.lib.triggers.eligibility import Eligible
from audit_triggers.lib.triggers.quoting import (
    mysql_json_member_path,
    quote_mysql_identifier,
    quote_mysql_literal,
    quote_postgres_identifier,
    quote_postgres_literal,
)
from audit_triggers.lib.triggers.types import ColumnDescriptor

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"
ACTIONS = (INSERT, UPDATE, DELETE)

AUDIT_COLUMNS = "table_name, record_id, action, user_id, url, old_data, new_data, created_at"


def trigger_name(action: str, table_name: str) -> str:
    """Deterministic trigger name, e.g. ``after_update_orders``."""
    return f"after_{action}_{table_name}"


@dataclass(frozen=True)
class TriggerDefinition:
    """One trigger and the statements that install it, in execution order."""

    name: str
    action: str
    table_name: str
    statements: Tuple[str, ...]


@dataclass(frozen=True)
class TriggerSet:
    table_name: str
    insert_trigger: TriggerDefinition
    update_trigger: TriggerDefinition
    delete_trigger: TriggerDefinition

    def __iter__(self) -> Iterator[TriggerDefinition]:
        yield self.insert_trigger
        yield self.update_trigger
        yield self.delete_trigger


class TriggerGenerator:
    """Base class for backend-specific trigger builders."""

    backend: str = ""
    max_identifier_length: int = 64

    def __init__(self, audit_table: str = DEFAULT_AUDIT_TABLE):
        self.audit_table = audit_table

    def build_trigger_set(self, eligible: Eligible) -> TriggerSet:
        pk = eligible.primary_key.name
        return TriggerSet(
            table_name=eligible.table_name,
            insert_trigger=self.build_insert_trigger(eligible.table_name, pk, eligible.columns),
            update_trigger=self.build_update_trigger(eligible.table_name, pk, eligible.columns),
            delete_trigger=self.build_delete_trigger(eligible.table_name, pk, eligible.columns),
        )

    def trigger_name(self, action: str, table_name: str) -> str:
        """Trigger name for the action, rejected if the backend would truncate it."""
        name = trigger_name(action, table_name)
        if len(name.encode("utf-8")) > self.max_identifier_length:
            raise TriggerGenerationError(
                f"Trigger name {name} exceeds the {self.max_identifier_length}-byte "
                f"identifier limit of {self.backend}",
                details={"table_name": table_name, "trigger_name": name},
            )
        return name

    def build_insert_trigger(
        self, table_name: str, primary_key: str, columns: Sequence[ColumnDescriptor]
    ) -> TriggerDefinition:
        raise NotImplementedError

    def build_update_trigger(
        self, table_name: str, primary_key: str, columns: Sequence[ColumnDescriptor]
    ) -> TriggerDefinition:
        raise NotImplementedError

    def build_delete_trigger(
        self, table_name: str, primary_key: str, columns: Sequence[ColumnDescriptor]
    ) -> TriggerDefinition:
        raise NotImplementedError

    def drop_statements(self, action: str, table_name: str) -> Tuple[str, ...]:
        """Idempotent statements removing one trigger."""
        raise NotImplementedError

    @staticmethod
    def _require_columns(table_name: str, columns: Sequence[ColumnDescriptor]) -> None:
        if not columns:
            raise TriggerGenerationError(f"No audit columns given for {table_name}")


# ============================================================================
# MySQL / MariaDB
# ============================================================================

MYSQL_ROW_TRIGGER = """CREATE TRIGGER {trigger} AFTER {event} ON {table}
FOR EACH ROW
BEGIN
    INSERT INTO {audit_table} ({audit_columns})
    VALUES (
        {table_literal},
        CAST({row}.{pk} AS CHAR),
        '{action}',
        @current_user_id,
        @current_url,
        {old_data},
        {new_data},
        NOW()
    );
END"""

MYSQL_UPDATE_TRIGGER = """CREATE TRIGGER {trigger} AFTER UPDATE ON {table}
FOR EACH ROW
BEGIN
    DECLARE old_changes JSON DEFAULT JSON_OBJECT();
    DECLARE new_changes JSON DEFAULT JSON_OBJECT();

    IF NOT ({row_unchanged}) THEN
{column_diffs}
        IF JSON_LENGTH(new_changes) > 0 THEN
            INSERT INTO {audit_table} ({audit_columns})
            VALUES (
                {table_literal},
                CAST(NEW.{pk} AS CHAR),
                'update',
                @current_user_id,
                @current_url,
                old_changes,
                new_changes,
                NOW()
            );
        END IF;
    END IF;
END"""

MYSQL_COLUMN_DIFF = """        IF NOT ({old} <=> {new}) THEN
            SET old_changes = JSON_SET(old_changes, {path}, OLD.{column});
            SET new_changes = JSON_SET(new_changes, {path}, NEW.{column});
        END IF;"""

# Collated types, compared byte-wise.
MYSQL_COLLATED_TYPES = frozenset({
    "char", "varchar", "nchar", "nvarchar",
    "tinytext", "text", "mediumtext", "longtext",
    "enum", "set",
})


class MySQLTriggerGenerator(TriggerGenerator):
    """Triggers as single CREATE TRIGGER statements with compound bodies."""

    backend = MYSQL
    max_identifier_length = 64

    def _json_object(self, columns: Sequence[ColumnDescriptor], row: str) -> str:
        parts = [
            f"{quote_mysql_literal(column.name)}, {row}.{quote_mysql_identifier(column.name)}"
            for column in columns
        ]
        return "JSON_OBJECT(" + ", ".join(parts) + ")"

    def _comparable(self, row: str, column: ColumnDescriptor) -> str:
        reference = f"{row}.{quote_mysql_identifier(column.name)}"
        if column.data_type.lower() in MYSQL_COLLATED_TYPES:
            return f"CAST({reference} AS BINARY)"
        return reference

    def _row_trigger(
        self, action: str, table_name: str, primary_key: str, columns: Sequence[ColumnDescriptor]
    ) -> TriggerDefinition:
        self._require_columns(table_name, columns)
        name = self.trigger_name(action, table_name)
        row = "NEW" if action == INSERT else "OLD"
        snapshot = self._json_object(columns, row)
        sql = MYSQL_ROW_TRIGGER.format(
            trigger=quote_mysql_identifier(name),
            event=action.upper(),
            table=quote_mysql_identifier(table_name),
            audit_table=quote_mysql_identifier(self.audit_table),
            audit_columns=AUDIT_COLUMNS,
            table_literal=quote_mysql_literal(table_name),
            row=row,
            pk=quote_mysql_identifier(primary_key),
            action=action,
            old_data="NULL" if action == INSERT else snapshot,
            new_data=snapshot if action == INSERT else "NULL",
        )
        return TriggerDefinition(name=name, action=action, table_name=table_name, statements=(sql,))

    def build_insert_trigger(self, table_name, primary_key, columns):
        return self._row_trigger(INSERT, table_name, primary_key, columns)

    def build_delete_trigger(self, table_name, primary_key, columns):
        return self._row_trigger(DELETE, table_name, primary_key, columns)

    def build_update_trigger(self, table_name, primary_key, columns):
        self._require_columns(table_name, columns)
        name = self.trigger_name(UPDATE, table_name)
        row_unchanged = "\n        AND ".join(
            f"{self._comparable('OLD', column)} <=> {self._comparable('NEW', column)}"
            for column in columns
        )
        column_diffs = "\n".join(
            MYSQL_COLUMN_DIFF.format(
                old=self._comparable("OLD", column),
                new=self._comparable("NEW", column),
                column=quote_mysql_identifier(column.name),
                path=quote_mysql_literal(mysql_json_member_path(column.name)),
            )
            for column in columns
        )
        sql = MYSQL_UPDATE_TRIGGER.format(
            trigger=quote_mysql_identifier(name),
            table=quote_mysql_identifier(table_name),
            row_unchanged=row_unchanged,
            column_diffs=column_diffs,
            audit_table=quote_mysql_identifier(self.audit_table),
            audit_columns=AUDIT_COLUMNS,
            table_literal=quote_mysql_literal(table_name),
            pk=quote_mysql_identifier(primary_key),
        )
        return TriggerDefinition(name=name, action=UPDATE, table_name=table_name, statements=(sql,))

    def drop_statements(self, action, table_name):
        return (f"DROP TRIGGER IF EXISTS {quote_mysql_identifier(trigger_name(action, table_name))}",)


# ============================================================================
# PostgreSQL
# ============================================================================

# Dollar-quote tag for function bodies; names containing it are rejected.
PG_BODY_TAG = "$audit$"

# jsonb_build_object takes at most 100 arguments.
PG_PAIRS_PER_CALL = 50

PG_USER_SETTING = "audit.current_user_id"
PG_URL_SETTING = "audit.current_url"

PG_CONTEXT_VALUES = (
    f"NULLIF(current_setting('{PG_USER_SETTING}', true), ''),\n"
    f"        NULLIF(current_setting('{PG_URL_SETTING}', true), '')"
)

PG_ROW_FUNCTION = """CREATE OR REPLACE FUNCTION {function}() RETURNS TRIGGER
LANGUAGE plpgsql AS {tag}
BEGIN
    INSERT INTO {audit_table} ({audit_columns})
    VALUES (
        {table_literal},
        {row}.{pk}::TEXT,
        '{action}',
        {context_values},
        {old_data},
        {new_data},
        NOW()
    );
    RETURN NULL;
END;
{tag}"""

PG_UPDATE_FUNCTION = """CREATE OR REPLACE FUNCTION {function}() RETURNS TRIGGER
LANGUAGE plpgsql AS {tag}
DECLARE
    old_changes JSONB := '{{}}'::JSONB;
    new_changes JSONB := '{{}}'::JSONB;
BEGIN
    IF {row_unchanged} THEN
        RETURN NULL;
    END IF;

{column_diffs}

    IF new_changes = '{{}}'::JSONB THEN
        RETURN NULL;
    END IF;

    INSERT INTO {audit_table} ({audit_columns})
    VALUES (
        {table_literal},
        NEW.{pk}::TEXT,
        'update',
        {context_values},
        old_changes,
        new_changes,
        NOW()
    );
    RETURN NULL;
END;
{tag}"""

PG_COLUMN_DIFF = """    IF {old} IS DISTINCT FROM {new} THEN
        old_changes := old_changes || jsonb_build_object({key}, OLD.{column});
        new_changes := new_changes || jsonb_build_object({key}, NEW.{column});
    END IF;"""

PG_TRIGGER = """CREATE TRIGGER {trigger} AFTER {event} ON {table}
FOR EACH ROW EXECUTE FUNCTION {function}()"""

# Types without an equality operator, or with a case-insensitive one,
# compared through a castable form.
PG_COMPARISON_CASTS = {
    "json": "::JSONB",
    "xml": "::TEXT",
    "array": "::TEXT",
    "citext": "::TEXT",
}


class PostgresTriggerGenerator(TriggerGenerator):
    """Triggers as a PL/pgSQL function plus a trigger of the same name."""

    backend = POSTGRESQL
    max_identifier_length = 63

    def _check_names(self, table_name: str, columns: Sequence[ColumnDescriptor]) -> None:
        self._require_columns(table_name, columns)
        names = [table_name, self.audit_table] + [column.name for column in columns]
        if any(PG_BODY_TAG in name for name in names):
            raise TriggerGenerationError(
                f"Names on {table_name} contain the reserved token {PG_BODY_TAG}"
            )

    def _jsonb_object(self, columns: Sequence[ColumnDescriptor], row: str) -> str:
        pairs = [
            f"{quote_postgres_literal(column.name)}, {row}.{quote_postgres_identifier(column.name)}"
            for column in columns
        ]
        calls: List[str] = []
        for start in range(0, len(pairs), PG_PAIRS_PER_CALL):
            calls.append("jsonb_build_object(" + ", ".join(pairs[start:start + PG_PAIRS_PER_CALL]) + ")")
        return " || ".join(calls)

    def _comparable(self, row: str, column: ColumnDescriptor) -> str:
        reference = f"{row}.{quote_postgres_identifier(column.name)}"
        cast = PG_COMPARISON_CASTS.get(column.data_type.lower())
        if cast is None:
            return reference
        return f"{reference}{cast}"

    def _trigger_statement(self, name: str, action: str, table_name: str) -> str:
        return PG_TRIGGER.format(
            trigger=quote_postgres_identifier(name),
            event=action.upper(),
            table=quote_postgres_identifier(table_name),
            function=quote_postgres_identifier(name),
        )

    def _row_trigger(
        self, action: str, table_name: str, primary_key: str, columns: Sequence[ColumnDescriptor]
    ) -> TriggerDefinition:
        self._check_names(table_name, columns)
        name = self.trigger_name(action, table_name)
        row = "NEW" if action == INSERT else "OLD"
        snapshot = self._jsonb_object(columns, row)
        function = PG_ROW_FUNCTION.format(
            function=quote_postgres_identifier(name),
            tag=PG_BODY_TAG,
            audit_table=quote_postgres_identifier(self.audit_table),
            audit_columns=AUDIT_COLUMNS,
            table_literal=quote_postgres_literal(table_name),
            row=row,
            pk=quote_postgres_identifier(primary_key),
            action=action,
            context_values=PG_CONTEXT_VALUES,
            old_data="NULL" if action == INSERT else snapshot,
            new_data=snapshot if action == INSERT else "NULL",
        )
        return TriggerDefinition(
            name=name,
            action=action,
            table_name=table_name,
            statements=(function, self._trigger_statement(name, action, table_name)),
        )

    def build_insert_trigger(self, table_name, primary_key, columns):
        return self._row_trigger(INSERT, table_name, primary_key, columns)

    def build_delete_trigger(self, table_name, primary_key, columns):
        return self._row_trigger(DELETE, table_name, primary_key, columns)

    def build_update_trigger(self, table_name, primary_key, columns):
        self._check_names(table_name, columns)
        name = self.trigger_name(UPDATE, table_name)

        row_unchanged = "\n        AND ".join(
            f"{self._comparable('OLD', column)} IS NOT DISTINCT FROM {self._comparable('NEW', column)}"
            for column in columns
        )
        column_diffs = "\n".join(
            PG_COLUMN_DIFF.format(
                old=self._comparable("OLD", column),
                new=self._comparable("NEW", column),
                key=quote_postgres_literal(column.name),
                column=quote_postgres_identifier(column.name),
            )
            for column in columns
        )
        function = PG_UPDATE_FUNCTION.format(
            function=quote_postgres_identifier(name),
            tag=PG_BODY_TAG,
            row_unchanged=row_unchanged,
            column_diffs=column_diffs,
            audit_table=quote_postgres_identifier(self.audit_table),
            audit_columns=AUDIT_COLUMNS,
            table_literal=quote_postgres_literal(table_name),
            pk=quote_postgres_identifier(primary_key),
            context_values=PG_CONTEXT_VALUES,
        )
        return TriggerDefinition(
            name=name,
            action=UPDATE,
            table_name=table_name,
            statements=(function, self._trigger_statement(name, UPDATE, table_name)),
        )

    def drop_statements(self, action, table_name):
        name = quote_postgres_identifier(trigger_name(action, table_name))
        return (
            f"DROP TRIGGER IF EXISTS {name} ON {quote_postgres_identifier(table_name)}",
            f"DROP FUNCTION IF EXISTS {name}()",
        )


_GENERATORS = {
    MYSQL: MySQLTriggerGenerator,
    POSTGRESQL: PostgresTriggerGenerator,
}


def generator_for(backend: str, audit_table: str = DEFAULT_AUDIT_TABLE) -> TriggerGenerator:
    """Return the trigger generator for a backend key (see backends.backend_name)."""
    try:
        return _GENERATORS[backend](audit_table)
    except KeyError:
        raise ConfigurationError(f"No trigger generator for backend '{backend}'") from None
