"""DDL execution against the audited database."""

import logging
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from audit_triggers.lib.exceptions import DdlExecutionFailed
from audit_triggers.lib.triggers.backends import SCHEMA_FUNCTIONS, backend_name

logger = logging.getLogger(__name__)


class DdlExecutor(Protocol):
    def execute(self, statement: str) -> None:
        ...

    def trigger_exists(self, table_name: str, trigger_name: str) -> bool:
        ...


class SqlAlchemyDdlExecutor:
    """Run trigger DDL through a SQLAlchemy engine.

    Statements are sent without a parameter collection so that ``%`` and
    ``:`` inside quoted names reach the server untouched. Driver errors are
    wrapped in DdlExecutionFailed.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._schema = SCHEMA_FUNCTIONS[backend_name(engine)]

    def execute(self, statement: str) -> None:
        logger.debug("Executing trigger DDL: %s", statement.splitlines()[0])
        try:
            with self._engine.begin() as conn:
                conn.execution_options(no_parameters=True).exec_driver_sql(statement)
        except SQLAlchemyError as exc:
            reason = getattr(exc, "orig", None) or exc
            raise DdlExecutionFailed(str(reason), statement=statement) from exc

    def trigger_exists(self, table_name: str, trigger_name: str) -> bool:
        query = text(f"""
            SELECT 1
            FROM information_schema.triggers
            WHERE trigger_schema = {self._schema}
            AND event_object_table = :table_name
            AND trigger_name = :trigger_name
        """)
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    query, {"table_name": table_name, "trigger_name": trigger_name}
                ).first()
        except SQLAlchemyError as exc:
            reason = getattr(exc, "orig", None) or exc
            raise DdlExecutionFailed(f"Could not look up trigger {trigger_name}: {reason}") from exc
        return row is not None
