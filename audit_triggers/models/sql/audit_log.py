"""SQLAlchemy model for the audit log table.

Rows are written exclusively by the generated database triggers; the model
exists so the table can be created and inspected from Python.
"""

import logging
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, MetaData, String, Table, Text, func, inspect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.types import JSON

from audit_triggers.config import DEFAULT_AUDIT_TABLE
from audit_triggers.models.sql.database import Base

logger = logging.getLogger(__name__)

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


def build_audit_log_table(table_name: str, metadata: MetaData) -> Table:
    """Define the audit table under the given name.

    Index names are derived from the table name so that a renamed audit
    table never collides with the default one.
    """
    return Table(
        table_name,
        metadata,
        Column("id", BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
        Column("table_name", String(255), nullable=False),
        Column("record_id", String(255), nullable=False),
        Column("action", String(10), nullable=False),  # insert, update, delete
        Column("user_id", String(255), nullable=True),
        Column("url", Text, nullable=True),
        Column("old_data", JsonDocument, nullable=True),
        Column("new_data", JsonDocument, nullable=True),
        Column("created_at", DateTime, nullable=False, server_default=func.now()),
        # Composite indexes for common lookups
        Index(f"ix_{table_name}_table_record", "table_name", "record_id"),
        Index(f"ix_{table_name}_table_action", "table_name", "action"),
        Index(f"ix_{table_name}_user_created", "user_id", "created_at"),
    )


class AuditLog(Base):
    """One captured row change."""

    __table__ = build_audit_log_table(DEFAULT_AUDIT_TABLE, Base.metadata)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.table_name}#{self.record_id}>"


def audit_log_table(table_name: Optional[str] = None) -> Table:
    """Return the audit table definition, renamed when a custom name is configured."""
    if not table_name or table_name == DEFAULT_AUDIT_TABLE:
        return AuditLog.__table__
    return build_audit_log_table(table_name, MetaData())


def ensure_audit_table(engine: Engine, table_name: Optional[str] = None) -> bool:
    """Create the audit table if it does not exist.

    Returns:
        True if the table was created, False if it already existed.
    """
    table = audit_log_table(table_name)
    if inspect(engine).has_table(table.name):
        logger.info("Audit table %s already exists", table.name)
        return False
    table.create(engine)
    logger.info("Created audit table %s", table.name)
    return True
