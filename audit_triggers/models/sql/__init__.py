"""SQL models module."""

from .audit_log import AuditLog, audit_log_table, ensure_audit_table
from .database import Base, create_audit_engine, get_session_factory

__all__ = [
    "AuditLog",
    "Base",
    "audit_log_table",
    "create_audit_engine",
    "ensure_audit_table",
    "get_session_factory",
]
