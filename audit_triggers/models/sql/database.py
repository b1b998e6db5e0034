"""Database engine and session management for the audit tooling.

The engine is shared by the trigger lifecycle commands and, in host
applications, by the request handlers whose writes fire the triggers. Each
connection checked out of its pool receives the current audit context when
context propagation is installed (see audit_triggers.middleware).
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import QueuePool

from audit_triggers.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_audit_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create a pooled engine for the audited database."""
    url = database_url or get_settings().database_url
    options = dict(
        future=True,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before using
    )
    options.update(kwargs)
    return create_engine(url, **options)


def get_session_factory(engine: Engine) -> sessionmaker:
    """Sessions for reading the audit table."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
