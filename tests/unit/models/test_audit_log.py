"""Unit tests for the audit log model and engine helpers."""

import pytest
from sqlalchemy import create_engine, inspect, select

from audit_triggers.models.sql.audit_log import AuditLog, audit_log_table, ensure_audit_table
from audit_triggers.models.sql.database import create_audit_engine, get_session_factory


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    yield engine
    engine.dispose()


class TestEnsureAuditTable:
    def test_creates_table_once(self, engine):
        assert ensure_audit_table(engine) is True
        assert ensure_audit_table(engine) is False

        columns = [column["name"] for column in inspect(engine).get_columns("audit_logs")]
        assert columns == [
            "id", "table_name", "record_id", "action", "user_id", "url",
            "old_data", "new_data", "created_at",
        ]

    def test_lookup_indexes_created(self, engine):
        ensure_audit_table(engine)

        indexes = {index["name"]: index["column_names"] for index in inspect(engine).get_indexes("audit_logs")}
        assert indexes == {
            "ix_audit_logs_table_record": ["table_name", "record_id"],
            "ix_audit_logs_table_action": ["table_name", "action"],
            "ix_audit_logs_user_created": ["user_id", "created_at"],
        }

    def test_custom_table_name(self, engine):
        assert ensure_audit_table(engine, "history") is True

        assert inspect(engine).has_table("history")
        assert not inspect(engine).has_table("audit_logs")
        assert audit_log_table("history").name == "history"
        assert audit_log_table() is AuditLog.__table__


class TestAuditLogModel:
    def test_round_trip_through_session(self, engine):
        ensure_audit_table(engine)
        Session = get_session_factory(engine)

        with Session() as session:
            session.add(
                AuditLog(
                    table_name="orders",
                    record_id="5",
                    action="update",
                    user_id="17",
                    old_data={"total": 10},
                    new_data={"total": 12},
                )
            )
            session.commit()

            entry = session.execute(select(AuditLog)).scalar_one()
            assert entry.new_data == {"total": 12}
            assert entry.created_at is not None
            assert repr(entry) == "<AuditLog update orders#5>"


def test_create_audit_engine_uses_pooled_engine(tmp_path):
    engine = create_audit_engine(f"sqlite:///{tmp_path}/audit.db", pool_size=2)
    try:
        assert engine.pool.size() == 2
        with engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT 1").scalar() == 1
    finally:
        engine.dispose()
