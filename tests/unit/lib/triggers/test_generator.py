"""Unit tests for MySQL and PostgreSQL trigger generation."""

import pytest

from audit_triggers.lib.exceptions import ConfigurationError, TriggerGenerationError
from audit_triggers.lib.triggers.eligibility import Eligible, ExclusionRules, check_eligibility
from audit_triggers.lib.triggers.generator import (
    ACTIONS,
    PG_PAIRS_PER_CALL,
    MySQLTriggerGenerator,
    PostgresTriggerGenerator,
    generator_for,
    trigger_name,
)
from conftest import make_table


def _eligible(table) -> Eligible:
    result = check_eligibility(table, ExclusionRules())
    assert isinstance(result, Eligible)
    return result


@pytest.fixture
def eligible_orders(orders_table) -> Eligible:
    return _eligible(orders_table)


class TestTriggerNames:
    def test_names_follow_action_and_table(self):
        assert trigger_name("insert", "orders") == "after_insert_orders"
        assert trigger_name("delete", "orders") == "after_delete_orders"

    def test_trigger_set_names(self, eligible_orders):
        trigger_set = MySQLTriggerGenerator().build_trigger_set(eligible_orders)
        assert [t.name for t in trigger_set] == [
            "after_insert_orders",
            "after_update_orders",
            "after_delete_orders",
        ]
        assert [t.action for t in trigger_set] == list(ACTIONS)

    @pytest.mark.parametrize("generator_cls", [MySQLTriggerGenerator, PostgresTriggerGenerator])
    def test_overlong_name_is_rejected(self, generator_cls):
        table = make_table("t" * 60, [("id", "int")])
        with pytest.raises(TriggerGenerationError):
            generator_cls().build_trigger_set(_eligible(table))

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            generator_for("sqlite")


class TestDeterminism:
    @pytest.mark.parametrize("backend", ["mysql", "postgresql"])
    def test_same_input_same_sql(self, backend, eligible_orders):
        first = generator_for(backend).build_trigger_set(eligible_orders)
        second = generator_for(backend).build_trigger_set(eligible_orders)
        assert first == second


class TestMySQLGenerator:
    def test_insert_trigger_snapshots_new_row(self, eligible_orders):
        (sql,) = MySQLTriggerGenerator().build_trigger_set(eligible_orders).insert_trigger.statements

        assert sql.startswith("CREATE TRIGGER `after_insert_orders` AFTER INSERT ON `orders`")
        assert "INSERT INTO `audit_logs`" in sql
        assert "CAST(NEW.`id` AS CHAR)" in sql
        assert "JSON_OBJECT('id', NEW.`id`, 'customer', NEW.`customer`, 'total', NEW.`total`)" in sql
        assert "@current_user_id" in sql and "@current_url" in sql
        assert "photo" not in sql
        assert "NULL,\n        JSON_OBJECT" in sql

    def test_delete_trigger_snapshots_old_row(self, eligible_orders):
        (sql,) = MySQLTriggerGenerator().build_trigger_set(eligible_orders).delete_trigger.statements

        assert "AFTER DELETE ON `orders`" in sql
        assert "CAST(OLD.`id` AS CHAR)" in sql
        assert "JSON_OBJECT('id', OLD.`id`" in sql
        assert "'delete'" in sql

    def test_update_trigger_diffs_changed_columns(self, eligible_orders):
        (sql,) = MySQLTriggerGenerator().build_trigger_set(eligible_orders).update_trigger.statements

        assert (
            "IF NOT (OLD.`id` <=> NEW.`id`\n"
            "        AND CAST(OLD.`customer` AS BINARY) <=> CAST(NEW.`customer` AS BINARY)"
        ) in sql
        assert "IF NOT (OLD.`total` <=> NEW.`total`) THEN" in sql
        assert "JSON_SET(old_changes, '$.\"total\"', OLD.`total`)" in sql
        assert "JSON_SET(new_changes, '$.\"total\"', NEW.`total`)" in sql
        assert "IF JSON_LENGTH(new_changes) > 0 THEN" in sql
        assert "photo" not in sql

    def test_character_columns_compared_byte_wise(self):
        """Case and accent changes must not be hidden by the column collation."""
        table = make_table(
            "people",
            [("id", "int"), ("name", "VARCHAR"), ("bio", "longtext"), ("kind", "enum"), ("meta", "json")],
        )
        (sql,) = MySQLTriggerGenerator().build_trigger_set(_eligible(table)).update_trigger.statements

        assert "IF NOT (CAST(OLD.`name` AS BINARY) <=> CAST(NEW.`name` AS BINARY)) THEN" in sql
        assert "IF NOT (CAST(OLD.`bio` AS BINARY) <=> CAST(NEW.`bio` AS BINARY)) THEN" in sql
        assert "IF NOT (CAST(OLD.`kind` AS BINARY) <=> CAST(NEW.`kind` AS BINARY)) THEN" in sql
        assert "IF NOT (OLD.`meta` <=> NEW.`meta`) THEN" in sql
        assert "IF NOT (OLD.`id` <=> NEW.`id`) THEN" in sql
        assert "JSON_SET(new_changes, '$.\"name\"', NEW.`name`)" in sql

    def test_awkward_names_are_quoted(self):
        table = make_table("order`s", [("id", "int"), ("it's", "varchar")])
        trigger_set = MySQLTriggerGenerator().build_trigger_set(_eligible(table))
        sql = trigger_set.insert_trigger.statements[0]

        assert "ON `order``s`" in sql
        assert "'it''s', NEW.`it's`" in sql
        assert "'order`s'" in sql

    def test_custom_audit_table(self, eligible_orders):
        trigger_set = MySQLTriggerGenerator(audit_table="history").build_trigger_set(eligible_orders)
        assert all("INSERT INTO `history`" in t.statements[0] for t in trigger_set)

    def test_drop_statement_is_idempotent(self):
        assert MySQLTriggerGenerator().drop_statements("update", "orders") == (
            "DROP TRIGGER IF EXISTS `after_update_orders`",
        )


class TestPostgresGenerator:
    def test_function_and_trigger_statements(self, eligible_orders):
        insert = PostgresTriggerGenerator().build_trigger_set(eligible_orders).insert_trigger
        function, trigger = insert.statements

        assert function.startswith('CREATE OR REPLACE FUNCTION "after_insert_orders"() RETURNS TRIGGER')
        assert "LANGUAGE plpgsql AS $audit$" in function
        assert "jsonb_build_object('id', NEW.\"id\", 'customer', NEW.\"customer\", 'total', NEW.\"total\")" in function
        assert "NULLIF(current_setting('audit.current_user_id', true), '')" in function
        assert "NEW.\"id\"::TEXT" in function
        assert trigger == (
            'CREATE TRIGGER "after_insert_orders" AFTER INSERT ON "orders"\n'
            'FOR EACH ROW EXECUTE FUNCTION "after_insert_orders"()'
        )

    def test_update_function_suppresses_noop_updates(self, eligible_orders):
        function, _ = PostgresTriggerGenerator().build_trigger_set(eligible_orders).update_trigger.statements

        assert 'IF OLD."id" IS NOT DISTINCT FROM NEW."id"' in function
        assert 'IF OLD."total" IS DISTINCT FROM NEW."total" THEN' in function
        assert "old_changes := old_changes || jsonb_build_object('total', OLD.\"total\");" in function
        assert "IF new_changes = '{}'::JSONB THEN" in function

    def test_json_columns_compared_as_jsonb(self):
        table = make_table("docs", [("id", "int"), ("body", "json"), ("tags", "ARRAY")])
        function, _ = PostgresTriggerGenerator().build_trigger_set(_eligible(table)).update_trigger.statements

        assert 'OLD."body"::JSONB IS DISTINCT FROM NEW."body"::JSONB' in function
        assert 'OLD."tags"::TEXT IS DISTINCT FROM NEW."tags"::TEXT' in function

    def test_citext_columns_compared_case_sensitively(self):
        table = make_table("people", [("id", "int"), ("email", "citext")])
        function, _ = PostgresTriggerGenerator().build_trigger_set(_eligible(table)).update_trigger.statements

        assert 'IF OLD."email"::TEXT IS DISTINCT FROM NEW."email"::TEXT THEN' in function

    def test_wide_tables_split_jsonb_calls(self):
        columns = [("id", "int")] + [(f"c{i}", "int") for i in range(PG_PAIRS_PER_CALL + 5)]
        table = make_table("wide", columns)
        function, _ = PostgresTriggerGenerator().build_trigger_set(_eligible(table)).insert_trigger.statements

        assert function.count("jsonb_build_object(") == 2
        assert ") || jsonb_build_object(" in function

    def test_dollar_quote_tag_in_name_is_rejected(self):
        table = make_table("orders", [("id", "int"), ("x$audit$y", "int")])
        with pytest.raises(TriggerGenerationError):
            PostgresTriggerGenerator().build_trigger_set(_eligible(table))

    def test_drop_statements_remove_trigger_then_function(self):
        assert PostgresTriggerGenerator().drop_statements("delete", "orders") == (
            'DROP TRIGGER IF EXISTS "after_delete_orders" ON "orders"',
            'DROP FUNCTION IF EXISTS "after_delete_orders"()',
        )

    def test_missing_columns_rejected(self):
        with pytest.raises(TriggerGenerationError):
            PostgresTriggerGenerator().build_insert_trigger("orders", "id", [])
