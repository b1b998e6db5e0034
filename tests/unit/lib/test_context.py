"""Unit tests for the audit context variables."""

import asyncio

from audit_triggers.lib.context import (
    clear_context,
    get_audit_context,
    get_current_url,
    get_current_user_id,
    reset_context,
    set_current_url,
    set_current_user_id,
)


class TestContextVariables:
    """Tests for context variable get/set functions."""

    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_defaults_are_none(self):
        assert get_audit_context() == (None, None)

    def test_user_id_stored_as_text(self):
        set_current_user_id(42)
        assert get_current_user_id() == "42"

    def test_url_can_be_set_and_retrieved(self):
        set_current_url("https://app.test/orders/1")
        assert get_current_url() == "https://app.test/orders/1"

    def test_reset_restores_previous_values(self):
        set_current_user_id("outer")
        user_token = set_current_user_id("inner")
        url_token = set_current_url("/inner")

        reset_context(user_token, url_token)

        assert get_audit_context() == ("outer", None)

    def test_values_isolated_between_tasks(self):
        async def handle(user_id):
            set_current_user_id(user_id)
            await asyncio.sleep(0)
            return get_current_user_id()

        async def run_both():
            return await asyncio.gather(handle("alice"), handle("bob"))

        assert asyncio.run(run_both()) == ["alice", "bob"]
        assert get_current_user_id() is None
