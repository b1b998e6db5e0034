"""Generated triggers running on a live PostgreSQL server (TEST_POSTGRES_URL)."""

import pytest

from trigger_scenarios import TriggerScenarios

pytestmark = pytest.mark.integration


class TestPostgresTriggers(TriggerScenarios):
    url_variable = "TEST_POSTGRES_URL"
    create_orders_sql = (
        "CREATE TABLE orders ("
        " id INTEGER PRIMARY KEY,"
        " customer VARCHAR(50),"
        " quantity INTEGER NOT NULL,"
        " photo BYTEA"
        ")"
    )
    widgets_table = "widgets"
