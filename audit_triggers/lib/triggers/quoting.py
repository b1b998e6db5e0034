"""Identifier and literal quoting for generated trigger code.

Every table and column name that reaches generated SQL goes through one of
these helpers; nothing else in the package formats names into SQL.
"""


def quote_mysql_identifier(name: str) -> str:
    """Quote a MySQL identifier with backticks."""
    return "`" + name.replace("`", "``") + "`"


def quote_mysql_literal(value: str) -> str:
    """Quote a MySQL string literal.

    Assumes the default sql_mode, where backslash is an escape character
    (NO_BACKSLASH_ESCAPES off), so backslashes are doubled along with quotes.
    """
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


def mysql_json_member_path(key: str) -> str:
    """Build a JSON path selecting a top-level member, e.g. ``$."name"``."""
    escaped = key.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


def quote_postgres_identifier(name: str) -> str:
    """Quote a PostgreSQL identifier with double quotes."""
    return '"' + name.replace('"', '""') + '"'


def quote_postgres_literal(value: str) -> str:
    """Quote a PostgreSQL string literal (standard_conforming_strings on)."""
    return "'" + value.replace("'", "''") + "'"
