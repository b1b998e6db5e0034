"""Backend detection for the supported trigger-capable databases."""

from typing import Union

from sqlalchemy.engine import Connection, Engine

from audit_triggers.lib.exceptions import ConfigurationError

MYSQL = "mysql"
POSTGRESQL = "postgresql"

SUPPORTED_BACKENDS = (MYSQL, POSTGRESQL)

# SQL expression naming the schema the catalog queries are scoped to
SCHEMA_FUNCTIONS = {
    MYSQL: "DATABASE()",
    POSTGRESQL: "current_schema()",
}

_DIALECT_ALIASES = {
    "mariadb": MYSQL,
}


def backend_name(bind: Union[Engine, Connection]) -> str:
    """Return the backend key for an engine or connection.

    Raises:
        ConfigurationError: If the dialect cannot host audit triggers.
    """
    name = _DIALECT_ALIASES.get(bind.dialect.name, bind.dialect.name)
    if name not in SUPPORTED_BACKENDS:
        raise ConfigurationError(
            f"Unsupported database backend '{bind.dialect.name}'; "
            f"audit triggers require one of: {', '.join(SUPPORTED_BACKENDS)}",
            details={"dialect": bind.dialect.name},
        )
    return name
