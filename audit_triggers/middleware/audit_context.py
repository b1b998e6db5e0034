"""
Audit context propagation.

The middleware records who is acting and on which URL for the duration of a
request; the pool checkout listener copies those values onto every database
connection handed out, where the generated triggers read them.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from starlette.middleware.base import BaseHTTPMiddleware

from audit_triggers.config import AuditSettings, get_settings
from audit_triggers.lib.context import (
    get_audit_context,
    reset_context,
    set_current_url,
    set_current_user_id,
)
from audit_triggers.lib.exceptions import ContextPropagationFailed
from audit_triggers.lib.triggers.backends import MYSQL, POSTGRESQL, backend_name

logger = logging.getLogger(__name__)

UserResolver = Callable[[Request], Optional[Any]]

# Both drivers use the "format" paramstyle.
CONTEXT_STATEMENTS = {
    MYSQL: "SET @current_user_id = %s, @current_url = %s",
    POSTGRESQL: (
        "SELECT set_config('audit.current_user_id', %s, false), "
        "set_config('audit.current_url', %s, false)"
    ),
}


def resolve_user_from_state(request: Request) -> Optional[Any]:
    """Default resolver: the user id an auth layer left on ``request.state``."""
    return getattr(request.state, "user_id", None)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Expose the acting user and request URL to the audit triggers."""

    def __init__(self, app, user_resolver: Optional[UserResolver] = None):
        super().__init__(app)
        self.user_resolver = user_resolver or resolve_user_from_state

    async def dispatch(self, request: Request, call_next: Callable):
        user_token = set_current_user_id(self.user_resolver(request))
        url_token = set_current_url(str(request.url))
        try:
            return await call_next(request)
        finally:
            reset_context(user_token, url_token)


def apply_audit_context(
    dbapi_connection,
    backend: str,
    user_id: Optional[str] = None,
    url: Optional[str] = None,
) -> None:
    """Write the audit session variables on a raw DBAPI connection.

    Unset values are written as NULL on MySQL and as an empty string on
    PostgreSQL, which the triggers read back as NULL.

    Raises:
        ContextPropagationFailed: If the driver rejects the statement.
    """
    statement = CONTEXT_STATEMENTS[backend]
    if backend == POSTGRESQL:
        params = (user_id or "", url or "")
    else:
        params = (user_id, url)

    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(statement, params)
        if backend == POSTGRESQL:
            # set_config is undone if the surrounding transaction rolls back
            dbapi_connection.commit()
    except Exception as exc:
        raise ContextPropagationFailed(
            f"Could not set audit context on connection: {exc}",
            details={"backend": backend},
        ) from exc
    finally:
        cursor.close()


def register_context_propagation(engine: Engine, backend: Optional[str] = None) -> Callable:
    """Set the audit session variables on every connection checked out of ``engine``.

    Values are written on each checkout, including NULLs, so a pooled
    connection never carries a previous request's user. Failures are logged
    and the connection is handed out anyway.

    Returns:
        The registered listener, for ``event.remove(engine, "checkout", ...)``.
    """
    backend = backend or backend_name(engine)

    def _on_checkout(dbapi_connection, connection_record, connection_proxy):
        user_id, url = get_audit_context()
        try:
            apply_audit_context(dbapi_connection, backend, user_id, url)
        except ContextPropagationFailed as exc:
            logger.error(
                "Audit context not propagated: %s",
                exc,
                extra={"error_code": exc.error_code},
            )

    event.listen(engine, "checkout", _on_checkout)
    logger.info("Audit context propagation registered for %s engine", backend)
    return _on_checkout


def install_audit_context(
    app: FastAPI,
    engine: Engine,
    settings: Optional[AuditSettings] = None,
    user_resolver: Optional[UserResolver] = None,
) -> bool:
    """Add the middleware and checkout listener when auto-registration is enabled.

    Returns:
        True if anything was installed.
    """
    settings = settings or get_settings()
    if not settings.auto_register_context_propagation:
        logger.info("Audit context propagation disabled by configuration")
        return False

    app.add_middleware(AuditContextMiddleware, user_resolver=user_resolver)
    register_context_propagation(engine)
    return True
