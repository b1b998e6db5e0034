"""Context variables for request-scoped audit data.

The acting user and the request URL are stored here by the audit context
middleware and written onto every database connection checked out while the
request is running, where the generated triggers read them back.

Usage:
    # In middleware or a worker entry point:
    set_current_user_id(user_id)
    set_current_url(str(request.url))

    # In the pool checkout listener:
    user_id = get_current_user_id()
    url = get_current_url()

Note: These use contextvars which are properly isolated per async task.
Each request gets its own set of context variables.
"""

from contextvars import ContextVar, Token
from typing import Any, Optional, Tuple

_current_user_id: ContextVar[Optional[str]] = ContextVar('audit_user_id', default=None)
_current_url: ContextVar[Optional[str]] = ContextVar('audit_url', default=None)


def set_current_user_id(user_id: Optional[Any]) -> Token:
    """Set the acting user ID.

    Args:
        user_id: User identifier, or None for anonymous requests. Non-string
            identifiers are stored as text.

    Returns:
        Token that restores the previous value when passed to reset_context.
    """
    return _current_user_id.set(None if user_id is None else str(user_id))


def get_current_user_id() -> Optional[str]:
    """Get the acting user ID.

    Returns:
        The user ID if set, None otherwise
    """
    return _current_user_id.get()


def set_current_url(url: Optional[str]) -> Token:
    """Set the URL of the request being served."""
    return _current_url.set(url)


def get_current_url() -> Optional[str]:
    """Get the URL of the request being served."""
    return _current_url.get()


def get_audit_context() -> Tuple[Optional[str], Optional[str]]:
    """Return the (user_id, url) pair for the current context."""
    return _current_user_id.get(), _current_url.get()


def reset_context(user_token: Token, url_token: Token) -> None:
    """Restore the values that were active before the given tokens were issued."""
    _current_url.reset(url_token)
    _current_user_id.reset(user_token)


def clear_context() -> None:
    """Clear all audit context variables.

    Useful for testing and for long-running workers between jobs.
    """
    _current_user_id.set(None)
    _current_url.set(None)
