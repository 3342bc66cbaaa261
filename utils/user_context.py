"""Propagate the acting staff member's id through the call stack using contextvars.

Authentication lives upstream; by the time a request reaches the ledger the
gateway has resolved who is acting and the HTTP layer stores that id here.
Audit entries read it for attribution.
"""

from contextlib import contextmanager
from contextvars import ContextVar

_current_user_id: ContextVar[int | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> int:
    """
    Get the acting user id from context.

    Raises RuntimeError if no user context is set. Use this in code paths
    that cannot run without an identified staff member.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. This usually means you're calling "
            "user-scoped code outside of an authenticated request."
        )
    return user_id


def find_current_user_id() -> int | None:
    """Acting user id if one is set, else None (system jobs, migrations)."""
    return _current_user_id.get()


def set_current_user_id(user_id: int) -> None:
    """Set the acting user id in context."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: int):
    """
    Context manager for temporarily setting the acting user.

    Example:
        with user_context(staff_id):
            billing.record_payment(invoice_id, payment)
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
