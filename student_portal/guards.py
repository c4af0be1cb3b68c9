"""
Session Guard Decorator.

Provides a factory that produces a decorator for gating protected
entry points (views, CLI commands) behind an established session.

Usage::

    from student_portal.auth import SessionManager
    from student_portal.guards import require_session

    session = SessionManager()
    guard = require_session(session)

    @guard
    async def show_dashboard() -> None:
        ...
"""

from __future__ import annotations

import inspect
from functools import wraps
from typing import Any, Callable, TypeVar

from student_portal.auth import SessionManager
from student_portal.exceptions import AuthenticationError

F = TypeVar("F", bound=Callable[..., Any])


def require_session(session: SessionManager) -> Callable[[F], F]:
    """Return a decorator that enforces an active session via *session*.

    The returned decorator checks ``session.is_authenticated`` before
    every call to the wrapped function, sync or async.  If no user is
    logged in, an :class:`AuthenticationError` is raised.

    Args:
        session: The injectable ``SessionManager`` that holds the
            current user state.
    """

    def _check() -> None:
        if not session.is_authenticated:
            raise AuthenticationError(
                "Authentication required. Please log in before "
                "opening this view."
            )

    def decorator(func: F) -> F:
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                _check()
                return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            _check()
            return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
