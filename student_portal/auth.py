"""
Session State.

Provides an injectable ``SessionManager`` that holds "who is logged in"
for the lifetime of the client process: the ``UserProfile`` (or
nothing), a loading flag and the last user-visible error.

Only ``SessionContext``, ``AuthGateway`` and ``RequestInterceptor``
mutate it; every other collaborator reads it or subscribes to changes.

Usage::

    from student_portal.auth import SessionManager

    session = SessionManager()
    unsubscribe = session.subscribe(lambda user: print("now:", user))
    session.set_current_user(profile)
    session.current_user  # -> profile
"""

from __future__ import annotations

from typing import Callable, Optional

from student_portal.logger import StructuredLogger
from student_portal.models.auth_models import AUTH_ERROR_MESSAGES, AuthErrorCode
from student_portal.models.user import UserProfile

SessionListener = Callable[[Optional[UserProfile]], None]


class SessionManager:
    """Injectable holder for the current session.

    Each instance maintains its own state, so there are no module-level
    globals.  Pass a single ``SessionManager`` through the composition
    root so every component shares the same session.

    A new manager starts in the *loading* state; ``SessionContext``
    resolves it after the startup restore.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._logger: Optional[StructuredLogger] = logger
        self._current_user: Optional[UserProfile] = None
        self._loading: bool = True
        self._last_error: Optional[str] = None
        self._listeners: list[SessionListener] = []

    # -- Read side ------------------------------------------------------------

    @property
    def current_user(self) -> Optional[UserProfile]:
        """The logged-in profile, or ``None``."""
        return self._current_user

    def get_current_user(self) -> UserProfile:
        """Return the authenticated user.

        Raises:
            RuntimeError: If no user is currently authenticated.
        """
        if self._current_user is None:
            raise RuntimeError(
                "No user is currently authenticated. Login required."
            )
        return self._current_user

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a user is currently logged in."""
        return self._current_user is not None

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # -- Write side -----------------------------------------------------------

    def set_current_user(self, user: UserProfile) -> None:
        """Record *user* as the authenticated session user."""
        self._current_user = user
        self._last_error = None
        self._notify()

    def set_loading(self, loading: bool) -> None:
        self._loading = loading

    def set_error(self, message: Optional[str]) -> None:
        self._last_error = message

    def clear(self) -> None:
        """Remove the current user, ending the session."""
        had_user = self._current_user is not None
        self._current_user = None
        if had_user:
            self._notify()

    def expire(self) -> None:
        """End the session because the refresh exchange failed.

        Listeners are always notified so consumers can redirect to the
        login surface and discard in-page state.
        """
        self._current_user = None
        self._last_error = AUTH_ERROR_MESSAGES[AuthErrorCode.SESSION_EXPIRED]
        self._notify()

    # -- Listeners ------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener* for user changes.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._current_user)
            except Exception:
                # A torn-down consumer must not break session bookkeeping.
                if self._logger is not None:
                    self._logger.error(
                        "Session listener %r raised.", listener, exc_info=True,
                    )
