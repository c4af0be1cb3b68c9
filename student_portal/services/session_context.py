"""
Session Context.

The surface the rest of the client talks to for "who is logged in":
startup restore plus ``login`` / ``verify_otp`` / ``logout``.  Each
action delegates to ``AuthGateway`` and keeps the ``SessionManager``'s
``loading`` and ``last_error`` fields in step with it.

Startup restore is optimistic: a persisted token pair with a cached
profile of the permitted role is trusted without a network round trip.
An access token that has expired meanwhile is refreshed by the
``RequestInterceptor`` on the first call that fails.
"""

from __future__ import annotations

from typing import Optional

from student_portal.auth import SessionManager
from student_portal.logger import StructuredLogger
from student_portal.models.auth_models import AuthErrorCode, AuthResult
from student_portal.models.user import UserProfile
from student_portal.services.auth_gateway import AuthGateway
from student_portal.services.base_service import BaseService
from student_portal.services.token_store import TokenStore


class SessionContext(BaseService):
    """Session lifecycle facade over ``AuthGateway`` and ``SessionManager``.

    Parameters
    ----------
    session:
        The single ``SessionManager`` of this client.
    gateway:
        Performs the credential exchanges.
    token_store:
        Read at startup to restore a previous session.
    permitted_role:
        A cached profile must carry this role to be restored.
    logger:
        Structured logger.
    """

    def __init__(
        self,
        session: SessionManager,
        gateway: AuthGateway,
        token_store: TokenStore,
        permitted_role: str,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._session: SessionManager = session
        self._gateway: AuthGateway = gateway
        self._store: TokenStore = token_store
        self._permitted_role: str = permitted_role

    # -- Read side ------------------------------------------------------------

    @property
    def current_user(self) -> Optional[UserProfile]:
        return self._session.current_user

    @property
    def is_loading(self) -> bool:
        return self._session.is_loading

    @property
    def last_error(self) -> Optional[str]:
        return self._session.last_error

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    # -- Lifecycle ------------------------------------------------------------

    def restore(self) -> Optional[UserProfile]:
        """Rehydrate the session from the ``TokenStore`` without network I/O.

        Returns the restored profile, or ``None`` when the client starts
        logged out.  Leaves the session out of the loading state either
        way.
        """
        try:
            tokens = self._store.get()
            profile = self._store.get_cached_profile()
            role = self._store.get_role_tag()

            if tokens is None or profile is None:
                self._logger.info("No persisted session to restore.")
                return None

            if role != self._permitted_role or profile.role != self._permitted_role:
                self._logger.warning(
                    "Persisted session has role %r; starting logged out.", role,
                )
                return None

            self._session.set_current_user(profile)
            self._logger.info(
                "Session restored for %s.", profile.username,
                extra={"event": "SESSION_RESTORED", "user_id": profile.id},
            )
            return profile
        finally:
            self._session.set_loading(False)

    async def login(self, identifier: str, secret: str) -> AuthResult:
        self._begin()
        try:
            result = await self._gateway.login(identifier, secret)
        finally:
            self._session.set_loading(False)
        return self._record(result)

    async def verify_otp(self, code: str) -> AuthResult:
        self._begin()
        try:
            result = await self._gateway.verify_otp(code)
        finally:
            self._session.set_loading(False)
        return self._record(result)

    async def logout(self) -> None:
        """End the session locally, with best-effort server revocation."""
        self._begin()
        try:
            await self._gateway.logout()
        finally:
            self._session.set_loading(False)

    # -- Private helpers ------------------------------------------------------

    def _begin(self) -> None:
        self._session.set_error(None)
        self._session.set_loading(True)

    def _record(self, result: AuthResult) -> AuthResult:
        # The OTP branch is a prompt, not an error.
        if not result.success and result.error_code != AuthErrorCode.OTP_REQUIRED:
            self._session.set_error(result.error_message)
        return result
