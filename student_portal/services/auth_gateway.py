"""
Authentication Gateway.

Single orchestrator for every credential exchange with the backend:
login, OTP verification, token refresh and logout.

Sits between the session consumers and the HTTP / token-store layer so
that the login surface remains a thin form handler.  All methods return
typed ``AuthResult`` / ``RefreshResult`` models; consumers never
inspect raw exceptions or response bodies.

Authorization boundary
----------------------
Valid credentials are not sufficient: the profile returned by a
successful exchange must carry the single role this client surface
permits (``AppConfig.PERMITTED_ROLE``).  Otherwise the outcome is
``WRONG_ROLE``, the session stays empty and no token from that exchange
is written to the ``TokenStore``.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from student_portal.auth import SessionManager
from student_portal.logger import StructuredLogger
from student_portal.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    OtpChallenge,
    RefreshResult,
    TokenPair,
    ValidationResult,
)
from student_portal.models.user import UserProfile
from student_portal.services.base_service import BaseService
from student_portal.services.token_store import TokenStore
from student_portal.utils.general import build_api_url

LOGIN_PATH: str = "/auth/login/"
VERIFY_OTP_PATH: str = "/auth/verify-otp/"
REFRESH_PATH: str = "/auth/refresh/"
LOGOUT_PATH: str = "/auth/logout/"

# Statuses that mean "the server rejected what we sent".
_REJECTION_STATUSES: frozenset[int] = frozenset({400, 401, 403, 404, 422})


def _decode_body(response: httpx.Response) -> dict[str, Any]:
    """Return the JSON object body, or ``{}`` when there is none."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _server_message(body: dict[str, Any]) -> Optional[str]:
    for key in ("message", "detail", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _containers(body: dict[str, Any]) -> list[dict[str, Any]]:
    """The nested objects a backend may wrap tokens or profile in."""
    found: list[dict[str, Any]] = []
    for key in ("tokens", "data"):
        value = body.get(key)
        if isinstance(value, dict):
            found.append(value)
    found.append(body)
    return found


def extract_tokens(body: dict[str, Any], fallback_refresh: Optional[str] = None) -> Optional[TokenPair]:
    """Pull a ``TokenPair`` out of an exchange response.

    Accepts both ``access``/``refresh`` and ``access_token``/
    ``refresh_token`` spellings, at the top level or under ``tokens`` /
    ``data``.  *fallback_refresh* fills in the refresh token for
    backends that do not rotate it.
    """
    for container in _containers(body):
        access = container.get("access") or container.get("access_token")
        refresh = container.get("refresh") or container.get("refresh_token") or fallback_refresh
        if isinstance(access, str) and access and isinstance(refresh, str) and refresh:
            return TokenPair(access_token=access, refresh_token=refresh)
    return None


def extract_profile(body: dict[str, Any]) -> Optional[UserProfile]:
    """Pull the ``UserProfile`` out of an exchange response, if well formed."""
    for container in _containers(body):
        for key in ("profile", "user"):
            candidate = container.get(key)
            if isinstance(candidate, dict):
                try:
                    return UserProfile.model_validate(candidate)
                except ValidationError:
                    return None
    return None


class AuthGateway(BaseService):
    """Performs the credential exchanges and applies their results.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient`` (owns the transport timeout).
    base_url:
        Callable returning the current backend base URL.
    token_store:
        Persistence for the token pair and cached profile.
    session:
        The single ``SessionManager`` of this client.
    permitted_role:
        The only role allowed to hold a session on this client.
    logger:
        Structured JSON logger for audit-grade logging.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: Callable[[], str],
        token_store: TokenStore,
        session: SessionManager,
        permitted_role: str,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._http: httpx.AsyncClient = http
        self._base_url: Callable[[], str] = base_url
        self._store: TokenStore = token_store
        self._session: SessionManager = session
        self._permitted_role: str = permitted_role
        self._pending_otp: Optional[OtpChallenge] = None
        self._generation: int = 0

    @property
    def generation(self) -> int:
        """Bumped whenever a login is established or the session logs out.

        A refresh that started under an older generation belongs to a
        session that no longer exists and must not be committed.
        """
        return self._generation

    @property
    def pending_otp(self) -> Optional[OtpChallenge]:
        return self._pending_otp

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def validate_credentials(identifier: str, secret: str) -> ValidationResult:
        """Reject blank input before any network round trip."""
        if not identifier or not identifier.strip():
            return ValidationResult(is_valid=False, error_message="Username is required.")
        if not secret:
            return ValidationResult(is_valid=False, error_message="Password is required.")
        return ValidationResult(is_valid=True)

    # ==================================================================
    # Login
    # ==================================================================

    async def login(self, identifier: str, secret: str) -> AuthResult:
        """Exchange credentials for a session.

        Returns
        -------
        AuthResult
            ``success=True`` with the populated profile, the
            ``OTP_REQUIRED`` branch, or a structured failure
            (``INVALID_CREDENTIALS``, ``WRONG_ROLE``, ``NETWORK_ERROR``,
            ``UNKNOWN_ERROR``).
        """
        check = self.validate_credentials(identifier, secret)
        if not check.is_valid:
            return AuthResult.failure(AuthErrorCode.INVALID_CREDENTIALS, check.error_message)

        identifier = identifier.strip()
        self._pending_otp = None

        try:
            response = await self._post(LOGIN_PATH, {"username": identifier, "password": secret})
        except httpx.RequestError as exc:
            self._logger.warning(
                "Network error during login: %s", exc,
                extra={"event": "LOGIN_NETWORK_ERROR", "username": identifier},
            )
            return AuthResult.failure(AuthErrorCode.NETWORK_ERROR)

        body = _decode_body(response)

        if response.status_code >= 500:
            return self._unknown_failure("LOGIN_FAILED", identifier, response.status_code)

        if response.status_code in _REJECTION_STATUSES or body.get("success") is False:
            self._logger.warning(
                "Login rejected for %s (HTTP %d).", identifier, response.status_code,
                extra={"event": "LOGIN_FAILED", "error_code": AuthErrorCode.INVALID_CREDENTIALS},
            )
            return AuthResult.failure(
                AuthErrorCode.INVALID_CREDENTIALS, _server_message(body),
            )

        if body.get("otp_required") or body.get("otpRequired"):
            token = body.get("otp_token") or body.get("challenge")
            self._pending_otp = OtpChallenge(
                identifier=identifier,
                challenge_token=token if isinstance(token, str) else None,
            )
            self._logger.info(
                "OTP challenge issued for %s.", identifier,
                extra={"event": "OTP_REQUIRED", "username": identifier},
            )
            return AuthResult(success=False, error_code=AuthErrorCode.OTP_REQUIRED)

        return self._establish(body, identifier, event="LOGIN")

    # ==================================================================
    # OTP verification
    # ==================================================================

    async def verify_otp(self, code: str) -> AuthResult:
        """Complete a login that answered ``OTP_REQUIRED``.

        The challenge survives ``INVALID_OTP`` and ``NETWORK_ERROR`` so
        the user can retry; ``OTP_EXPIRED`` drops it and the user must
        sign in again.
        """
        challenge = self._pending_otp
        if challenge is None:
            return AuthResult.failure(AuthErrorCode.OTP_EXPIRED)

        code = code.strip()
        if not code:
            return AuthResult.failure(AuthErrorCode.INVALID_OTP)

        payload: dict[str, str] = {"username": challenge.identifier, "otp": code}
        if challenge.challenge_token:
            payload["otp_token"] = challenge.challenge_token

        try:
            response = await self._post(VERIFY_OTP_PATH, payload)
        except httpx.RequestError as exc:
            self._logger.warning(
                "Network error during OTP verification: %s", exc,
                extra={"event": "OTP_NETWORK_ERROR", "username": challenge.identifier},
            )
            return AuthResult.failure(AuthErrorCode.NETWORK_ERROR)

        body = _decode_body(response)

        if response.status_code >= 500:
            return self._unknown_failure("OTP_FAILED", challenge.identifier, response.status_code)

        if response.status_code in _REJECTION_STATUSES | {410} or body.get("success") is False:
            message = _server_message(body)
            reason = f"{body.get('code', '')} {message or ''}".lower()
            if response.status_code == 410 or "expired" in reason:
                self._pending_otp = None
                self._logger.warning(
                    "OTP expired for %s.", challenge.identifier,
                    extra={"event": "OTP_FAILED", "error_code": AuthErrorCode.OTP_EXPIRED},
                )
                return AuthResult.failure(AuthErrorCode.OTP_EXPIRED)

            self._logger.warning(
                "OTP rejected for %s.", challenge.identifier,
                extra={"event": "OTP_FAILED", "error_code": AuthErrorCode.INVALID_OTP},
            )
            return AuthResult.failure(AuthErrorCode.INVALID_OTP, message)

        self._pending_otp = None
        return self._establish(body, challenge.identifier, event="OTP_VERIFIED")

    # ==================================================================
    # Token refresh
    # ==================================================================

    async def refresh(self, refresh_token: str) -> RefreshResult:
        """Exchange *refresh_token* for a new ``TokenPair``.

        Does not touch the ``TokenStore``; the ``RequestInterceptor``
        owns the write so it can order it before any replay.

        Returns
        -------
        RefreshResult
            ``success=True`` with the new pair; otherwise
            ``SESSION_EXPIRED`` (rejected or malformed) or
            ``NETWORK_ERROR``.
        """
        try:
            response = await self._post(REFRESH_PATH, {"refresh": refresh_token})
        except httpx.RequestError as exc:
            self._logger.warning(
                "Network error during token refresh: %s", exc,
                extra={"event": "REFRESH_NETWORK_ERROR"},
            )
            return RefreshResult(success=False, error_code=AuthErrorCode.NETWORK_ERROR)

        body = _decode_body(response)
        tokens = extract_tokens(body, fallback_refresh=refresh_token) if response.is_success else None
        if tokens is None or body.get("success") is False:
            self._logger.warning(
                "Token refresh rejected (HTTP %d).", response.status_code,
                extra={"event": "SESSION_EXPIRED"},
            )
            return RefreshResult(success=False, error_code=AuthErrorCode.SESSION_EXPIRED)

        self._logger.info("Session token refreshed.", extra={"event": "TOKEN_REFRESHED"})
        return RefreshResult(success=True, tokens=tokens)

    # ==================================================================
    # Logout
    # ==================================================================

    async def logout(self) -> None:
        """Best-effort server-side revocation, then unconditional local cleanup.

        The server call is attempted only when tokens are stored.  Its
        failure (network, timeout, non-2xx, an unparseable base URL) is
        logged and never blocks the local logout.
        """
        user = self._session.current_user
        tokens = self._store.get()

        try:
            if tokens is not None:
                response = await self._post(
                    LOGOUT_PATH,
                    {"refresh": tokens.refresh_token},
                    headers={"Authorization": f"Bearer {tokens.access_token}"},
                )
                if not response.is_success:
                    self._logger.warning(
                        "Server-side logout answered HTTP %d.", response.status_code,
                    )
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            self._logger.warning("Server-side logout failed: %s", exc)
        finally:
            self._generation += 1
            self._pending_otp = None
            self._store.clear()
            self._session.clear()
            self._logger.info(
                "User logged out: %s",
                user.username if user else "unknown",
                extra={
                    "event": "LOGOUT",
                    "user_id": user.id if user else "unknown",
                },
            )

    # ==================================================================
    # Private helpers
    # ==================================================================

    async def _post(
        self,
        path: str,
        payload: dict[str, str],
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        return await self._http.post(
            build_api_url(self._base_url(), path), json=payload, headers=headers,
        )

    def _establish(self, body: dict[str, Any], identifier: str, event: str) -> AuthResult:
        """Apply a successful exchange: role check, persist, populate."""
        tokens = extract_tokens(body)
        profile = extract_profile(body)
        if tokens is None or profile is None:
            self._logger.warning(
                "Exchange for %s succeeded without tokens or profile.", identifier,
                extra={"event": f"{event}_MALFORMED"},
            )
            return AuthResult.failure(AuthErrorCode.UNKNOWN_ERROR)

        if profile.role != self._permitted_role:
            self._logger.warning(
                "Login for %s refused: role %r is not permitted on this client.",
                identifier,
                profile.role,
                extra={"event": "LOGIN_FAILED", "error_code": AuthErrorCode.WRONG_ROLE},
            )
            return AuthResult.failure(AuthErrorCode.WRONG_ROLE)

        self._generation += 1
        self._store.set(tokens)
        self._store.set_cached_profile(profile)
        self._session.set_current_user(profile)

        self._logger.info(
            "User authenticated: %s (role: %s)",
            profile.username,
            profile.role,
            extra={"event": event, "user_id": profile.id},
        )
        return AuthResult(success=True, user=profile)

    def _unknown_failure(self, event: str, identifier: str, status_code: int) -> AuthResult:
        self._logger.warning(
            "Unexpected HTTP %d from auth exchange for %s.", status_code, identifier,
            extra={"event": event, "error_code": "unknown"},
        )
        return AuthResult.failure(AuthErrorCode.UNKNOWN_ERROR)
