"""
Authentication Pipeline Models.

Pydantic models and enumerations for the auth request/response
contracts between ``AuthGateway``, ``RequestInterceptor`` and the
consumers of the session.

Every auth operation returns a structured, inspectable result rather
than raw dicts or exception side-channels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from student_portal.models.user import UserProfile


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication outcomes other than success.

    ``OTP_REQUIRED`` is a flow branch rather than a failure; consumers
    route to the OTP prompt when they see it.
    """

    INVALID_CREDENTIALS = "invalid_credentials"
    WRONG_ROLE = "wrong_role"
    OTP_REQUIRED = "otp_required"
    INVALID_OTP = "invalid_otp"
    OTP_EXPIRED = "otp_expired"
    NETWORK_ERROR = "network_error"
    SESSION_EXPIRED = "session_expired"
    UNAUTHENTICATED = "unauthenticated"
    UNKNOWN_ERROR = "unknown_error"


# Human-readable messages shown inline at the login surface.
AUTH_ERROR_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid username or password.",
    AuthErrorCode.WRONG_ROLE: "You do not have student access.",
    AuthErrorCode.INVALID_OTP: "The verification code is incorrect.",
    AuthErrorCode.OTP_EXPIRED: "The verification code has expired. Please sign in again.",
    AuthErrorCode.NETWORK_ERROR: "Cannot reach the server. Check your internet connection.",
    AuthErrorCode.SESSION_EXPIRED: "Your session has expired. Please sign in again.",
    AuthErrorCode.UNAUTHENTICATED: "Please sign in to continue.",
    AuthErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again later.",
}


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

class TokenPair(BaseModel):
    """An access/refresh token pair.

    Both tokens are opaque to the client.  A pair is either complete or
    absent; empty strings are rejected so a half pair can never be
    persisted.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)


class OtpChallenge(BaseModel):
    """A pending second-factor challenge issued by the login exchange."""

    identifier: str
    challenge_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for login and OTP verification.

    Attributes
    ----------
    success:
        ``True`` when a session was established.
    error_code:
        Structured outcome category (``None`` on success).
    error_message:
        Human-readable description, ``None`` on success and for the
        ``OTP_REQUIRED`` branch.
    user:
        The profile that now populates the session (success only).
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    user: Optional[UserProfile] = None

    @property
    def otp_required(self) -> bool:
        return self.error_code == AuthErrorCode.OTP_REQUIRED

    @classmethod
    def failure(cls, code: AuthErrorCode, message: Optional[str] = None) -> "AuthResult":
        """Build a failed result, defaulting to the canonical message for *code*."""
        return cls(
            success=False,
            error_code=code,
            error_message=message or AUTH_ERROR_MESSAGES.get(code),
        )


class RefreshResult(BaseModel):
    """Outcome of a single refresh-token exchange."""

    success: bool
    tokens: Optional[TokenPair] = None
    error_code: Optional[AuthErrorCode] = None
