"""
Data Models Package.

Re-exports all Pydantic models for short imports:
    from student_portal.models import TokenPair, UserProfile, AuthResult
    from student_portal.models import ApiResult, ApiOutcome, LeaveApplication
"""

from __future__ import annotations

from student_portal.models.enums import ApiOutcome, InterceptorState
from student_portal.models.user import UserProfile
from student_portal.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    OtpChallenge,
    RefreshResult,
    TokenPair,
    ValidationResult,
)
from student_portal.models.api_models import ApiResult, LeaveApplication

__all__ = [
    "ApiOutcome",
    "ApiResult",
    "AuthErrorCode",
    "AuthResult",
    "InterceptorState",
    "LeaveApplication",
    "OtpChallenge",
    "RefreshResult",
    "TokenPair",
    "UserProfile",
    "ValidationResult",
]
