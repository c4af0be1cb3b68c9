"""
Shared Enumerations for Student Portal Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if result.outcome == 'ok'`` continues to work.
"""

from __future__ import annotations
from enum import StrEnum


class ApiOutcome(StrEnum):
    """Transport-level outcome of an authenticated domain call.

    ``OK`` means the backend answered 2xx; the envelope's own
    ``success`` flag is reported separately on ``ApiResult``.
    """

    OK = "ok"
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    SESSION_EXPIRED = "session_expired"
    UNAUTHENTICATED = "unauthenticated"


class InterceptorState(StrEnum):
    """Refresh state of the ``RequestInterceptor``."""

    IDLE = "IDLE"
    REFRESHING = "REFRESHING"

