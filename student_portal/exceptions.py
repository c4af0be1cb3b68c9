"""
Client Exceptions.

Expected outcomes (bad credentials, expired session, network failure)
are returned as typed results and never raised.  The classes here cover
the *unexpected* failures that propagate to the call site.
"""


class PortalClientError(Exception):
    """Base exception for all student-portal client errors.

    Attributes:
        message: Error message
        details: Optional dict with additional error context
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ResponseFormatError(PortalClientError):
    """A successful HTTP response carried a body that is not a JSON object."""


class AuthenticationError(PortalClientError):
    """A session-guarded entry point was called without an active session."""
