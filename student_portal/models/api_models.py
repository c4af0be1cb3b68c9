"""
Domain API Data Transfer Objects.

Pydantic models for the envelope every authenticated call returns and
for validated request bodies sent to the student endpoints.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

from student_portal.models.enums import ApiOutcome

T = TypeVar("T")

__all__ = [
    "ApiResult",
    "LeaveApplication",
]


class ApiResult(BaseModel, Generic[T]):
    """
    Standard return envelope of ``RequestInterceptor`` and ``StudentApi``.

    ``outcome`` classifies what happened on the wire; ``success``,
    ``data`` and ``message`` mirror the backend's ``{success, data?,
    message?}`` body.  Widgets render ``data`` when ``ok`` and show
    ``message`` otherwise.  ``body`` keeps the full decoded document for
    endpoints that answer outside the ``data`` key.
    """

    outcome: ApiOutcome
    success: bool = False
    data: Optional[T] = None
    message: Optional[str] = None
    status_code: Optional[int] = None
    body: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == ApiOutcome.OK and self.success


class LeaveApplication(BaseModel):
    """Validated body for ``POST /student/apply-leave/``."""

    start_date: date
    end_date: date
    reason: str

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("A reason is required for a leave request.")
        return stripped

    @model_validator(mode="after")
    def _dates_in_order(self) -> "LeaveApplication":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date.")
        return self
