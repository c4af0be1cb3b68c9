"""
Student Domain API.

Thin typed wrappers over the student endpoints.  Every call goes
through the ``RequestInterceptor``, so callers never see a 401: they get
an ``ApiResult`` whose ``outcome`` says whether the data is there.

Endpoints (relative to the configured base URL)::

    GET  /student/dashboard/          GET  /student/timetable/
    GET  /student/attendance/         GET  /student/study-materials/
    GET  /student/internal-marks/     GET  /student/assignments/
    GET  /student/certificates/       GET  /student/notifications/
    GET  /student/leave-requests/     GET  /student/announcements/
    POST /student/apply-leave/        GET  /student/profile/
"""

from __future__ import annotations

from typing import Any

from student_portal.models.api_models import ApiResult, LeaveApplication
from student_portal.services.request_interceptor import RequestInterceptor

_PREFIX: str = "/student"


class StudentApi:
    """API client for the student endpoints.

    Args:
        interceptor: The authenticated request pipeline.
    """

    def __init__(self, interceptor: RequestInterceptor) -> None:
        self._interceptor = interceptor

    async def get_dashboard(self) -> ApiResult[Any]:
        """Summary cards: attendance percentage, pending work, recent notices."""
        return await self._interceptor.get(f"{_PREFIX}/dashboard/")

    async def get_attendance(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/attendance/")

    async def get_internal_marks(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/internal-marks/")

    async def get_certificates(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/certificates/")

    async def get_leave_requests(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/leave-requests/")

    async def apply_leave(self, application: LeaveApplication) -> ApiResult[Any]:
        """Submit a leave request.

        *application* is validated on construction, so an empty reason
        or reversed date range never reaches the network.
        """
        return await self._interceptor.post(
            f"{_PREFIX}/apply-leave/",
            json=application.model_dump(mode="json"),
        )

    async def get_timetable(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/timetable/")

    async def get_study_materials(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/study-materials/")

    async def get_assignments(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/assignments/")

    async def get_notifications(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/notifications/")

    async def get_announcements(self) -> ApiResult[Any]:
        return await self._interceptor.get(f"{_PREFIX}/announcements/")

    async def get_profile(self) -> ApiResult[Any]:
        """The full student profile (richer than the cached session profile)."""
        return await self._interceptor.get(f"{_PREFIX}/profile/")
