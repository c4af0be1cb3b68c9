"""Shared utility functions for the Student Portal client.

Re-exported so consumers can import directly from
``student_portal.utils``.
"""

from student_portal.utils.general import build_api_url, normalize_base_url

__all__ = [
    "build_api_url",
    "normalize_base_url",
]
