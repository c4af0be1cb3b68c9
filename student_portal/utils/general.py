"""General Utility Functions."""

from __future__ import annotations

__all__ = ["build_api_url", "normalize_base_url"]


def normalize_base_url(base_url: str) -> str:
    """Strip whitespace and trailing slashes from a backend base URL.

    Raises:
        ValueError: If the result is not an http(s) URL.
    """
    cleaned = base_url.strip().rstrip("/")
    if not cleaned.startswith(("http://", "https://")):
        raise ValueError(f"Base URL must start with http:// or https://, got {base_url!r}")
    return cleaned


def build_api_url(base_url: str, path: str) -> str:
    """Join *base_url* and an endpoint *path* with exactly one slash.

    Example::

        build_api_url("http://host/api/", "/student/dashboard/")
        # -> "http://host/api/student/dashboard/"
    """
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"
