"""
Client Preferences.

Key-value preferences kept in the local ``app_settings`` table, with a
typed accessor pair for each setting the client knows about.

The backend base URL is the one setting every outbound call consumes:
it defaults to ``AppConfig.API_BASE_URL``, can be overridden at runtime
(e.g. from the login surface) and the override is persisted.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from student_portal.database import DatabaseManager
from student_portal.logger import StructuredLogger
from student_portal.services.base_service import BaseService
from student_portal.utils.general import normalize_base_url

_KEY_API_BASE_URL: str = "api_base_url"


class AppSettingsService(BaseService):
    """Manages persistent client preferences in local SQLite.

    Parameters
    ----------
    db:
        ``DatabaseManager``; when unavailable, reads fall back to
        defaults and writes only update the in-memory value.
    logger:
        Shared structured logger.
    default_base_url:
        Used until a runtime override is stored.
    """

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        default_base_url: str,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._default_base_url: str = default_base_url
        self._base_url_cache: Optional[str] = None

    # ------------------------------------------------------------------
    # Generic key-value access
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Stored value for *key*, or ``None`` (also when storage is unavailable)."""
        try:
            row = self._db.sqlite.execute(
                "SELECT value FROM app_settings WHERE key = ?",
                (key,),
            ).fetchone()
            return row["value"] if row is not None else None
        except (sqlite3.Error, RuntimeError) as exc:
            self._logger.warning("Preference %r could not be read: %s", key, exc)
            return None

    def set(self, key: str, value: str) -> bool:
        """Insert or replace *key*.  ``False`` means the value was not stored."""
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO app_settings (key, value)
                    VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value      = excluded.value,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
            self._logger.info("Preference %r saved.", key)
            return True
        except (sqlite3.Error, RuntimeError) as exc:
            self._logger.error("Preference %r could not be saved: %s", key, exc)
            return False

    # ------------------------------------------------------------------
    # Typed convenience: backend base URL
    # ------------------------------------------------------------------

    def get_api_base_url(self) -> str:
        """Return the effective backend base URL.

        Resolution order: in-memory override, persisted override,
        configured default.
        """
        if self._base_url_cache is None:
            stored = self.get(_KEY_API_BASE_URL)
            self._base_url_cache = stored or self._default_base_url
        return self._base_url_cache

    def set_api_base_url(self, base_url: str) -> bool:
        """Override and persist the backend base URL.

        The value takes effect for the next outbound call even when it
        cannot be persisted.  Returns ``True`` when it was persisted.

        Raises:
            ValueError: If *base_url* is not an http(s) URL.
        """
        normalized = normalize_base_url(base_url)
        self._base_url_cache = normalized
        return self.set(_KEY_API_BASE_URL, normalized)
