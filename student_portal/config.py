"""
Client Configuration.

``AppConfig`` holds every setting of the Student Portal session client:
the backend default, the permitted role, timeouts and local file paths.
Values come from the process environment or a ``.env`` file; pass the
instance to ``create_services()`` rather than reading it globally.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field, model_validator


class AppConfig(BaseSettings):
    """Settings resolved from the environment, then `.env`, then these defaults."""

    # --- Backend ---
    # Default only; the runtime value lives in app_settings (see
    # AppSettingsService.get_api_base_url).
    API_BASE_URL: str = "http://127.0.0.1:8000/api"
    HTTP_TIMEOUT_S: float = Field(default=30.0, gt=0)

    # --- Authorization boundary ---
    # The single backend role this client surface accepts.
    PERMITTED_ROLE: str = "student"

    # --- Local persistence ---
    LOCAL_DB_PATH: str = "student_portal_local.db"
    SESSION_SALT_PATH: str = str(Path.home() / ".student_portal_salt")
    TOKEN_KDF_ITERATIONS: int = Field(default=600_000, ge=1)

    # --- Logging ---
    LOG_FILE: str = "student_portal.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when configuration looks incomplete.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        This validator logs a warning so operators know the client is
        talking to the default local backend.
        """
        _log = logging.getLogger("student_portal.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.API_BASE_URL.startswith(("http://", "https://")):
            _log.warning(
                "API_BASE_URL %r is not an http(s) URL; requests will fail "
                "until a base URL is set at runtime.",
                self.API_BASE_URL,
            )

        return self


# Cached instance for modules built before the composition root.
_config_instance: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide ``AppConfig``, loading it on first use.

    The logger needs file settings before ``create_services()`` runs;
    everything else receives the instance it was wired with.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = AppConfig()
    return _config_instance
