"""
Structured JSON Logging.

Every record is written as one JSON object per line, to stdout and to a
rotating log file.  Session events carry an ``event`` field in their
``extra`` context (``LOGIN``, ``TOKEN_REFRESHED``, ``SESSION_EXPIRED``,
``LOGOUT``...) so an audit trail can be grepped out of the file.

Context values whose key can name a credential (passwords, tokens, the
``Authorization`` header) are masked by the formatter, whatever the
caller passes.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

_MASK: str = "***"

_CREDENTIAL_KEYS: frozenset[str] = frozenset({
    "password",
    "secret",
    "otp",
    "token",
    "access_token",
    "refresh_token",
    "authorization",
})

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """Render a record as ``{timestamp, level, logger_name, message, extra?, exception?}``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: _MASK if key.lower() in _CREDENTIAL_KEYS else str(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        if context:
            payload["extra"] = context

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def _file_handler(path: str, max_bytes: int, backup_count: int) -> Optional[RotatingFileHandler]:
    """Open the rotating log file, or return ``None`` when the OS refuses."""
    try:
        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError:
        return None


class StructuredLogger:
    """Injectable wrapper around a JSON-formatted ``logging.Logger``.

    Services receive one through their constructor (see
    ``BaseService``) rather than calling ``logging.getLogger``.

    Usage::

        log = StructuredLogger(name="student_portal.gateway")
        log.info("Token refreshed", extra={"event": "TOKEN_REFRESHED"})

    Handlers are attached once per logger *name*; building a second
    ``StructuredLogger`` with the same name reuses them.  File settings
    default to ``AppConfig.LOG_FILE`` / ``LOG_MAX_BYTES`` /
    ``LOG_BACKUP_COUNT``.
    """

    def __init__(
        self,
        name: str = "student_portal",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        # Imported here: config logs through the stdlib during validation.
        from student_portal.config import get_config
        cfg = get_config()

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        resolved_file = log_file or cfg.LOG_FILE
        file_handler = _file_handler(
            resolved_file,
            max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
            backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
        )
        if file_handler is None:
            self._logger.warning(
                "Could not open log file '%s'; logging to console only.", resolved_file,
            )
            return
        file_handler.setFormatter(formatter)
        self._logger.addHandler(file_handler)

    @property
    def logger(self) -> logging.Logger:
        """The underlying ``logging.Logger``."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "student_portal") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name* with configured defaults."""
    return StructuredLogger(name=name)
