"""
Local Database Layer.

Owns the client's single SQLite connection.  The database is the
persistence medium behind the encrypted ``SqliteTokenStore`` and the
``AppSettingsService`` (persisted backend base URL).  This module only
manages the raw *connection*; it contains no query logic.

The database is optional at runtime: when the file cannot be opened
(read-only profile, disabled storage) the manager stays constructed in
an *unavailable* state and the ``sqlite`` property raises
``RuntimeError``.  Callers already wrap storage access in
``try/except`` and degrade to "session not restorable across restarts".

Usage (dependency injection at startup)::

    from student_portal.database import DatabaseManager
    from student_portal.logger import StructuredLogger

    db = DatabaseManager(
        sqlite_path=Path("student_portal_local.db"),
        logger=StructuredLogger(name="database"),
    )
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from student_portal.logger import StructuredLogger


class DatabaseManager:
    """Manages the connection to the local SQLite database.

    Fully configured at construction time via dependency injection.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"`` for a throwaway database.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(self, sqlite_path: Path | str, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._in_transaction: bool = False
        self._sqlite_conn: Optional[sqlite3.Connection] = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the open SQLite connection.

        Raises
        ------
        RuntimeError
            If the database could not be opened or has been closed.
        """
        if self._sqlite_conn is None:
            raise RuntimeError(
                "Local database is unavailable. "
                "Session state will not survive a restart."
            )
        return self._sqlite_conn

    @property
    def is_available(self) -> bool:
        """``True`` when the SQLite connection is open."""
        return self._sqlite_conn is not None

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a group of statements as one atomic unit.

        Commits once on normal exit; on exception the whole group is
        rolled back and the error re-raised, so readers never observe a
        half-applied write.  Re-entrant: a nested ``transaction()`` joins
        the outer one.

        Example::

            with db.transaction() as conn:
                conn.execute("DELETE ...")
                conn.execute("DELETE ...")
        """
        conn = self.sqlite
        if self._in_transaction:
            yield conn
            return

        self._in_transaction = True
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            self._logger.error(
                "Transaction rolled back due to exception.", exc_info=True,
            )
            raise
        finally:
            self._in_transaction = False

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if self._sqlite_conn is not None:
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                pass
            self._sqlite_conn = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Path | str) -> Optional[sqlite3.Connection]:
        """Open (or create) the SQLite database.

        Returns ``None`` instead of raising when the OS refuses the file,
        leaving the manager in the unavailable state.
        """
        try:
            conn = sqlite3.connect(str(path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except (sqlite3.Error, OSError) as exc:
            self._logger.error(
                "Cannot open the local database at '%s': %s. "
                "Continuing without persistent session storage.",
                path,
                exc,
            )
            return None
