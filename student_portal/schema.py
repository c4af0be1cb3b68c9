"""
Local Schema.

Three tables back the client's persisted state::

    app_settings     runtime preferences (the backend base URL)
    token_store      encrypted token pair, cached profile and role tag
    schema_version   single-row tracker, so a later release can upgrade
                     a stored session instead of discarding it

:func:`initialize_schema` is idempotent and runs on every startup from
``create_services()``.

Changing the layout
~~~~~~~~~~~~~~~~~~~
Bump :data:`CURRENT_SCHEMA_VERSION`, edit the DDL in :data:`_TABLES` for
fresh installs, and register an upgrade step in :data:`_UPGRADES` keyed
by the version it produces.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from student_portal.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema", "stored_version"]

CURRENT_SCHEMA_VERSION: int = 1

_VERSION_TABLE: str = """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_TABLES: dict[str, str] = {
    "app_settings": """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
    # One row per stored value; each row has its own GCM nonce and tag.
    "token_store": """
        CREATE TABLE IF NOT EXISTS token_store (
            key TEXT PRIMARY KEY
                CHECK (key IN ('access_token', 'refresh_token', 'user', 'role')),
            encrypted_payload BLOB NOT NULL,
            nonce BLOB NOT NULL,
            tag BLOB NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """,
}

UpgradeStep = Callable[[sqlite3.Connection], None]

_UPGRADES: dict[int, UpgradeStep] = {}


def stored_version(conn: sqlite3.Connection) -> int:
    """Return the recorded schema version, ``0`` for a fresh database."""
    conn.execute(_VERSION_TABLE)
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row is not None else 0


def _apply(conn: sqlite3.Connection, current: int, logger: StructuredLogger) -> None:
    if current == 0:
        for name, ddl in _TABLES.items():
            conn.execute(ddl)
            logger.debug("Local table %s ready.", name)
        return

    for version in range(current + 1, CURRENT_SCHEMA_VERSION + 1):
        step = _UPGRADES.get(version)
        if step is None:
            raise RuntimeError(
                f"No upgrade step registered for schema version {version}."
            )
        logger.info("Upgrading local schema to version %d.", version)
        step(conn)


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> int:
    """Bring the local database to :data:`CURRENT_SCHEMA_VERSION`.

    The table changes and the version bump commit together; on failure
    they roll back and the next startup retries from the old version.

    Returns:
        The schema version now in effect.

    Raises:
        sqlite3.Error: If the database rejects the DDL.
    """
    current = stored_version(conn)
    conn.commit()

    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Local schema is current (version %d).", current)
        return current

    try:
        _apply(conn, current, logger)
        conn.execute(
            """
            INSERT INTO schema_version (id, version) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET
                version    = excluded.version,
                applied_at = CURRENT_TIMESTAMP
            """,
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except (sqlite3.Error, RuntimeError):
        conn.rollback()
        logger.error(
            "Local schema upgrade failed; staying at version %d.", current, exc_info=True,
        )
        raise

    logger.info("Local schema at version %d.", CURRENT_SCHEMA_VERSION)
    return CURRENT_SCHEMA_VERSION
