"""
Session Services Package.

The ``create_services()`` factory wires the local database, the token
store, the single ``SessionManager`` and the HTTP stack together,
returning a ``Services`` container that consumers (CLI commands, views)
use without knowing the internal dependency graph.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from student_portal.auth import SessionManager
from student_portal.config import AppConfig
from student_portal.database import DatabaseManager
from student_portal.logger import get_logger
from student_portal.schema import initialize_schema
from student_portal.services.app_settings_service import AppSettingsService
from student_portal.services.auth_gateway import AuthGateway
from student_portal.services.request_interceptor import RequestInterceptor
from student_portal.services.session_context import SessionContext
from student_portal.services.student_api import StudentApi
from student_portal.services.token_store import SqliteTokenStore, TokenStore


@dataclass
class Services:
    """Fully wired client services.  Owns the HTTP client and the database."""

    config: AppConfig
    db: DatabaseManager
    session: SessionManager
    settings: AppSettingsService
    token_store: TokenStore
    http: httpx.AsyncClient
    gateway: AuthGateway
    interceptor: RequestInterceptor
    session_context: SessionContext
    student_api: StudentApi

    async def aclose(self) -> None:
        """Release the HTTP connection pool and the SQLite connection."""
        try:
            await self.http.aclose()
        finally:
            self.db.close()


def create_services(
    config: AppConfig,
    session: Optional[SessionManager] = None,
    *,
    db: Optional[DatabaseManager] = None,
    token_store: Optional[TokenStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    """
    Wire every service together.

    This is the single composition root for the client.  The entry
    point calls it once at startup, calls
    ``services.session_context.restore()`` and later awaits
    ``services.aclose()``.

    Args:
        config: Application configuration.
        session: The session to share; a fresh one is created if omitted.
        db: Pre-built database manager (tests); opened from
            ``config.LOCAL_DB_PATH`` if omitted.
        token_store: Alternative ``TokenStore``; defaults to the
            encrypted SQLite store.
        transport: Custom httpx transport (tests use ``MockTransport``).

    Returns:
        Services container with fully-wired instances.
    """
    logger = get_logger("student_portal.services")

    # ------------------------------------------------------------------
    # 1. Local persistence
    # ------------------------------------------------------------------
    if db is None:
        db = DatabaseManager(
            sqlite_path=Path(config.LOCAL_DB_PATH),
            logger=get_logger("student_portal.database"),
        )
    if db.is_available:
        try:
            initialize_schema(db.sqlite, logger)
        except sqlite3.Error as exc:
            logger.warning(
                "Local schema could not be initialised; sessions will not "
                "survive a restart: %s", exc,
            )

    if token_store is None:
        token_store = SqliteTokenStore(
            db=db,
            logger=logger,
            salt_path=Path(config.SESSION_SALT_PATH),
            kdf_iterations=config.TOKEN_KDF_ITERATIONS,
        )
    settings = AppSettingsService(db=db, logger=logger, default_base_url=config.API_BASE_URL)

    # ------------------------------------------------------------------
    # 2. Session + HTTP stack
    # ------------------------------------------------------------------
    session = session or SessionManager(logger=logger)
    http = httpx.AsyncClient(
        timeout=httpx.Timeout(config.HTTP_TIMEOUT_S),
        headers={"Accept": "application/json"},
        transport=transport,
    )

    gateway = AuthGateway(
        http=http,
        base_url=settings.get_api_base_url,
        token_store=token_store,
        session=session,
        permitted_role=config.PERMITTED_ROLE,
        logger=logger,
    )
    interceptor = RequestInterceptor(
        http=http,
        base_url=settings.get_api_base_url,
        token_store=token_store,
        gateway=gateway,
        session=session,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Consumer-facing facades
    # ------------------------------------------------------------------
    session_context = SessionContext(
        session=session,
        gateway=gateway,
        token_store=token_store,
        permitted_role=config.PERMITTED_ROLE,
        logger=logger,
    )

    return Services(
        config=config,
        db=db,
        session=session,
        settings=settings,
        token_store=token_store,
        http=http,
        gateway=gateway,
        interceptor=interceptor,
        session_context=session_context,
        student_api=StudentApi(interceptor),
    )
