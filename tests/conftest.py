"""Shared fixtures: a scripted backend behind ``httpx.MockTransport``."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import pytest

import student_portal.config as config_module
from student_portal.auth import SessionManager
from student_portal.config import AppConfig
from student_portal.database import DatabaseManager
from student_portal.logger import StructuredLogger
from student_portal.models import TokenPair, UserProfile
from student_portal.schema import initialize_schema
from student_portal.services.auth_gateway import AuthGateway
from student_portal.services.request_interceptor import RequestInterceptor
from student_portal.services.token_store import MemoryTokenStore

BASE_URL = "http://portal.test/api"

STUDENT = {
    "user_id": 7,
    "username": "asha",
    "email": "asha@college.test",
    "role": "student",
    "department": "CSE",
    "semester": 5,
    "section": "B",
}
FACULTY = {
    "user_id": 9,
    "username": "prof",
    "email": "prof@college.test",
    "role": "faculty",
}


def _json(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeBackend:
    """Scripted stand-in for the portal backend.

    Student endpoints accept only ``valid_access``.  Each successful
    refresh rotates it to ``access-<n>``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.users: dict[str, tuple[str, dict[str, Any], bool]] = {
            "asha": ("s3cret", STUDENT, False),
            "prof": ("s3cret", FACULTY, False),
            "otp-user": ("s3cret", STUDENT, True),
        }
        self.valid_access: str = "access-1"
        self.refresh_token: str = "refresh-1"
        self.refresh_count: int = 0
        self.refresh_delay: float = 0.0
        self.refresh_status: int = 200
        self.refresh_network_error: bool = False
        self.rotate_refresh: bool = True
        self.reject_all_student_calls: bool = False
        self.logout_error: Optional[Exception] = None
        self.network_down: bool = False
        self.before_student_call: Optional[Callable[[httpx.Request], None]] = None
        self.student_responses: dict[str, httpx.Response] = {}
        self.login_response: Optional[httpx.Response] = None
        self.on_request: Optional[Callable[[httpx.Request], None]] = None

    # -- helpers ---------------------------------------------------------------

    def hits(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"/api{path}"]

    def _tokens(self) -> dict[str, str]:
        return {"access": self.valid_access, "refresh": self.refresh_token}

    # -- transport handler ------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        if self.network_down:
            raise httpx.ConnectError("backend unreachable", request=request)

        path = request.url.path.removeprefix("/api")
        body: dict[str, Any] = json.loads(request.content) if request.content else {}

        if path == "/auth/login/":
            return self._login(body)
        if path == "/auth/verify-otp/":
            return self._verify_otp(body)
        if path == "/auth/refresh/":
            return await self._refresh(request, body)
        if path == "/auth/logout/":
            if self.logout_error is not None:
                raise self.logout_error
            return _json(200, {"success": True})
        if path.startswith("/student/"):
            return self._student(request, path)
        return _json(404, {"success": False, "message": "Not found"})

    def _login(self, body: dict[str, Any]) -> httpx.Response:
        if self.login_response is not None:
            return self.login_response
        record = self.users.get(body.get("username", ""))
        if record is None or record[0] != body.get("password"):
            return _json(401, {"success": False, "message": "Invalid username or password"})
        _, profile, otp = record
        if otp:
            return _json(200, {"success": True, "otp_required": True, "otp_token": "chal-1"})
        return _json(200, {"success": True, "tokens": self._tokens(), "user": profile})

    def _verify_otp(self, body: dict[str, Any]) -> httpx.Response:
        code = body.get("otp")
        if code == "123456":
            return _json(200, {"success": True, "data": {**self._tokens(), "profile": STUDENT}})
        if code == "000000":
            return _json(400, {"success": False, "message": "OTP has expired"})
        return _json(400, {"success": False, "message": "Incorrect OTP"})

    async def _refresh(self, request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        self.refresh_count += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_network_error:
            raise httpx.ReadTimeout("refresh timed out", request=request)
        if self.refresh_status != 200 or body.get("refresh") != self.refresh_token:
            return _json(self.refresh_status if self.refresh_status != 200 else 401,
                         {"success": False, "message": "Token is invalid or expired"})
        self.valid_access = f"access-{self.refresh_count + 1}"
        if self.rotate_refresh:
            self.refresh_token = f"refresh-{self.refresh_count + 1}"
            return _json(200, {"access": self.valid_access, "refresh": self.refresh_token})
        return _json(200, {"access": self.valid_access})

    def _student(self, request: httpx.Request, path: str) -> httpx.Response:
        if self.before_student_call is not None:
            hook, self.before_student_call = self.before_student_call, None
            hook(request)
            return _json(401, {"detail": "Token expired"})
        auth = request.headers.get("Authorization")
        if self.reject_all_student_calls or auth != f"Bearer {self.valid_access}":
            return _json(401, {"detail": "Given token not valid"})
        if path in self.student_responses:
            return self.student_responses[path]
        view = path.strip("/").split("/")[-1]
        return _json(200, {"success": True, "data": {"view": view}})


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session", autouse=True)
def app_config(tmp_path_factory: pytest.TempPathFactory) -> AppConfig:
    """Keep config-driven files (log, db, salt) out of the working tree."""
    root = tmp_path_factory.mktemp("config")
    config = AppConfig(
        _env_file=None,
        API_BASE_URL=BASE_URL,
        LOCAL_DB_PATH=str(root / "local.db"),
        SESSION_SALT_PATH=str(root / "salt"),
        TOKEN_KDF_ITERATIONS=1_000,
        LOG_FILE=str(root / "student_portal.log"),
    )
    previous = config_module._config_instance
    config_module._config_instance = config
    yield config
    config_module._config_instance = previous


@pytest.fixture(scope="session")
def logger(app_config: AppConfig) -> StructuredLogger:
    return StructuredLogger(name="tests.student_portal")


@pytest.fixture
def db(tmp_path: Path, logger: StructuredLogger) -> DatabaseManager:
    manager = DatabaseManager(sqlite_path=tmp_path / "local.db", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


# ---------------------------------------------------------------------------
# Client graph
# ---------------------------------------------------------------------------

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def http(backend: FakeBackend) -> httpx.AsyncClient:
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend.handle)) as client:
        yield client


@pytest.fixture
def store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def session(logger: StructuredLogger) -> SessionManager:
    return SessionManager(logger=logger)


@pytest.fixture
def gateway(http, store, session, logger) -> AuthGateway:
    return AuthGateway(
        http=http,
        base_url=lambda: BASE_URL,
        token_store=store,
        session=session,
        permitted_role="student",
        logger=logger,
    )


@pytest.fixture
def interceptor(http, store, gateway, session, logger) -> RequestInterceptor:
    return RequestInterceptor(
        http=http,
        base_url=lambda: BASE_URL,
        token_store=store,
        gateway=gateway,
        session=session,
        logger=logger,
    )


@pytest.fixture
def logged_in(store: MemoryTokenStore, session: SessionManager) -> UserProfile:
    """A session holding the backend's current token pair."""
    profile = UserProfile.model_validate(STUDENT)
    store.set(TokenPair(access_token="access-1", refresh_token="refresh-1"))
    store.set_cached_profile(profile)
    session.set_current_user(profile)
    return profile


@pytest.fixture
def expired(logged_in: UserProfile, store: MemoryTokenStore) -> UserProfile:
    """A session whose stored access token the backend no longer accepts."""
    store.set(TokenPair(access_token="access-0", refresh_token="refresh-1"))
    return logged_in
