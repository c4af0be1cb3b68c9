"""
Request Interceptor.

Every authenticated domain call goes through ``RequestInterceptor``.
It attaches the stored access token, classifies the response into an
``ApiResult`` and, on a 401, coordinates a token refresh before
replaying the call once.

Single-flight refresh
---------------------
Concurrent calls that fail with 401 while the same access token is
stored share one ``RefreshCycle``: the first one starts the refresh as
an ``asyncio.Task`` and publishes it, later ones await the same task.
However many calls fail at once, the backend sees exactly one refresh
exchange.

The refresh task commits its outcome before it resolves, provided the
session it started from is still the current one:

- success: the new ``TokenPair`` is written to the ``TokenStore``, then
  every waiting call replays itself once with the new access token;
- failure: the ``TokenStore`` is cleared and the session expired, then
  every waiting call returns ``SESSION_EXPIRED``;
- superseded: a logout or a new login happened meanwhile (the
  gateway's ``generation`` moved on).  The result is discarded, the
  store and session are left alone, and waiters return
  ``UNAUTHENTICATED`` without replaying.

Waiters await the task through ``asyncio.shield`` so cancelling one
caller never cancels the refresh the others depend on.

State machine::

    IDLE ──401──▶ REFRESHING ──task done──▶ IDLE
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from student_portal.auth import SessionManager
from student_portal.exceptions import ResponseFormatError
from student_portal.logger import StructuredLogger
from student_portal.models.api_models import ApiResult
from student_portal.models.auth_models import (
    AUTH_ERROR_MESSAGES,
    AuthErrorCode,
    RefreshResult,
)
from student_portal.models.enums import ApiOutcome, InterceptorState
from student_portal.services.auth_gateway import AuthGateway
from student_portal.services.base_service import BaseService
from student_portal.services.token_store import TokenStore
from student_portal.utils.general import build_api_url


@dataclass
class RefreshCycle:
    """The refresh in flight and how many calls are waiting on it."""

    task: asyncio.Task[RefreshResult]
    generation: int
    subscribers: int = 0


class RequestInterceptor(BaseService):
    """Authenticated request pipeline with transparent token refresh.

    Parameters
    ----------
    http:
        Shared ``httpx.AsyncClient``.
    base_url:
        Callable returning the current backend base URL; resolved on
        every call so a runtime override applies immediately.
    token_store:
        Source of the bearer token and sink of refreshed pairs.
    gateway:
        Performs the refresh exchange.
    session:
        Expired when a refresh fails.
    logger:
        Structured logger.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: Callable[[], str],
        token_store: TokenStore,
        gateway: AuthGateway,
        session: SessionManager,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._http: httpx.AsyncClient = http
        self._base_url: Callable[[], str] = base_url
        self._store: TokenStore = token_store
        self._gateway: AuthGateway = gateway
        self._session: SessionManager = session
        self._cycle: Optional[RefreshCycle] = None

    @property
    def state(self) -> InterceptorState:
        if self._cycle is None:
            return InterceptorState.IDLE
        return InterceptorState.REFRESHING

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, path: str, *, params: Optional[dict[str, Any]] = None) -> ApiResult[Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *, json: Any = None) -> ApiResult[Any]:
        return await self.request("POST", path, json=json)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> ApiResult[Any]:
        """Send an authenticated call and return its ``ApiResult``.

        Expected failures come back as the ``outcome`` of the result
        (``HTTP_ERROR``, ``NETWORK_ERROR``, ``SESSION_EXPIRED``,
        ``UNAUTHENTICATED``).

        Raises
        ------
        ResponseFormatError
            If a 2xx response body is not a JSON object.
        """
        tokens = self._store.get()
        sent_with = tokens.access_token if tokens is not None else None

        try:
            response = await self._send(method, path, sent_with, json, params)
        except httpx.RequestError as exc:
            return self._network_failure(method, path, exc)

        if response.status_code != 401:
            return self._to_result(method, path, response)

        return await self._recover(method, path, sent_with, json, params)

    # ------------------------------------------------------------------
    # 401 handling
    # ------------------------------------------------------------------

    async def _recover(
        self,
        method: str,
        path: str,
        sent_with: Optional[str],
        json: Any,
        params: Optional[dict[str, Any]],
    ) -> ApiResult[Any]:
        current = self._store.get()
        if sent_with is None or current is None:
            return self._failure(ApiOutcome.UNAUTHENTICATED, AuthErrorCode.UNAUTHENTICATED, 401)

        # Another cycle already replaced the token this call went out with.
        if current.access_token != sent_with:
            return await self._replay(method, path, current.access_token, json, params)

        result = await self._await_refresh(current.refresh_token)
        if result.error_code == AuthErrorCode.UNAUTHENTICATED:
            return self._failure(ApiOutcome.UNAUTHENTICATED, AuthErrorCode.UNAUTHENTICATED, 401)
        if not result.success or result.tokens is None:
            return self._failure(ApiOutcome.SESSION_EXPIRED, AuthErrorCode.SESSION_EXPIRED, 401)

        return await self._replay(method, path, result.tokens.access_token, json, params)

    async def _await_refresh(self, refresh_token: str) -> RefreshResult:
        """Join the active refresh cycle, starting one if none is running."""
        generation = self._gateway.generation
        cycle = self._cycle
        if cycle is None or cycle.generation != generation:
            task = asyncio.create_task(self._run_refresh(refresh_token, generation))
            cycle = RefreshCycle(task=task, generation=generation)
            self._cycle = cycle
            self._logger.info("Access token rejected; refreshing session.")
        cycle.subscribers += 1
        return await asyncio.shield(cycle.task)

    async def _run_refresh(self, refresh_token: str, generation: int) -> RefreshResult:
        """Body of the shared refresh task.  Commits before resolving."""
        try:
            result = await self._gateway.refresh(refresh_token)
            if self._gateway.generation != generation:
                self._logger.info(
                    "Session changed during token refresh; discarding the result.",
                    extra={"event": "REFRESH_DISCARDED"},
                )
                return RefreshResult(success=False, error_code=AuthErrorCode.UNAUTHENTICATED)
            if result.success and result.tokens is not None:
                self._store.set(result.tokens)
            else:
                self._store.clear()
                self._session.expire()
                self._logger.warning(
                    "Session expired after failed token refresh.",
                    extra={"event": "SESSION_EXPIRED", "error_code": result.error_code},
                )
            return result
        finally:
            cycle = self._cycle
            if cycle is not None and cycle.task is asyncio.current_task():
                self._cycle = None
                self._logger.debug(
                    "Refresh cycle resolved for %d waiting call(s).", cycle.subscribers,
                )

    async def _replay(
        self,
        method: str,
        path: str,
        access_token: str,
        json: Any,
        params: Optional[dict[str, Any]],
    ) -> ApiResult[Any]:
        """Resend a call once with *access_token*.  A second 401 is final."""
        try:
            response = await self._send(method, path, access_token, json, params)
        except httpx.RequestError as exc:
            return self._network_failure(method, path, exc)

        if response.status_code == 401:
            self._logger.warning("%s %s rejected again after refresh.", method, path)
            return self._failure(ApiOutcome.UNAUTHENTICATED, AuthErrorCode.UNAUTHENTICATED, 401)

        return self._to_result(method, path, response)

    # ------------------------------------------------------------------
    # Transport & classification
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        access_token: Optional[str],
        json: Any,
        params: Optional[dict[str, Any]],
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return await self._http.request(
            method,
            build_api_url(self._base_url(), path),
            json=json,
            params=params,
            headers=headers,
        )

    def _to_result(self, method: str, path: str, response: httpx.Response) -> ApiResult[Any]:
        try:
            body: Any = response.json()
        except ValueError:
            body = None

        if response.is_success:
            if not isinstance(body, dict):
                raise ResponseFormatError(
                    f"{method} {path} returned a non-JSON body.",
                    details={"status_code": response.status_code, "path": path},
                )
            return ApiResult(
                outcome=ApiOutcome.OK,
                success=bool(body.get("success", True)),
                data=body.get("data"),
                message=body.get("message"),
                status_code=response.status_code,
                body=body,
            )

        document = body if isinstance(body, dict) else {}
        message = document.get("message") or document.get("detail") or response.reason_phrase
        self._logger.warning(
            "%s %s failed with HTTP %d.", method, path, response.status_code,
        )
        return ApiResult(
            outcome=ApiOutcome.HTTP_ERROR,
            success=False,
            message=message,
            status_code=response.status_code,
            body=document,
        )

    def _network_failure(self, method: str, path: str, exc: httpx.RequestError) -> ApiResult[Any]:
        self._logger.warning("%s %s could not reach the server: %s", method, path, exc)
        return self._failure(ApiOutcome.NETWORK_ERROR, AuthErrorCode.NETWORK_ERROR)

    @staticmethod
    def _failure(
        outcome: ApiOutcome,
        code: AuthErrorCode,
        status_code: Optional[int] = None,
    ) -> ApiResult[Any]:
        return ApiResult(
            outcome=outcome,
            success=False,
            message=AUTH_ERROR_MESSAGES[code],
            status_code=status_code,
        )
