"""Tests for RequestInterceptor: bearer attach, single-flight refresh, replay."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from student_portal.exceptions import ResponseFormatError
from student_portal.models import ApiOutcome, InterceptorState, TokenPair
from student_portal.services.request_interceptor import RequestInterceptor
from tests.conftest import BASE_URL


async def _wait_for_refresh(interceptor: RequestInterceptor) -> None:
    for _ in range(1000):
        if interceptor.state == InterceptorState.REFRESHING:
            return
        await asyncio.sleep(0)
    raise AssertionError("refresh cycle never started")


# ---------------------------------------------------------------------------
# Plain calls
# ---------------------------------------------------------------------------

async def test_attaches_bearer_and_returns_envelope(interceptor, backend, logged_in):
    result = await interceptor.get("/student/dashboard/")

    assert result.ok
    assert result.data == {"view": "dashboard"}
    assert backend.requests[0].headers["Authorization"] == "Bearer access-1"
    assert backend.refresh_count == 0
    assert interceptor.state == InterceptorState.IDLE


async def test_call_without_tokens_has_no_header_and_is_unauthenticated(interceptor, backend):
    result = await interceptor.get("/student/dashboard/")

    assert result.outcome == ApiOutcome.UNAUTHENTICATED
    assert "Authorization" not in backend.requests[0].headers
    assert backend.refresh_count == 0


async def test_http_error_carries_server_message(interceptor, backend, logged_in):
    backend.student_responses["/student/timetable/"] = httpx.Response(
        500, json={"success": False, "message": "Timetable service down"},
    )

    result = await interceptor.get("/student/timetable/")

    assert result.outcome == ApiOutcome.HTTP_ERROR
    assert result.status_code == 500
    assert result.message == "Timetable service down"


async def test_network_error_leaves_session_intact(interceptor, backend, session, logged_in):
    backend.network_down = True

    result = await interceptor.get("/student/dashboard/")

    assert result.outcome == ApiOutcome.NETWORK_ERROR
    assert session.current_user == logged_in


async def test_non_json_success_raises(interceptor, backend, logged_in):
    backend.student_responses["/student/profile/"] = httpx.Response(200, text="<html>")

    with pytest.raises(ResponseFormatError):
        await interceptor.get("/student/profile/")


async def test_envelope_success_false_is_not_ok(interceptor, backend, logged_in):
    backend.student_responses["/student/assignments/"] = httpx.Response(
        200, json={"success": False, "message": "No assignments published"},
    )

    result = await interceptor.get("/student/assignments/")

    assert result.outcome == ApiOutcome.OK
    assert not result.ok
    assert result.message == "No assignments published"


async def test_base_url_is_resolved_per_call(http, store, gateway, session, logger, backend, logged_in):
    current = {"url": BASE_URL}
    interceptor = RequestInterceptor(
        http=http,
        base_url=lambda: current["url"],
        token_store=store,
        gateway=gateway,
        session=session,
        logger=logger,
    )

    await interceptor.get("/student/dashboard/")
    current["url"] = "http://other.test/api"
    await interceptor.get("/student/dashboard/")

    assert [r.url.host for r in backend.requests] == ["portal.test", "other.test"]


# ---------------------------------------------------------------------------
# Refresh & replay
# ---------------------------------------------------------------------------

async def test_single_401_refreshes_then_replays(interceptor, backend, store, expired):
    result = await interceptor.get("/student/attendance/")

    assert result.ok
    assert backend.refresh_count == 1
    assert store.get() == TokenPair(access_token="access-2", refresh_token="refresh-2")
    assert backend.requests[-1].headers["Authorization"] == "Bearer access-2"
    assert interceptor.state == InterceptorState.IDLE


@pytest.mark.parametrize("concurrency", [2, 5, 20])
async def test_concurrent_401s_share_one_refresh(interceptor, backend, expired, concurrency):
    backend.refresh_delay = 0.01
    paths = ["/student/dashboard/", "/student/attendance/", "/student/notifications/"]

    results = await asyncio.gather(*(
        interceptor.get(paths[i % len(paths)]) for i in range(concurrency)
    ))

    assert backend.refresh_count == 1
    assert all(r.ok for r in results)
    assert [r.data["view"] for r in results] == [
        paths[i % len(paths)].strip("/").split("/")[-1] for i in range(concurrency)
    ]


async def test_failed_refresh_expires_every_waiter(interceptor, backend, store, session, expired):
    backend.refresh_delay = 0.01
    backend.refresh_status = 401
    notified = []
    session.subscribe(notified.append)

    results = await asyncio.gather(*(interceptor.get("/student/dashboard/") for _ in range(4)))

    assert backend.refresh_count == 1
    assert [r.outcome for r in results] == [ApiOutcome.SESSION_EXPIRED] * 4
    assert store.get() is None
    assert store.get_cached_profile() is None
    assert session.current_user is None
    assert session.last_error == "Your session has expired. Please sign in again."
    assert notified == [None]


async def test_refresh_network_failure_also_expires(interceptor, backend, session, expired):
    backend.refresh_network_error = True

    result = await interceptor.get("/student/dashboard/")

    assert result.outcome == ApiOutcome.SESSION_EXPIRED
    assert session.current_user is None


async def test_calls_after_failed_refresh_do_not_refresh_again(interceptor, backend, expired):
    backend.refresh_status = 401
    await interceptor.get("/student/dashboard/")

    result = await interceptor.get("/student/dashboard/")

    assert result.outcome == ApiOutcome.UNAUTHENTICATED
    assert backend.refresh_count == 1


async def test_replayed_401_is_final(interceptor, backend, expired):
    backend.reject_all_student_calls = True

    result = await interceptor.get("/student/dashboard/")

    assert result.outcome == ApiOutcome.UNAUTHENTICATED
    assert backend.refresh_count == 1
    assert len(backend.hits("/student/dashboard/")) == 2


async def test_stale_token_replays_without_refresh(interceptor, backend, store, logged_in):
    # Another refresh lands while this call is in flight.
    backend.valid_access = "access-9"
    backend.before_student_call = lambda request: store.set(
        TokenPair(access_token="access-9", refresh_token="refresh-9"),
    )

    result = await interceptor.get("/student/dashboard/")

    assert result.ok
    assert backend.refresh_count == 0
    assert backend.requests[-1].headers["Authorization"] == "Bearer access-9"


async def test_post_is_replayed_with_body(interceptor, backend, expired):
    result = await interceptor.post("/student/apply-leave/", json={"reason": "fever"})

    assert result.ok
    replay = backend.hits("/student/apply-leave/")[-1]
    assert replay.method == "POST"
    assert b"fever" in replay.content


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

async def test_cancelling_a_waiter_does_not_cancel_refresh(interceptor, backend, store, expired):
    backend.refresh_delay = 0.05
    first = asyncio.create_task(interceptor.get("/student/dashboard/"))
    second = asyncio.create_task(interceptor.get("/student/attendance/"))
    await _wait_for_refresh(interceptor)

    first.cancel()
    result = await second

    with pytest.raises(asyncio.CancelledError):
        await first
    assert result.ok
    assert backend.refresh_count == 1
    assert store.get().access_token == "access-2"


async def test_refresh_completes_even_if_every_waiter_is_cancelled(interceptor, backend, store, expired):
    backend.refresh_delay = 0.02
    caller = asyncio.create_task(interceptor.get("/student/dashboard/"))
    await _wait_for_refresh(interceptor)

    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller
    for _ in range(50):
        if interceptor.state == InterceptorState.IDLE:
            break
        await asyncio.sleep(0.01)

    assert interceptor.state == InterceptorState.IDLE
    assert store.get().access_token == "access-2"


# ---------------------------------------------------------------------------
# Session changes while a refresh is in flight
# ---------------------------------------------------------------------------

async def test_logout_during_refresh_discards_new_tokens(interceptor, gateway, backend, store, session, expired):
    backend.refresh_delay = 0.05
    call = asyncio.create_task(interceptor.get("/student/dashboard/"))
    await _wait_for_refresh(interceptor)

    await gateway.logout()
    result = await call

    assert result.outcome == ApiOutcome.UNAUTHENTICATED
    assert backend.refresh_count == 1
    assert store.get() is None
    assert session.current_user is None
    assert len(backend.hits("/student/dashboard/")) == 1
    assert interceptor.state == InterceptorState.IDLE


async def test_failing_stale_refresh_keeps_new_login(interceptor, gateway, backend, store, session, expired):
    backend.refresh_delay = 0.05
    backend.refresh_status = 401
    notified = []
    call = asyncio.create_task(interceptor.get("/student/dashboard/"))
    await _wait_for_refresh(interceptor)

    login = await gateway.login("asha", "s3cret")
    session.subscribe(notified.append)
    result = await call

    assert login.success
    assert result.outcome == ApiOutcome.UNAUTHENTICATED
    assert store.get() == TokenPair(access_token="access-1", refresh_token="refresh-1")
    assert session.current_user is not None
    assert session.last_error is None
    assert notified == []


async def test_new_session_does_not_join_a_stale_refresh(interceptor, gateway, backend, store, expired):
    backend.refresh_delay = 0.05
    backend.rotate_refresh = False
    stale = asyncio.create_task(interceptor.get("/student/dashboard/"))
    await _wait_for_refresh(interceptor)

    await gateway.login("asha", "s3cret")
    store.set(TokenPair(access_token="access-0", refresh_token="refresh-1"))
    results = await asyncio.gather(stale, interceptor.get("/student/attendance/"))

    assert results[0].outcome == ApiOutcome.UNAUTHENTICATED
    assert results[1].ok
    assert backend.refresh_count == 2
