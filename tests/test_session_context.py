"""Tests for SessionContext: optimistic restore and the login lifecycle."""

from __future__ import annotations

import pytest

from student_portal.models import AuthErrorCode, TokenPair, UserProfile
from student_portal.services.session_context import SessionContext
from tests.conftest import FACULTY, STUDENT


@pytest.fixture
def context(session, gateway, store, logger) -> SessionContext:
    return SessionContext(
        session=session,
        gateway=gateway,
        token_store=store,
        permitted_role="student",
        logger=logger,
    )


def test_starts_loading(context):
    assert context.is_loading
    assert context.current_user is None


def test_restore_populates_without_network(context, store, backend):
    profile = UserProfile.model_validate(STUDENT)
    store.set(TokenPair(access_token="old", refresh_token="refresh-1"))
    store.set_cached_profile(profile)

    restored = context.restore()

    assert restored == profile
    assert context.current_user == profile
    assert not context.is_loading
    assert backend.requests == []


def test_restore_with_empty_store_is_logged_out(context, backend):
    assert context.restore() is None
    assert context.current_user is None
    assert not context.is_loading
    assert backend.requests == []


def test_restore_needs_both_tokens_and_profile(context, store):
    store.set(TokenPair(access_token="a", refresh_token="r"))

    assert context.restore() is None
    assert not context.is_authenticated


def test_restore_refuses_other_roles(context, store):
    store.set(TokenPair(access_token="a", refresh_token="r"))
    store.set_cached_profile(UserProfile.model_validate(FACULTY))

    assert context.restore() is None
    assert context.current_user is None
    assert not context.is_loading


async def test_login_failure_records_last_error(context):
    result = await context.login("asha", "wrong")

    assert result.error_code == AuthErrorCode.INVALID_CREDENTIALS
    assert context.last_error == "Invalid username or password"
    assert not context.is_loading


async def test_next_attempt_clears_last_error(context):
    await context.login("asha", "wrong")

    result = await context.login("asha", "s3cret")

    assert result.success
    assert context.last_error is None
    assert context.current_user.username == "asha"


async def test_otp_branch_is_not_an_error(context):
    result = await context.login("otp-user", "s3cret")

    assert result.otp_required
    assert context.last_error is None

    result = await context.verify_otp("123456")
    assert result.success
    assert context.is_authenticated


async def test_wrong_role_message(context):
    await context.login("prof", "s3cret")

    assert context.last_error == "You do not have student access."
    assert context.current_user is None


async def test_logout_resets_session(context, store):
    await context.login("asha", "s3cret")

    await context.logout()

    assert context.current_user is None
    assert store.get() is None
    assert not context.is_loading


async def test_loading_is_set_while_in_flight(context, session, backend):
    observed = []
    backend.on_request = lambda request: observed.append(session.is_loading)
    context.restore()

    await context.login("asha", "s3cret")

    assert observed == [True]
    assert not context.is_loading
