"""Tests for device-bound sessions and single-device enforcement."""

from datetime import UTC, datetime, timedelta

import pytest
from jose import jwt

from relay_stage.core.settings import settings
from relay_stage.models.security import VIOLATION_MULTIPLE_LOGIN
from relay_stage.models.session import (
    SESSION_STATE_REVOKED,
    SESSION_STATE_SUPERSEDED,
)
from relay_stage.services.errors import BlockedError, InvalidSessionError, ValidationFailedError
from relay_stage.services.sessions import SESSION_CLAIM



def _multiple_login_violations(user):
    return [item for item in user.violations if item.type == VIOLATION_MULTIPLE_LOGIN]


@pytest.mark.asyncio
async def test_login_from_second_device_supersedes_first(guard, regular_user, login_key):
    first = await guard.login(regular_user.handle, login_key, "device-1")
    second = await guard.login(regular_user.handle, login_key, "device-2")

    with pytest.raises(InvalidSessionError, match="another device"):
        guard.validate(first.access_token, "device-1")
    assert guard.validate(second.access_token, "device-2").user is regular_user

    assert first.session.state == SESSION_STATE_SUPERSEDED
    assert second.superseded is first.session
    assert len(_multiple_login_violations(regular_user)) == 1


@pytest.mark.asyncio
async def test_relogin_same_device_is_not_a_violation(guard, regular_user, login_key):
    first = await guard.login(regular_user.handle, login_key, "device-1")
    second = await guard.login(regular_user.handle, login_key, "device-1")

    assert first.session.state == SESSION_STATE_REVOKED
    assert second.superseded is None
    assert _multiple_login_violations(regular_user) == []
    with pytest.raises(InvalidSessionError):
        guard.validate(first.access_token, "device-1")


@pytest.mark.asyncio
async def test_exactly_one_live_session_for_regular_users(guard, regular_user, login_key):
    for device in ("a", "b", "c", "b"):
        await guard.login(regular_user.handle, login_key, device)
    assert sum(1 for item in regular_user.sessions if item.is_active) == 1


@pytest.mark.asyncio
async def test_admins_keep_concurrent_sessions(guard, admin_user, login_key):
    desk = await guard.login(admin_user.handle, login_key, "desk")
    laptop = await guard.login(admin_user.handle, login_key, "laptop")

    assert guard.validate(desk.access_token, "desk").user is admin_user
    assert guard.validate(laptop.access_token, "laptop").user is admin_user
    assert admin_user.violations == []


@pytest.mark.asyncio
async def test_token_from_other_device_rejected(guard, regular_user, login_key):
    issued = await guard.login(regular_user.handle, login_key, "device-1")
    with pytest.raises(InvalidSessionError, match="Device mismatch"):
        guard.validate(issued.access_token, "stolen-device")
    with pytest.raises(InvalidSessionError):
        guard.validate(issued.access_token, None)


@pytest.mark.asyncio
async def test_wrong_login_key(guard, regular_user, login_key):
    with pytest.raises(InvalidSessionError, match="Invalid credentials"):
        await guard.login(regular_user.handle, "wrong-key", "device-1")


@pytest.mark.asyncio
async def test_logout_revokes(guard, regular_user, login_key):
    issued = await guard.login(regular_user.handle, login_key, "device-1")
    guard.logout(issued.session)
    with pytest.raises(InvalidSessionError, match="ended"):
        guard.validate(issued.access_token, "device-1")


@pytest.mark.asyncio
async def test_blocked_user_cannot_validate_or_login(guard, db_session, regular_user, login_key):
    issued = await guard.login(regular_user.handle, login_key, "device-1")
    regular_user.is_blocked = True
    regular_user.block_reason = "Multiple security violations"
    db_session.commit()

    with pytest.raises(BlockedError):
        guard.validate(issued.access_token, "device-1")
    with pytest.raises(BlockedError):
        await guard.login(regular_user.handle, login_key, "device-1")


@pytest.mark.asyncio
async def test_register_opens_first_session(guard, login_key):
    issued = await guard.register("NewPerson", login_key, "phone", display_name="New Person")
    assert issued.user.handle == "newperson"
    assert issued.user.role == "regular"
    assert guard.validate(issued.access_token, "phone").session is issued.session


@pytest.mark.asyncio
async def test_register_duplicate_handle(guard, regular_user, login_key):
    with pytest.raises(ValidationFailedError):
        await guard.register(regular_user.handle, login_key, "phone")


def _expired_copy(token: str) -> str:
    claims = jwt.get_unverified_claims(token)
    claims["exp"] = datetime.now(UTC) - timedelta(minutes=5)
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


@pytest.mark.asyncio
async def test_refresh_accepts_expired_token_for_same_device(guard, regular_user, login_key):
    issued = await guard.login(regular_user.handle, login_key, "device-1")
    expired = _expired_copy(issued.access_token)

    with pytest.raises(InvalidSessionError, match="expired"):
        guard.validate(expired, "device-1")

    fresh = guard.refresh(expired, "device-1")
    authenticated = guard.validate(fresh, "device-1")
    assert authenticated.session.id == issued.session.id
    assert jwt.get_unverified_claims(fresh)[SESSION_CLAIM] == jwt.get_unverified_claims(
        issued.access_token
    )[SESSION_CLAIM]


@pytest.mark.asyncio
async def test_refresh_rechecks_device_binding(guard, regular_user, login_key):
    issued = await guard.login(regular_user.handle, login_key, "device-1")
    expired = _expired_copy(issued.access_token)
    with pytest.raises(InvalidSessionError):
        guard.refresh(expired, "device-2")


@pytest.mark.asyncio
async def test_refresh_refused_for_superseded_session(guard, regular_user, login_key):
    first = await guard.login(regular_user.handle, login_key, "device-1")
    await guard.login(regular_user.handle, login_key, "device-2")
    with pytest.raises(InvalidSessionError):
        guard.refresh(_expired_copy(first.access_token), "device-1")


def test_garbage_token(guard):
    with pytest.raises(InvalidSessionError):
        guard.validate("not-a-jwt", "device-1")


@pytest.mark.asyncio
async def test_session_status(guard, regular_user, login_key):
    issued = await guard.login(regular_user.handle, login_key, "device-1")
    status = guard.session_status(guard.validate(issued.access_token, "device-1"))
    assert status["valid"] is True
    assert status["user_id"] == regular_user.id
    assert status["device_fingerprint"] == "device-1"
    assert status["active_sessions"] == 1
