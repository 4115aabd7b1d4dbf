import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    hash_password,
    login_user,
    logout_user,
    register_user,
    verify_password,
)
from app.models.session import SessionStatus
from app.models.user import UserStatus
from app.services import audit_service
from app.services.client_info import DeviceInfo, GeoLocation

DESKTOP = DeviceInfo(device="desktop", browser="Chrome 120", os="Windows 10", is_mobile=False)
US = GeoLocation(country="US")


async def _login(db_session: AsyncSession, email: str, password: str, ip: str | None = None):
    return await login_user(
        db_session,
        email=email,
        password=password,
        ip_address=ip,
        user_agent="test-agent",
        device_info=DESKTOP,
        location=US,
    )


@pytest.mark.asyncio
async def test_hash_and_verify_password():
    """bcrypt hash and verify round-trip."""
    pw = "SecurePass123!"
    hashed = hash_password(pw)
    assert hashed != pw
    assert verify_password(pw, hashed) is True
    assert verify_password("WrongPass", hashed) is False


@pytest.mark.asyncio
async def test_register_user(db_session: AsyncSession):
    """Register creates a user with hashed password and no known devices."""
    user = await register_user(
        db_session,
        email="register@example.com",
        password="SecurePass123!",
        ip_address="127.0.0.1",
    )
    await db_session.commit()

    assert user.id is not None
    assert user.email == "register@example.com"
    assert user.status == UserStatus.active
    assert user.known_devices == []
    assert verify_password("SecurePass123!", user.password_hash) is True


@pytest.mark.asyncio
async def test_register_duplicate_email(db_session: AsyncSession):
    """Register with duplicate email raises 409."""
    await register_user(db_session, email="dup@example.com", password="Pass123!")
    await db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        await register_user(db_session, email="dup@example.com", password="Pass456!")
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_login_user_opens_session(db_session: AsyncSession):
    """Login with valid credentials returns the user and a risk-assessed session."""
    await register_user(db_session, email="login@example.com", password="SecurePass123!")
    await db_session.commit()

    user, session = await _login(db_session, "login@example.com", "SecurePass123!")
    await db_session.commit()

    assert user.email == "login@example.com"
    assert session.user_id == user.id
    assert len(session.token) == 64  # hex(32 bytes)
    assert session.status == SessionStatus.active
    assert session.country == "US"
    assert len(user.known_devices) == 1


@pytest.mark.asyncio
async def test_login_wrong_password(db_session: AsyncSession):
    """Login with wrong password raises 401."""
    await register_user(db_session, email="wrongpw@example.com", password="CorrectPass123!")
    await db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        await _login(db_session, "wrongpw@example.com", "WrongPass!")
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_login_nonexistent_user(db_session: AsyncSession):
    """Login with nonexistent email raises 401."""
    with pytest.raises(HTTPException) as exc_info:
        await _login(db_session, "nobody@example.com", "Pass123!")
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_login_suspended_user(db_session: AsyncSession):
    user = await register_user(db_session, email="suspended@example.com", password="Pass123!")
    user.status = UserStatus.suspended
    await db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        await _login(db_session, "suspended@example.com", "Pass123!")
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_logout_revokes_session(db_session: AsyncSession):
    """Logout revokes the session and records it in the audit log."""
    await register_user(db_session, email="logout@example.com", password="Pass123!")
    await db_session.commit()

    _, session = await _login(db_session, "logout@example.com", "Pass123!", ip="10.0.0.2")
    await db_session.commit()

    await logout_user(db_session, session=session, ip_address="10.0.0.3")
    await db_session.commit()

    assert session.status == SessionStatus.revoked
    events = await audit_service.get_events_for_entity(db_session, "Session", session.id)
    assert {e.event_type for e in events} == {"session.created", "auth.logout"}
