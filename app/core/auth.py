"""Authentication: register, login, logout, and the current-caller dependencies.

Bearer tokens are login sessions. Login creates a session through the
risk-assessed session service; only live (active or suspicious, unexpired)
sessions authenticate.
"""

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_db
from app.models.session import Session, SessionStatus
from app.models.user import User, UserStatus
from app.services import audit_service, session_service
from app.services.client_info import DeviceInfo, GeoLocation

SESSION_TOKEN_HEADER = "X-Session-Token"


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


async def register_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    ip_address: str | None = None,
) -> User:
    """Register a new user. Raises HTTPException if email taken."""
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        email=email,
        password_hash=hash_password(password),
        status=UserStatus.active,
        known_devices=[],
    )
    db.add(user)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user.id,
        event_type="auth.register",
        entity_type="User",
        entity_id=user.id,
        ip_address=ip_address,
    )
    return user


async def login_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    ip_address: str | None,
    user_agent: str | None,
    device_info: DeviceInfo,
    location: GeoLocation | None,
) -> tuple[User, Session]:
    """Authenticate the user and open a risk-assessed session.

    Raises HTTPException on invalid credentials or inactive account.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if user.status != UserStatus.active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is not active",
        )

    session = await session_service.create_session(
        db,
        user=user,
        ip_address=ip_address,
        user_agent=user_agent,
        device_info=device_info,
        location=location,
    )
    return user, session


async def logout_user(
    db: AsyncSession,
    *,
    session: Session,
    ip_address: str | None = None,
) -> None:
    """Revoke the session the caller authenticated with."""
    session.status = SessionStatus.revoked
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=session.user_id,
        event_type="auth.logout",
        entity_type="Session",
        entity_id=session.id,
        ip_address=ip_address,
    )


async def get_current_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Session:
    """FastAPI dependency: resolve the bearer token to a live session.

    Raises HTTPException 401 if the token is missing, unknown, revoked or expired.
    """
    token = request.headers.get(SESSION_TOKEN_HEADER)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    session = await session_service.get_session_by_token(db, token)
    if session is None or session.status == SessionStatus.revoked:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked session",
        )
    if not session.is_live():
        # Persist the expiry before the error unwinds through get_db's rollback.
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired",
        )

    request.state.user_id = session.user_id
    request.state.session_id = session.id
    return session


async def get_current_user(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> User:
    """FastAPI dependency: the active user owning the current session."""
    result = await db.execute(select(User).where(User.id == session.user_id))
    user = result.scalar_one_or_none()

    if user is None or user.status != UserStatus.active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user
