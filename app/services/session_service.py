"""Session service: create, list, revoke, ping and flag login sessions.

Every session is risk-assessed before it is persisted. Sessions are never
deleted; revocation, expiry and suspicion are status changes.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.base import utcnow
from app.models.session import LIVE_STATUSES, AnomalyReason, Session, SessionStatus
from app.models.user import User
from app.services import audit_service, risk_service
from app.services.client_info import DeviceInfo, GeoLocation

logger = logging.getLogger("app.sessions")


def _generate_token() -> str:
    """Generate a cryptographically secure session token."""
    return secrets.token_hex(32)


def parse_session_id(value: str | None) -> uuid.UUID:
    """Parse a session id taken from a header. Raises 400 when missing or malformed."""
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session ID is required",
        )
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid session ID: {value}",
        )


async def create_session(
    db: AsyncSession,
    *,
    user: User,
    ip_address: str | None,
    user_agent: str | None,
    device_info: DeviceInfo,
    location: GeoLocation | None,
    is_anonymous_mode: bool = False,
    now: datetime | None = None,
) -> Session:
    """Build, risk-score and persist a new session for the user."""
    now = now or utcnow()
    session = Session(
        user_id=user.id,
        token=_generate_token(),
        ip_address=ip_address,
        user_agent=user_agent,
        device=device_info.device,
        browser=device_info.browser,
        os=device_info.os,
        country=location.country if location else None,
        region=location.region if location else None,
        city=location.city if location else None,
        latitude=location.latitude if location else None,
        longitude=location.longitude if location else None,
        status=SessionStatus.active,
        created_at=now,
        last_activity=now,
        expires_at=now + timedelta(hours=settings.session_duration_hours),
        is_mobile=device_info.is_mobile,
        is_anonymous_mode=is_anonymous_mode,
        risk_score=0,
        anomaly_detected=False,
        anomaly_reasons=[],
    )

    # Scored before db.add so the candidate never shows up in its own history.
    score, reasons = await risk_service.assess_risk(db, user.id, session, now=now)
    if risk_service.is_suspicious(score):
        session.status = SessionStatus.suspicious

    db.add(session)
    await db.flush()

    user.register_device(str(session.id), session.device)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user.id,
        event_type="session.created",
        entity_type="Session",
        entity_id=session.id,
        detail={
            "risk_score": score,
            "anomaly_reasons": [r.value for r in reasons],
            "status": session.status.value,
        },
        ip_address=ip_address,
    )

    if session.status == SessionStatus.suspicious:
        logger.warning(
            "Suspicious login detected user_id=%s session_id=%s risk_score=%d reasons=%s",
            user.id,
            session.id,
            score,
            ",".join(r.value for r in reasons),
        )

    return session


async def get_session_by_token(db: AsyncSession, token: str) -> Session | None:
    result = await db.execute(select(Session).where(Session.token == token))
    session = result.scalar_one_or_none()
    if session is not None:
        session.refresh_expiry()
    return session


async def list_live_sessions(db: AsyncSession, user_id: uuid.UUID) -> list[Session]:
    """Caller's unexpired active or suspicious sessions, newest first."""
    now = utcnow()
    stmt = (
        select(Session)
        .where(
            Session.user_id == user_id,
            Session.status.in_(LIVE_STATUSES),
            Session.expires_at > now,
        )
        .order_by(Session.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _get_live_session(
    db: AsyncSession, user_id: uuid.UUID, session_id: uuid.UUID
) -> Session | None:
    result = await db.execute(
        select(Session).where(
            Session.id == session_id,
            Session.user_id == user_id,
            Session.status.in_(LIVE_STATUSES),
        )
    )
    session = result.scalar_one_or_none()
    if session is None:
        return None
    session.refresh_expiry()
    if not session.is_live():
        # Callers turn None into a 404, which rolls the request back.
        await db.commit()
        return None
    return session


async def revoke_session(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    session_id: uuid.UUID,
    ip_address: str | None = None,
) -> Session:
    """Revoke one of the user's live sessions. Raises 404 if none matches."""
    session = await _get_live_session(db, user_id, session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found or already expired",
        )

    session.status = SessionStatus.revoked
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user_id,
        event_type="session.revoked",
        entity_type="Session",
        entity_id=session.id,
        ip_address=ip_address,
    )
    return session


async def revoke_other_sessions(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    keep_session_id: uuid.UUID,
    ip_address: str | None = None,
) -> int:
    """Revoke every live session of the user except keep_session_id. Returns the count."""
    result = await db.execute(
        select(Session).where(
            Session.user_id == user_id,
            Session.id != keep_session_id,
            Session.status.in_(LIVE_STATUSES),
        )
    )
    revoked = 0
    for session in result.scalars().all():
        session.refresh_expiry()
        if session.status == SessionStatus.expired:
            continue
        session.status = SessionStatus.revoked
        revoked += 1
    await db.flush()

    if revoked:
        await audit_service.log_event(
            db,
            user_id=user_id,
            event_type="session.revoked_others",
            entity_type="Session",
            entity_id=keep_session_id,
            detail={"revoked": revoked},
            ip_address=ip_address,
        )
    return revoked


async def touch_session(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    session_id: uuid.UUID,
) -> Session:
    """Refresh last_activity on one of the user's live sessions."""
    session = await _get_live_session(db, user_id, session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found or expired",
        )
    session.update_activity()
    await db.flush()
    return session


async def mark_suspicious(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    session_id: uuid.UUID,
    reason: AnomalyReason | None = None,
    ip_address: str | None = None,
) -> Session:
    """Flag one of the user's sessions as suspicious, adding the reason if given."""
    result = await db.execute(
        select(Session).where(Session.id == session_id, Session.user_id == user_id)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    session.mark_suspicious(reason)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user_id,
        event_type="session.marked_suspicious",
        entity_type="Session",
        entity_id=session.id,
        detail={"reason": reason.value if reason else None},
        ip_address=ip_address,
    )
    logger.info("Session marked suspicious user_id=%s session_id=%s", user_id, session.id)
    return session
