"""Session routes: create, list, revoke, activity ping, suspicious report."""

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.auth import get_current_user
from app.dependencies import get_db, get_geolocator
from app.models.user import User
from app.schemas.session import SessionCreate, SessionCreated, SessionRead, SuspiciousReport
from app.services import session_service
from app.services.client_info import GeoLocator, client_ip, resolve_client

SESSION_ID_HEADER = "X-Session-ID"

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionCreated, status_code=201)
async def create(
    request: Request,
    body: SessionCreate | None = None,
    db: AsyncSession = Depends(get_db),
    locator: GeoLocator = Depends(get_geolocator),
    current_user: User = Depends(get_current_user),
):
    body = body or SessionCreate()
    client = resolve_client(request, locator, trust_forwarded_for=settings.trust_forwarded_for)
    session = await session_service.create_session(
        db,
        user=current_user,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        device_info=client.device_info,
        location=client.location,
        is_anonymous_mode=body.is_anonymous_mode,
    )
    return SessionCreated(
        session_id=session.id,
        token=session.token,
        expires_at=session.expires_at,
        risk_score=session.risk_score,
        status=session.status.value,
    )


@router.get("", response_model=list[SessionRead])
async def list_sessions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await session_service.list_live_sessions(db, current_user.id)


@router.delete("")
async def revoke_others(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    keep_id = session_service.parse_session_id(request.headers.get(SESSION_ID_HEADER))
    revoked = await session_service.revoke_other_sessions(
        db,
        user_id=current_user.id,
        keep_session_id=keep_id,
        ip_address=client_ip(request, trust_forwarded_for=settings.trust_forwarded_for),
    )
    return {"success": True, "revoked": revoked, "message": f"Revoked {revoked} sessions successfully"}


@router.patch("/activity")
async def update_activity(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    session_id = session_service.parse_session_id(request.headers.get(SESSION_ID_HEADER))
    session = await session_service.touch_session(
        db, user_id=current_user.id, session_id=session_id
    )
    return {
        "success": True,
        "message": "Session activity updated",
        "last_activity": session.last_activity,
    }


@router.delete("/{session_id}")
async def revoke(
    session_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await session_service.revoke_session(
        db,
        user_id=current_user.id,
        session_id=session_id,
        ip_address=client_ip(request, trust_forwarded_for=settings.trust_forwarded_for),
    )
    return {"success": True, "message": "Session revoked successfully"}


@router.post("/{session_id}/suspicious")
async def report_suspicious(
    session_id: uuid.UUID,
    request: Request,
    body: SuspiciousReport | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    body = body or SuspiciousReport()
    session = await session_service.mark_suspicious(
        db,
        user_id=current_user.id,
        session_id=session_id,
        reason=body.reason,
        ip_address=client_ip(request, trust_forwarded_for=settings.trust_forwarded_for),
    )
    return {
        "success": True,
        "message": "Session marked as suspicious",
        "status": session.status.value,
        "anomaly_reasons": session.anomaly_reasons,
    }
