"""Auth routes: register, login, logout."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.auth import get_current_session, login_user, logout_user, register_user
from app.dependencies import get_db, get_geolocator
from app.models.session import Session
from app.schemas.user import LoginResult, UserCreate, UserRead
from app.services.client_info import GeoLocator, client_ip, resolve_client

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    ip = client_ip(request, trust_forwarded_for=settings.trust_forwarded_for)
    user = await register_user(db, email=body.email, password=body.password, ip_address=ip)
    return user


@router.post("/login", response_model=LoginResult)
async def login(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    locator: GeoLocator = Depends(get_geolocator),
):
    client = resolve_client(request, locator, trust_forwarded_for=settings.trust_forwarded_for)
    user, session = await login_user(
        db,
        email=body.email,
        password=body.password,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        device_info=client.device_info,
        location=client.location,
    )
    return LoginResult(
        token=session.token,
        user_id=user.id,
        session_id=session.id,
        expires_at=session.expires_at,
        risk_score=session.risk_score,
    )


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    session: Session = Depends(get_current_session),
):
    ip = client_ip(request, trust_forwarded_for=settings.trust_forwarded_for)
    await logout_user(db, session=session, ip_address=ip)
