"""Anonymous persona routes: persona management and traffic obfuscation parameters.

Every per-persona route except the public lookup checks ownership first
(403), then loads the persona (404). Disabled features answer with a
feature-disabled response rather than a generic error.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_session, get_current_user
from app.core.errors import FeatureDisabledError
from app.dependencies import get_db
from app.models.session import Session
from app.models.user import User
from app.schemas.persona import (
    DelayRead,
    HeadersRead,
    MetadataSettingsUpdate,
    MixingParametersUpdate,
    PersonaCreate,
    PersonaPublic,
    PersonaRead,
    PersonaUpdate,
    RoutingPathRead,
    SecuritySettingsUpdate,
)
from app.services import persona_service, traffic_service

router = APIRouter(prefix="/anonymous", tags=["anonymous"])


def _require(value, label: str):
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{label} are required",
        )
    return value


@router.post("/personas", response_model=PersonaRead, status_code=201)
async def create_persona(
    body: PersonaCreate | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    body = body or PersonaCreate()
    return await persona_service.create_persona(
        db,
        user_id=current_user.id,
        display_name=body.display_name,
        avatar_url=body.avatar_url,
    )


@router.get("/personas", response_model=list[PersonaRead])
async def list_personas(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await persona_service.list_personas(db, current_user.id)


@router.get("/personas/{persona_id}", response_model=PersonaPublic)
async def get_persona(
    persona_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Public lookup; never reveals the owner or the stealth address."""
    return await persona_service.get_public_persona(db, persona_id)


@router.patch("/personas/{persona_id}", response_model=PersonaRead)
async def update_persona(
    persona_id: str,
    body: PersonaUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    return await persona_service.update_persona(
        db, persona, display_name=body.display_name, avatar_url=body.avatar_url
    )


@router.delete("/personas/{persona_id}")
async def delete_persona(
    persona_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    await persona_service.delete_persona(db, persona)
    return {"success": True, "message": "Persona deleted successfully"}


@router.post("/personas/{persona_id}/refresh", response_model=PersonaRead)
async def refresh_identity(
    persona_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    return await persona_service.refresh_identity(db, persona)


@router.get("/{persona_id}/routing", response_model=RoutingPathRead)
async def routing_path(
    persona_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    current_session: Session = Depends(get_current_session),
):
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    descriptor = traffic_service.generate_routing_path(persona)
    if descriptor is None:
        raise FeatureDisabledError(
            "multi_path_routing",
            "Multi-path routing is disabled for this persona",
        )

    current_session.is_anonymous_mode = True
    await db.flush()
    return RoutingPathRead(
        routing_path=descriptor.as_list(),
        stealth_address=persona.stealth_address,
    )


@router.get("/{persona_id}/delay", response_model=DelayRead)
async def delay_parameters(
    persona_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    delay = traffic_service.get_delay_parameters(persona)
    if delay is None:
        raise FeatureDisabledError("timing_noise", "Timing noise is disabled for this persona")
    return DelayRead(min_delay=delay.min, max_delay=delay.max)


@router.get("/{persona_id}/headers", response_model=HeadersRead)
async def randomized_headers(
    persona_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    protection = persona.fingerprint_protection or {}
    if not protection.get("randomize_headers"):
        raise FeatureDisabledError(
            "randomize_headers",
            "Header randomization is disabled for this persona",
        )
    mimic = bool(protection.get("mimic_common_browsers", True))
    return HeadersRead(headers=traffic_service.generate_headers(mimic))


@router.put("/{persona_id}/security")
async def update_security(
    persona_id: str,
    body: SecuritySettingsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    patch = _require(body.security_settings, "Security settings")
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    updated = await persona_service.update_security_settings(db, persona, patch)
    return {"success": True, "data": updated, "message": "Security settings updated successfully"}


@router.put("/{persona_id}/metadata")
async def update_metadata(
    persona_id: str,
    body: MetadataSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    patch = _require(body.metadata_settings, "Metadata settings")
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    updated = await persona_service.update_metadata_settings(db, persona, patch)
    return {"success": True, "data": updated, "message": "Metadata settings updated successfully"}


@router.put("/{persona_id}/mixing")
async def update_mixing(
    persona_id: str,
    body: MixingParametersUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    patch = _require(body.mixing_parameters, "Mixing parameters")
    persona = await persona_service.get_owned_persona(db, current_user.id, persona_id)
    updated = await persona_service.update_mixing_parameters(db, persona, patch)
    return {"success": True, "data": updated, "message": "Mixing parameters updated successfully"}
