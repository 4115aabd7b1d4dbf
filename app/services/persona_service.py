"""Persona service: create personas, verify ownership, apply partial settings updates.

Ownership is always checked before a persona is read or mutated. A caller who
does not own the persona id (including ids that do not exist) gets 403; a
persona that disappears after the ownership check gets 404.
"""

import hashlib
import hmac
import logging
import secrets
import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.patch import LenientPatch, merge_patch
from app.models.base import utcnow
from app.models.persona import (
    AnonymousPersona,
    default_fingerprint_protection,
    default_metadata_settings,
    default_mixing_parameters,
    default_security_settings,
)
from app.schemas.persona import (
    MetadataSettingsPatch,
    MixingParametersPatch,
    SecuritySettingsPatch,
)
from app.services import audit_service

logger = logging.getLogger("app.personas")

_ADJECTIVES = (
    "Brave", "Curious", "Dynamic", "Energetic", "Fearless", "Graceful", "Honest",
    "Insightful", "Joyful", "Kind", "Luminous", "Mindful", "Noble", "Optimistic",
    "Peaceful", "Quiet", "Resilient", "Sincere", "Thoughtful", "Unique", "Vibrant",
    "Wise", "Zealous",
)
_NOUNS = (
    "Aurora", "Breeze", "Comet", "Dove", "Eagle", "Falcon", "Galaxy", "Horizon",
    "Iris", "Journey", "Kite", "Lotus", "Meadow", "Nova", "Ocean", "Phoenix",
    "Quasar", "River", "Star", "Tiger", "Universe", "Voice", "Wave", "Zenith",
)


def generate_display_name() -> str:
    rng = secrets.SystemRandom()
    return f"{rng.choice(_ADJECTIVES)}{rng.choice(_NOUNS)}{rng.randrange(1000)}"


def _stealth_address(public_key_hash: str, salt: str) -> str:
    message = f"{public_key_hash}:{utcnow().timestamp()}".encode()
    return hmac.new(salt.encode(), message, hashlib.sha256).hexdigest()


async def create_persona(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    display_name: str | None = None,
    avatar_url: str = "",
) -> AnonymousPersona:
    """Create a persona with fresh identifiers. Raises 400 past the per-user limit."""
    result = await db.execute(
        select(func.count()).select_from(AnonymousPersona).where(AnonymousPersona.user_id == user_id)
    )
    existing = result.scalar_one()
    if existing >= settings.max_personas_per_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum of {settings.max_personas_per_user} anonymous personas allowed per user",
        )

    public_key_hash = hashlib.sha256(secrets.token_bytes(32)).hexdigest()
    salt = secrets.token_hex(16)
    persona = AnonymousPersona(
        persona_id=secrets.token_hex(32),
        user_id=user_id,
        display_name=display_name or generate_display_name(),
        avatar_url=avatar_url,
        public_key_hash=public_key_hash,
        stealth_address=_stealth_address(public_key_hash, salt),
        salt=salt,
        mixing_parameters=default_mixing_parameters(),
        fingerprint_protection=default_fingerprint_protection(),
        metadata_settings=default_metadata_settings(),
        security_settings=default_security_settings(),
        is_active=True,
    )
    db.add(persona)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user_id,
        event_type="persona.created",
        entity_type="AnonymousPersona",
        entity_id=persona.persona_id,
    )
    return persona


async def list_personas(db: AsyncSession, user_id: uuid.UUID) -> list[AnonymousPersona]:
    result = await db.execute(
        select(AnonymousPersona)
        .where(AnonymousPersona.user_id == user_id)
        .order_by(AnonymousPersona.created_at.asc())
    )
    return list(result.scalars().all())


async def ownership_check(db: AsyncSession, user_id: uuid.UUID, persona_id: str) -> bool:
    """True iff the user owns a persona with this id."""
    result = await db.execute(
        select(AnonymousPersona.id).where(
            AnonymousPersona.persona_id == persona_id,
            AnonymousPersona.user_id == user_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def get_owned_persona(
    db: AsyncSession, user_id: uuid.UUID, persona_id: str
) -> AnonymousPersona:
    """Load a persona the user owns. 403 if not owned, 404 if gone after the check."""
    if not persona_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Persona ID is required",
        )

    if not await ownership_check(db, user_id, persona_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not own this persona",
        )

    # Filtered on the owner too, so the row served is always the one checked.
    result = await db.execute(
        select(AnonymousPersona).where(
            AnonymousPersona.persona_id == persona_id,
            AnonymousPersona.user_id == user_id,
        )
    )
    persona = result.scalar_one_or_none()
    if persona is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Persona not found",
        )
    return persona


async def refresh_identity(db: AsyncSession, persona: AnonymousPersona) -> AnonymousPersona:
    """Rotate the persona's salt and stealth address."""
    persona.salt = secrets.token_hex(16)
    persona.stealth_address = _stealth_address(persona.public_key_hash, persona.salt)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=persona.user_id,
        event_type="persona.identity_refreshed",
        entity_type="AnonymousPersona",
        entity_id=persona.persona_id,
    )
    return persona


async def _apply(
    db: AsyncSession,
    persona: AnonymousPersona,
    attribute: str,
    patch: LenientPatch,
) -> dict:
    merged = merge_patch(getattr(persona, attribute), patch)
    # A new dict object marks the JSON column dirty.
    setattr(persona, attribute, merged)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=persona.user_id,
        event_type=f"persona.{attribute}_updated",
        entity_type="AnonymousPersona",
        entity_id=persona.persona_id,
        detail={"fields": sorted(patch.model_fields_set)},
    )
    logger.info(
        "Persona %s updated persona_id=%s fields=%s",
        attribute,
        persona.persona_id[:12],
        ",".join(sorted(patch.model_fields_set)) or "-",
    )
    return merged


async def update_mixing_parameters(
    db: AsyncSession, persona: AnonymousPersona, patch: MixingParametersPatch
) -> dict:
    return await _apply(db, persona, "mixing_parameters", patch)


async def update_security_settings(
    db: AsyncSession, persona: AnonymousPersona, patch: SecuritySettingsPatch
) -> dict:
    return await _apply(db, persona, "security_settings", patch)


async def update_metadata_settings(
    db: AsyncSession, persona: AnonymousPersona, patch: MetadataSettingsPatch
) -> dict:
    return await _apply(db, persona, "metadata_settings", patch)


async def get_public_persona(db: AsyncSession, persona_id: str) -> AnonymousPersona:
    """Look a persona up by id for anyone. Raises 404 when it does not exist."""
    result = await db.execute(
        select(AnonymousPersona).where(AnonymousPersona.persona_id == persona_id)
    )
    persona = result.scalar_one_or_none()
    if persona is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Persona not found",
        )
    return persona


async def update_persona(
    db: AsyncSession,
    persona: AnonymousPersona,
    *,
    display_name: str | None = None,
    avatar_url: str | None = None,
) -> AnonymousPersona:
    """Change the display name or avatar. Empty values leave the field as it is."""
    changed = []
    if display_name:
        persona.display_name = display_name
        changed.append("display_name")
    if avatar_url:
        persona.avatar_url = avatar_url
        changed.append("avatar_url")
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=persona.user_id,
        event_type="persona.updated",
        entity_type="AnonymousPersona",
        entity_id=persona.persona_id,
        detail={"fields": changed},
    )
    return persona


async def delete_persona(db: AsyncSession, persona: AnonymousPersona) -> None:
    user_id, persona_id = persona.user_id, persona.persona_id
    await db.delete(persona)
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user_id,
        event_type="persona.deleted",
        entity_type="AnonymousPersona",
        entity_id=persona_id,
    )
    logger.info("Persona deleted persona_id=%s", persona_id[:12])
