import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.services import audit_service


async def _create_user(db_session: AsyncSession) -> User:
    user = User(email="audit-svc@example.com", password_hash="fakehash", known_devices=[])
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.mark.asyncio
async def test_log_event(db_session: AsyncSession):
    """log_event creates an audit event."""
    user = await _create_user(db_session)
    entity_id = uuid.uuid4()

    event = await audit_service.log_event(
        db_session,
        user_id=user.id,
        event_type="session.created",
        entity_type="Session",
        entity_id=entity_id,
        detail={"risk_score": 40},
        ip_address="10.0.0.1",
    )
    await db_session.commit()

    assert event.id is not None
    assert event.user_id == user.id
    assert event.entity_id == str(entity_id)
    assert event.detail == {"risk_score": 40}


@pytest.mark.asyncio
async def test_persona_ids_are_stored_verbatim(db_session: AsyncSession):
    """Persona ids are 64-char hex strings, not UUIDs."""
    user = await _create_user(db_session)
    persona_id = "ab" * 32

    await audit_service.log_event(
        db_session,
        user_id=user.id,
        event_type="persona.created",
        entity_type="AnonymousPersona",
        entity_id=persona_id,
    )
    await db_session.commit()

    events = await audit_service.get_events_for_entity(db_session, "AnonymousPersona", persona_id)
    assert len(events) == 1
    assert events[0].entity_id == persona_id


@pytest.mark.asyncio
async def test_get_events_for_entity_filters(db_session: AsyncSession):
    user = await _create_user(db_session)
    target = uuid.uuid4()

    for entity_id in (target, uuid.uuid4(), target):
        await audit_service.log_event(
            db_session,
            user_id=user.id,
            event_type="session.revoked",
            entity_type="Session",
            entity_id=entity_id,
        )
    await db_session.commit()

    events = await audit_service.get_events_for_entity(db_session, "Session", target)
    assert len(events) == 2
    assert all(e.entity_id == str(target) for e in events)
    assert await audit_service.get_events_for_entity(db_session, "AnonymousPersona", target) == []
