"""Audit service: append-only security event log.

All writes are append-only. No update or delete methods are exposed.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLogEvent


async def log_event(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    event_type: str,
    entity_type: str,
    entity_id: uuid.UUID | str,
    detail: dict | None = None,
    ip_address: str | None = None,
) -> AuditLogEvent:
    """Create an append-only audit log event."""
    event = AuditLogEvent(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        detail=detail,
        ip_address=ip_address,
    )
    db.add(event)
    await db.flush()
    return event


async def get_events_for_entity(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID | str,
) -> list[AuditLogEvent]:
    """Return every event recorded against one entity, oldest first."""
    stmt = (
        select(AuditLogEvent)
        .where(
            AuditLogEvent.entity_type == entity_type,
            AuditLogEvent.entity_id == str(entity_id),
        )
        .order_by(AuditLogEvent.timestamp.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
