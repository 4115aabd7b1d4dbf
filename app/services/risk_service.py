"""Session risk engine: score a new login session against the user's recent history.

Scoring is additive and capped at 100:

  +30  unusual_location       country not seen in recent sessions
  +20  unusual_device         device not seen in recent sessions
  +40  rapid_location_change  country differs from the most recent session,
                              which started less than 12 hours earlier
  +10  unusual_time           server-local hour between 1 and 5 inclusive

A user with no history can only ever score the time-of-day points.
"""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.base import as_utc, utcnow
from app.models.session import AnomalyReason, Session, SessionStatus

MAX_RISK_SCORE = 100

UNUSUAL_LOCATION_POINTS = 30
UNUSUAL_DEVICE_POINTS = 20
RAPID_LOCATION_CHANGE_POINTS = 40
UNUSUAL_TIME_POINTS = 10

UNUSUAL_HOURS = range(1, 6)


def server_local_hour(now: datetime) -> int:
    """Hour of day in the server's local timezone."""
    return now.astimezone().hour


async def get_recent_sessions(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> list[Session]:
    """Most recent active sessions within the trailing window, newest first."""
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.risk_history_window_days)
    stmt = (
        select(Session)
        .where(
            Session.user_id == user_id,
            Session.status == SessionStatus.active,
            Session.created_at >= cutoff,
        )
        .order_by(Session.created_at.desc())
        .limit(settings.risk_history_limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def score_session(
    candidate: Session,
    history: list[Session],
    *,
    local_hour: int,
) -> tuple[int, list[AnomalyReason]]:
    """Score a candidate against history (newest first). Pure; does not mutate."""
    score = 0
    reasons: list[AnomalyReason] = []

    if history:
        seen_countries = {s.country for s in history if s.country}
        if candidate.country and seen_countries and candidate.country not in seen_countries:
            score += UNUSUAL_LOCATION_POINTS
            reasons.append(AnomalyReason.unusual_location)

        seen_devices = {s.device for s in history if s.device}
        if candidate.device and seen_devices and candidate.device not in seen_devices:
            score += UNUSUAL_DEVICE_POINTS
            reasons.append(AnomalyReason.unusual_device)

        most_recent = history[0]
        if (
            candidate.country
            and most_recent.country
            and candidate.country != most_recent.country
        ):
            elapsed = as_utc(candidate.created_at) - as_utc(most_recent.created_at)
            if elapsed < timedelta(hours=settings.rapid_location_change_hours):
                score += RAPID_LOCATION_CHANGE_POINTS
                reasons.append(AnomalyReason.rapid_location_change)

    if local_hour in UNUSUAL_HOURS:
        score += UNUSUAL_TIME_POINTS
        reasons.append(AnomalyReason.unusual_time)

    return min(score, MAX_RISK_SCORE), reasons


async def assess_risk(
    db: AsyncSession,
    user_id: uuid.UUID,
    candidate: Session,
    *,
    now: datetime | None = None,
) -> tuple[int, list[AnomalyReason]]:
    """Score a not-yet-persisted session and record fired reasons on it.

    Sets candidate.risk_score, anomaly_reasons and anomaly_detected. Status is
    left to the caller. Errors from the history query propagate.
    """
    now = now or utcnow()
    if candidate.created_at is None:
        candidate.created_at = now

    history = await get_recent_sessions(db, user_id, now=now)
    score, reasons = score_session(candidate, history, local_hour=server_local_hour(now))

    candidate.risk_score = score
    for reason in reasons:
        candidate.add_anomaly_reason(reason)
    return score, reasons


def is_suspicious(score: int) -> bool:
    return score > settings.suspicious_risk_threshold
