import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.session import AnomalyReason, Session, SessionStatus
from app.models.user import User
from app.services import risk_service
from app.services.risk_service import assess_risk, get_recent_sessions, score_session

NOW = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
# History rows must still be unexpired when flushed.
NEVER_EXPIRES = datetime(2100, 1, 1, tzinfo=timezone.utc)


def _session(country="US", device="desktop", created_at=NOW, **kwargs) -> Session:
    return Session(
        user_id=kwargs.pop("user_id", uuid.uuid4()),
        token=uuid.uuid4().hex,
        country=country,
        device=device,
        created_at=created_at,
        expires_at=NEVER_EXPIRES,
        status=kwargs.pop("status", SessionStatus.active),
        anomaly_reasons=[],
        **kwargs,
    )


async def _user(db: AsyncSession) -> User:
    user = User(email=f"{uuid.uuid4().hex}@example.com", password_hash="x", known_devices=[])
    db.add(user)
    await db.flush()
    return user


# --- pure scoring ---


def test_no_history_daytime_scores_zero():
    score, reasons = score_session(_session(country="FR", device="mobile"), [], local_hour=14)
    assert score == 0
    assert reasons == []


@pytest.mark.parametrize("hour", [1, 2, 3, 4, 5])
def test_no_history_night_scores_ten(hour):
    score, reasons = score_session(_session(), [], local_hour=hour)
    assert score == 10
    assert reasons == [AnomalyReason.unusual_time]


@pytest.mark.parametrize("hour", [0, 6, 23])
def test_hours_outside_window_do_not_fire(hour):
    score, _ = score_session(_session(), [], local_hour=hour)
    assert score == 0


def test_unusual_location_counted_once():
    """Several history sessions from other countries still add 30 exactly once."""
    history = [
        _session(country="US", created_at=NOW - timedelta(days=d)) for d in range(1, 6)
    ]
    candidate = _session(country="DE", device="desktop")
    score, reasons = score_session(candidate, history, local_hour=14)
    assert score == 30
    assert reasons == [AnomalyReason.unusual_location]


def test_known_country_does_not_fire():
    history = [
        _session(country="US", created_at=NOW - timedelta(days=2)),
        _session(country="FR", created_at=NOW - timedelta(days=3)),
    ]
    score, reasons = score_session(_session(country="FR"), history, local_hour=14)
    # FR is known, but the most recent session was US two days ago: no rapid change.
    assert score == 0
    assert reasons == []


def test_candidate_without_country_skips_location_checks():
    history = [_session(country="US", created_at=NOW - timedelta(hours=1))]
    score, _ = score_session(_session(country=None), history, local_hour=14)
    assert score == 0


def test_history_without_countries_skips_location_check():
    history = [_session(country=None, created_at=NOW - timedelta(days=1))]
    score, _ = score_session(_session(country="FR"), history, local_hour=14)
    assert score == 0


def test_unusual_device():
    history = [_session(device="desktop", created_at=NOW - timedelta(days=1))]
    score, reasons = score_session(_session(device="mobile"), history, local_hour=14)
    assert score == 20
    assert reasons == [AnomalyReason.unusual_device]


def test_empty_candidate_device_skips_device_check():
    history = [_session(device="desktop", created_at=NOW - timedelta(days=1))]
    score, _ = score_session(_session(device=None), history, local_hour=14)
    assert score == 0


def test_rapid_location_change_within_window():
    history = [
        _session(country="FR", created_at=NOW - timedelta(hours=11, minutes=59)),
        _session(country="US", created_at=NOW - timedelta(days=2)),
    ]
    score, reasons = score_session(_session(country="US"), history, local_hour=14)
    assert reasons == [AnomalyReason.rapid_location_change]
    assert score == 40


def test_rapid_location_change_exactly_twelve_hours_does_not_fire():
    history = [
        _session(country="FR", created_at=NOW - timedelta(hours=12)),
        _session(country="US", created_at=NOW - timedelta(days=2)),
    ]
    score, reasons = score_session(_session(country="US"), history, local_hour=14)
    assert score == 0
    assert reasons == []


def test_rapid_location_change_only_compares_most_recent():
    """An older session in another country within 12h does not count."""
    history = [
        _session(country="US", created_at=NOW - timedelta(hours=1)),
        _session(country="FR", created_at=NOW - timedelta(hours=2)),
    ]
    score, reasons = score_session(_session(country="US"), history, local_hour=14)
    assert score == 0
    assert AnomalyReason.rapid_location_change not in reasons


def test_all_checks_clamp_to_100():
    history = [
        _session(country="US", device="desktop", created_at=NOW - timedelta(hours=h))
        for h in range(1, 6)
    ]
    candidate = _session(country="FR", device="mobile")
    score, reasons = score_session(candidate, history, local_hour=3)
    assert score == 100
    assert set(reasons) == {
        AnomalyReason.unusual_location,
        AnomalyReason.unusual_device,
        AnomalyReason.rapid_location_change,
        AnomalyReason.unusual_time,
    }


def test_score_session_does_not_mutate_candidate():
    history = [_session(device="desktop", created_at=NOW - timedelta(days=1))]
    candidate = _session(device="mobile")
    score_session(candidate, history, local_hour=3)
    assert candidate.anomaly_reasons == []


# --- history query and assess_risk ---


@pytest.mark.asyncio
async def test_recent_sessions_filters_and_orders(db_session: AsyncSession):
    user = await _user(db_session)
    other = await _user(db_session)
    sessions = [
        _session(user_id=user.id, created_at=NOW - timedelta(days=d), country=f"C{d}")
        for d in range(1, 8)
    ]
    sessions.append(_session(user_id=user.id, created_at=NOW - timedelta(days=40), country="OLD"))
    sessions.append(
        _session(
            user_id=user.id,
            created_at=NOW - timedelta(hours=1),
            country="REV",
            status=SessionStatus.revoked,
        )
    )
    sessions.append(_session(user_id=other.id, created_at=NOW, country="OTHER"))
    db_session.add_all(sessions)
    await db_session.flush()

    recent = await get_recent_sessions(db_session, user.id, now=NOW)
    assert [s.country for s in recent] == ["C1", "C2", "C3", "C4", "C5"]


@pytest.mark.asyncio
async def test_assess_risk_records_reasons_on_candidate(db_session: AsyncSession, monkeypatch):
    monkeypatch.setattr(risk_service, "server_local_hour", lambda now: 3)
    user = await _user(db_session)
    db_session.add_all(
        [
            _session(user_id=user.id, country="US", device="desktop",
                     created_at=NOW - timedelta(hours=h))
            for h in range(1, 6)
        ]
    )
    await db_session.flush()

    candidate = _session(user_id=user.id, country="FR", device="mobile")
    score, reasons = await assess_risk(db_session, user.id, candidate, now=NOW)

    assert score == 100
    assert candidate.risk_score == 100
    assert candidate.anomaly_detected is True
    assert candidate.anomaly_reasons == [
        "unusual_location",
        "unusual_device",
        "rapid_location_change",
        "unusual_time",
    ]
    assert risk_service.is_suspicious(score)


@pytest.mark.asyncio
async def test_assess_risk_first_session_is_low_risk(db_session: AsyncSession):
    user = await _user(db_session)
    candidate = _session(user_id=user.id, country="FR", device="mobile")
    score, reasons = await assess_risk(db_session, user.id, candidate, now=NOW)
    assert score == 0
    assert reasons == []
    assert candidate.anomaly_reasons == []


def test_suspicious_threshold_is_strict():
    assert risk_service.is_suspicious(70) is False
    assert risk_service.is_suspicious(71) is True


class _FailingDB:
    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("store unavailable"))


@pytest.mark.asyncio
async def test_assess_risk_propagates_history_failure():
    candidate = _session()
    with pytest.raises(OperationalError):
        await assess_risk(_FailingDB(), uuid.uuid4(), candidate, now=NOW)
    assert candidate.risk_score is None
