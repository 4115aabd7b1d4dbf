import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, event, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.models.base import Base, as_utc, generate_uuid, utcnow


class SessionStatus(str, enum.Enum):
    active = "active"
    expired = "expired"
    revoked = "revoked"
    suspicious = "suspicious"


# Statuses that may still authenticate, provided the session has not expired.
LIVE_STATUSES = (SessionStatus.active, SessionStatus.suspicious)


class AnomalyReason(str, enum.Enum):
    unusual_location = "unusual_location"
    unusual_device = "unusual_device"
    rapid_location_change = "rapid_location_change"
    unusual_activity_pattern = "unusual_activity_pattern"
    multiple_failed_attempts = "multiple_failed_attempts"
    unusual_time = "unusual_time"
    sensitive_data_access = "sensitive_data_access"


class Session(Base):
    """A login session: bearer token, client fingerprint and risk assessment."""

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device: Mapped[str | None] = mapped_column(String(255), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(255), nullable=True)
    os: Mapped[str | None] = mapped_column(String(255), nullable=True)

    country: Mapped[str | None] = mapped_column(String(8), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, native_enum=False),
        default=SessionStatus.active,
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_mobile: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_anonymous_mode: Mapped[bool] = mapped_column(default=False, nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    anomaly_detected: Mapped[bool] = mapped_column(default=False, nullable=False)
    anomaly_reasons: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) < (now or utcnow())

    def refresh_expiry(self, now: datetime | None = None) -> None:
        """Move a non-terminal session to expired once its expiry has passed."""
        if self.status in LIVE_STATUSES and self.is_expired(now):
            self.status = SessionStatus.expired

    def is_live(self, now: datetime | None = None) -> bool:
        return self.status in LIVE_STATUSES and not self.is_expired(now)

    def add_anomaly_reason(self, reason: AnomalyReason) -> None:
        reasons = list(self.anomaly_reasons or [])
        if reason.value not in reasons:
            reasons.append(reason.value)
        self.anomaly_reasons = reasons
        self.anomaly_detected = True

    def update_activity(self) -> None:
        self.last_activity = utcnow()

    def mark_suspicious(self, reason: AnomalyReason | None = None) -> None:
        """Flag the session. Expired and revoked sessions keep their terminal status."""
        self.refresh_expiry()
        if self.status == SessionStatus.active:
            self.status = SessionStatus.suspicious
        if reason is not None:
            self.add_anomaly_reason(reason)


@event.listens_for(Session, "before_insert")
@event.listens_for(Session, "before_update")
def _expire_on_save(mapper, connection, target: Session) -> None:
    if target.status is None:
        target.status = SessionStatus.active
    target.refresh_expiry()
