import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.models.base import Base, TimestampMixin, generate_uuid, utcnow


class UserStatus(str, enum.Enum):
    active = "active"
    suspended = "suspended"
    deleted = "deleted"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, native_enum=False),
        default=UserStatus.active,
        nullable=False,
    )
    known_devices: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def register_device(self, device_id: str, device_name: str | None) -> None:
        """Record a device the user has logged in from, refreshing last_used if seen."""
        now = utcnow().isoformat()
        devices = [dict(d) for d in (self.known_devices or [])]
        for device in devices:
            if device["device_id"] == device_id:
                device["last_used"] = now
                break
        else:
            devices.append({
                "device_id": device_id,
                "device_name": device_name or "Unknown Device",
                "last_used": now,
                "trusted": False,
            })
        # Reassign so the JSON column is marked dirty.
        self.known_devices = devices
