import uuid

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from app.models.base import Base, TimestampMixin, generate_uuid

MIN_PROXY_HOPS = 1
MAX_PROXY_HOPS = 5
DEFAULT_MIN_DELAY_MS = 50
DEFAULT_MAX_DELAY_MS = 500


def default_mixing_parameters() -> dict:
    return {
        "timing_noise": True,
        "random_delay": {"min": DEFAULT_MIN_DELAY_MS, "max": DEFAULT_MAX_DELAY_MS},
        "multi_path_routing": True,
        "proxy_hops": 3,
    }


def default_fingerprint_protection() -> dict:
    return {"randomize_headers": True, "mimic_common_browsers": True}


def default_metadata_settings() -> dict:
    return {
        "strip_exif_data": True,
        "obfuscate_timestamps": True,
        "route_through_proxy": True,
        "randomize_file_metadata": True,
        "prevent_browser_fingerprinting": True,
        "add_metadata_noise": True,
    }


def default_security_settings() -> dict:
    return {
        "auto_switch_timeout": {"enabled": True, "timeout_minutes": 30},
        "purge_session_on_logout": True,
        "notify_suspicious_activity": True,
    }


def clamp_proxy_hops(value: int) -> int:
    return min(max(MIN_PROXY_HOPS, value), MAX_PROXY_HOPS)


class AnonymousPersona(TimestampMixin, Base):
    """A user's anonymized identity and its traffic obfuscation configuration.

    The link to the owning user is never serialized to clients.
    """

    __tablename__ = "anonymous_personas"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    persona_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar_url: Mapped[str] = mapped_column(String(512), default="", nullable=False)

    public_key_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    stealth_address: Mapped[str] = mapped_column(String(64), nullable=False)
    salt: Mapped[str | None] = mapped_column(String(32), nullable=True)

    mixing_parameters: Mapped[dict] = mapped_column(
        JSON, default=default_mixing_parameters, nullable=False
    )
    fingerprint_protection: Mapped[dict] = mapped_column(
        JSON, default=default_fingerprint_protection, nullable=False
    )
    metadata_settings: Mapped[dict] = mapped_column(
        JSON, default=default_metadata_settings, nullable=False
    )
    security_settings: Mapped[dict] = mapped_column(
        JSON, default=default_security_settings, nullable=False
    )

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    # Hours; 0 means permanent.
    default_content_lifespan: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
