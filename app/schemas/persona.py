from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator

from app.core.patch import LenientPatch
from app.models.persona import clamp_proxy_hops


class PersonaRead(BaseModel):
    """Public persona fields. Never includes the owning user or the salt."""

    persona_id: str
    display_name: str
    avatar_url: str
    stealth_address: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class PersonaCreate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=100)
    avatar_url: str = Field(default="", max_length=512)


class PersonaPublic(BaseModel):
    """What anyone may see of a persona: no owner, no stealth address."""

    persona_id: str
    display_name: str
    avatar_url: str

    model_config = {"from_attributes": True}


class PersonaUpdate(BaseModel):
    display_name: str | None = Field(default=None, max_length=100)
    avatar_url: str | None = Field(default=None, max_length=512)


class RoutingHop(BaseModel):
    node_id: str
    encryption_key: str
    ttl: int


class RoutingPathRead(BaseModel):
    routing_path: list[RoutingHop]
    stealth_address: str


class DelayRead(BaseModel):
    min_delay: int
    max_delay: int


class HeadersRead(BaseModel):
    headers: dict[str, str]


# Partial updates


class RandomDelayPatch(LenientPatch):
    positive_fields: ClassVar[frozenset[str]] = frozenset({"min", "max"})

    min: int | None = None
    max: int | None = None


class MixingParametersPatch(LenientPatch):
    timing_noise: bool | None = None
    multi_path_routing: bool | None = None
    random_delay: RandomDelayPatch | None = None
    proxy_hops: int | None = None

    @field_validator("proxy_hops")
    @classmethod
    def _clamp_hops(cls, value: int | None) -> int | None:
        return clamp_proxy_hops(value) if value is not None else None


class AutoSwitchTimeoutPatch(LenientPatch):
    positive_fields: ClassVar[frozenset[str]] = frozenset({"timeout_minutes"})

    enabled: bool | None = None
    timeout_minutes: int | None = None


class SecuritySettingsPatch(LenientPatch):
    auto_switch_timeout: AutoSwitchTimeoutPatch | None = None
    purge_session_on_logout: bool | None = None
    notify_suspicious_activity: bool | None = None


class MetadataSettingsPatch(LenientPatch):
    strip_exif_data: bool | None = None
    obfuscate_timestamps: bool | None = None
    route_through_proxy: bool | None = None
    randomize_file_metadata: bool | None = None
    prevent_browser_fingerprinting: bool | None = None
    add_metadata_noise: bool | None = None


class MixingParametersUpdate(BaseModel):
    mixing_parameters: MixingParametersPatch | None = None


class SecuritySettingsUpdate(BaseModel):
    security_settings: SecuritySettingsPatch | None = None


class MetadataSettingsUpdate(BaseModel):
    metadata_settings: MetadataSettingsPatch | None = None
