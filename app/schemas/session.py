import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from app.models.session import AnomalyReason


class SessionCreate(BaseModel):
    is_anonymous_mode: bool = False


class SessionCreated(BaseModel):
    session_id: uuid.UUID
    token: str
    expires_at: datetime
    risk_score: int
    status: str


class SessionRead(BaseModel):
    id: uuid.UUID
    ip_address: str | None = None
    device: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None
    status: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    is_mobile: bool
    is_anonymous_mode: bool
    risk_score: int = Field(..., ge=0, le=100)
    anomaly_detected: bool
    anomaly_reasons: list[str]

    model_config = {"from_attributes": True}


class SuspiciousReport(BaseModel):
    reason: AnomalyReason | None = None
