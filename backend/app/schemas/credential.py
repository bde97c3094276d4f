"""Credential request/response schemas."""
import uuid
from typing import Literal, Optional
from datetime import datetime
from pydantic import Field
from app.schemas.base import CamelModel, CamelORMModel


class CredentialCreate(CamelModel):
    code_type: Literal["event_checkin", "user_profile"] = "event_checkin"
    event_id: Optional[uuid.UUID] = None
    owner_id: Optional[uuid.UUID] = None
    max_scans: Optional[int] = Field(None, ge=1)
    requires_location_validation: bool = False
    proximity_tolerance_meters: Optional[int] = Field(None, ge=0)
    expires_at: Optional[datetime] = None


class CredentialResponse(CamelORMModel):
    id: uuid.UUID
    token: str
    code_type: str
    is_active: bool
    event_id: Optional[uuid.UUID] = None
    owner_id: Optional[uuid.UUID] = None
    created_by: uuid.UUID
    max_scans: Optional[int] = None
    scan_count: int
    requires_location_validation: bool
    proximity_tolerance_meters: Optional[int] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
