"""Check-in request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import Field
from app.schemas.base import CamelModel


class Location(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class ScanRequest(CamelModel):
    token: str = Field(min_length=1)
    # Where the organizer (or the fixed venue point) is
    reference_location: Optional[Location] = None
    # Where the device being checked in is
    candidate_location: Optional[Location] = None
    tolerance_meters: Optional[int] = Field(None, ge=0)
    device_info: Optional[dict] = None


class CheckInResponse(CamelModel):
    attendance_id: uuid.UUID
    workflow_id: uuid.UUID
    scan_id: uuid.UUID
    event_id: uuid.UUID
    user_id: uuid.UUID
    event_title: str
    checked_in_at: datetime
    check_in_date: str
    location_validated: bool
    distance_meters: Optional[int] = None
    window: dict = {}
    next_steps: dict = {}
