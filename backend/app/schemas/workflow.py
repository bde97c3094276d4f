"""Attendance workflow and eligibility response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import Field
from app.schemas.base import CamelModel, CamelORMModel


class WorkflowResponse(CamelORMModel):
    id: uuid.UUID
    user_id: uuid.UUID
    event_id: uuid.UUID
    current_stage: str
    attendance_record_id: Optional[uuid.UUID] = None
    scan_id: Optional[uuid.UUID] = None
    survey_response_id: Optional[uuid.UUID] = None
    certificate_id: Optional[uuid.UUID] = None
    checked_in_at: Optional[datetime] = None
    survey_completed_at: Optional[datetime] = None
    certificate_eligible_at: Optional[datetime] = None
    certificate_generated_at: Optional[datetime] = None
    workflow_data: dict = {}


class EligibilityResponse(CamelORMModel):
    eligible: bool
    attendance_verified: bool
    survey_completed: bool
    template_available: bool
    template: Optional[dict] = None


class CertificateRequest(CamelModel):
    model_config = {"str_strip_whitespace": True}

    participant_name: str = Field(min_length=1, max_length=255)
    priority: Optional[int] = Field(None, ge=1, le=10)
