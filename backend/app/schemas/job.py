"""Job request/response schemas.

Each job type has a fixed payload schema. `JobCreate` is a tagged union on
`job_type`, so a submission with the wrong payload shape is rejected at the API
boundary instead of inside the worker.
"""
import uuid
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import Field
from app.schemas.base import CamelModel, CamelORMModel

CERTIFICATE_GENERATION = "certificate_generation"
BULK_NOTIFICATION = "bulk_notification"
SINGLE_NOTIFICATION = "single_notification"

NotificationType = Literal["success", "warning", "error", "info"]
NotificationPriority = Literal["low", "normal", "high", "urgent"]


class UnknownJobTypeError(ValueError):
    pass


# ── Payloads ─────────────────────────────────────────────────────

class TemplateOverride(CamelModel):
    """Inline template for certificates not tied to a stored event template."""
    title: str = "Certificate of Participation"
    cert_id_prefix: Optional[str] = None
    background_path: Optional[str] = None
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    text_color: str = "#1f2937"
    accent_color: str = "#1d4ed8"


class CertificateGenerationPayload(CamelModel):
    event_id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    participant_name: str = Field(min_length=1, max_length=255)
    event_title: str = Field(min_length=1, max_length=255)
    completion_date: date
    template: Optional[TemplateOverride] = None


class NotificationOptions(CamelModel):
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    priority: NotificationPriority = "normal"
    expires_at: Optional[datetime] = None


class BulkNotificationPayload(CamelModel):
    user_ids: list[uuid.UUID] = Field(min_length=1)
    title: str = Field(min_length=1, max_length=255)
    message: str
    type: NotificationType = "info"
    options: NotificationOptions = NotificationOptions()


class SingleNotificationPayload(CamelModel):
    user_id: uuid.UUID
    title: str = Field(min_length=1, max_length=255)
    message: str
    type: NotificationType = "info"
    options: NotificationOptions = NotificationOptions()


JobPayload = Union[CertificateGenerationPayload, BulkNotificationPayload, SingleNotificationPayload]

PAYLOAD_MODELS: dict[str, type[CamelModel]] = {
    CERTIFICATE_GENERATION: CertificateGenerationPayload,
    BULK_NOTIFICATION: BulkNotificationPayload,
    SINGLE_NOTIFICATION: SingleNotificationPayload,
}


def parse_job_payload(job_type: str, data: dict) -> JobPayload:
    """Validate a stored or submitted payload against its job type's schema."""
    model = PAYLOAD_MODELS.get(job_type)
    if model is None:
        raise UnknownJobTypeError(f"Unknown job type: {job_type}")
    return model.model_validate(data)


def dump_job_payload(payload: JobPayload) -> dict:
    """JSON-safe dict for the jobs.payload column."""
    return payload.model_dump(mode="json", exclude_none=True)


# ── Requests ─────────────────────────────────────────────────────

class _JobCreateBase(CamelModel):
    priority: Optional[int] = Field(None, ge=1, le=10)
    max_attempts: Optional[int] = Field(None, ge=1, le=20)


class CertificateGenerationJobCreate(_JobCreateBase):
    job_type: Literal["certificate_generation"]
    payload: CertificateGenerationPayload


class BulkNotificationJobCreate(_JobCreateBase):
    job_type: Literal["bulk_notification"]
    payload: BulkNotificationPayload


class SingleNotificationJobCreate(_JobCreateBase):
    job_type: Literal["single_notification"]
    payload: SingleNotificationPayload


JobCreate = Annotated[
    Union[CertificateGenerationJobCreate, BulkNotificationJobCreate, SingleNotificationJobCreate],
    Field(discriminator="job_type"),
]

# ── Responses ────────────────────────────────────────────────────

class JobResponse(CamelORMModel):
    id: uuid.UUID
    job_type: str
    status: str
    priority: int
    attempts: int
    max_attempts: int
    payload: dict
    result: Optional[dict] = None
    error_message: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    run_after: Optional[datetime] = None
