"""Certificate eligibility: validated attendance AND survey response AND active template."""
import logging
import uuid
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import CurrentUser
from app.models.attendance import AttendanceRecord, STAGE_CERTIFICATE_ELIGIBLE
from app.models.certificate import CertificateTemplate
from app.models.event import Event
from app.models.job import Job
from app.models.survey import Survey, SurveyResponse
from app.schemas.job import CERTIFICATE_GENERATION
from app.services.job_queue import enqueue_job
from app.services.workflow import advance_workflow
from app.utils.clock import ensure_utc

logger = logging.getLogger(__name__)


class IneligibleForCertificate(Exception):
    def __init__(self, verdict: "EligibilityVerdict"):
        super().__init__("Not eligible for a certificate yet")
        self.verdict = verdict


@dataclass
class EligibilityVerdict:
    eligible: bool
    attendance_verified: bool
    survey_completed: bool
    template_available: bool
    template: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _template_descriptor(template: CertificateTemplate) -> dict:
    return {
        "template_id": str(template.id),
        "title": template.title,
        "cert_id_prefix": template.cert_id_prefix,
        "background_path": template.background_path,
        "requires_attendance": True,
        "requires_survey_completion": True,
        "minimum_survey_score": 0,
    }


async def evaluate_eligibility(
    db: AsyncSession, user_id: uuid.UUID, event_id: uuid.UUID
) -> EligibilityVerdict:
    """Pure read. The template descriptor is only returned when eligible."""
    attendance_verified = bool(await db.scalar(
        select(
            exists().where(
                AttendanceRecord.event_id == event_id,
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.is_validated.is_(True),
            )
        )
    ))
    survey_completed = bool(await db.scalar(
        select(
            exists()
            .where(SurveyResponse.survey_id == Survey.id)
            .where(Survey.event_id == event_id, SurveyResponse.user_id == user_id)
        )
    ))
    result = await db.execute(
        select(CertificateTemplate).where(
            CertificateTemplate.event_id == event_id,
            CertificateTemplate.is_active.is_(True),
        )
    )
    template = result.scalar_one_or_none()
    template_available = template is not None

    eligible = attendance_verified and survey_completed and template_available
    return EligibilityVerdict(
        eligible=eligible,
        attendance_verified=attendance_verified,
        survey_completed=survey_completed,
        template_available=template_available,
        template=_template_descriptor(template) if eligible else None,
    )


async def request_certificate(
    db: AsyncSession,
    requester: CurrentUser,
    event_id: uuid.UUID,
    participant_name: str,
    priority: Optional[int] = None,
) -> Job:
    """Gate on eligibility, mark the workflow eligible, and queue generation."""
    event = await db.get(Event, event_id)
    if event is None:
        raise LookupError(f"Event {event_id} not found")

    verdict = await evaluate_eligibility(db, requester.id, event_id)
    if not verdict.eligible:
        raise IneligibleForCertificate(verdict)

    await advance_workflow(db, requester.id, event_id, STAGE_CERTIFICATE_ELIGIBLE)
    # enqueue_job commits, which also persists the workflow advance
    payload = {
        "event_id": str(event_id),
        "user_id": str(requester.id),
        "participant_name": participant_name.strip(),
        "event_title": event.title,
        "completion_date": ensure_utc(event.end_at or event.start_at).date().isoformat(),
    }
    job = await enqueue_job(db, CERTIFICATE_GENERATION, payload, requester.id, priority=priority)
    logger.info(f"Certificate requested for user {requester.id} / event {event_id} (job {job.id})")
    return job
