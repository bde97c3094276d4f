"""Per-event attendance workflow, certificate eligibility and certificate requests."""
from uuid import UUID
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.models.event import Event
from app.schemas.job import JobResponse
from app.schemas.workflow import CertificateRequest, EligibilityResponse, WorkflowResponse
from app.services.eligibility import (
    IneligibleForCertificate,
    evaluate_eligibility,
    request_certificate,
)
from app.services.workflow import get_workflow

router = APIRouter(prefix="/api/events", tags=["events"])


async def _resolve_subject(
    db: AsyncSession, event_id: UUID, user: CurrentUser, user_id: Optional[UUID]
) -> UUID:
    """Whose record to read: the caller's own, or anyone's for the organizer/admin."""
    event = await db.get(Event, event_id)
    if not event:
        raise HTTPException(404, "Event not found")
    if user_id is None or user_id == user.id:
        return user.id
    if user.is_admin or (user.is_organizer and event.organizer_id == user.id):
        return user_id
    raise HTTPException(403, "Not allowed to view another user's records")


@router.get("/{event_id}/workflow", response_model=WorkflowResponse)
async def get_event_workflow(
    event_id: UUID,
    user_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    subject = await _resolve_subject(db, event_id, user, user_id)
    workflow = await get_workflow(db, subject, event_id)
    if not workflow:
        raise HTTPException(404, "No attendance workflow for this user and event")
    return workflow


@router.get("/{event_id}/eligibility", response_model=EligibilityResponse)
async def get_eligibility(
    event_id: UUID,
    user_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    subject = await _resolve_subject(db, event_id, user, user_id)
    verdict = await evaluate_eligibility(db, subject, event_id)
    return verdict.to_dict()


@router.post("/{event_id}/certificate-requests", response_model=JobResponse, status_code=202)
async def create_certificate_request(
    event_id: UUID,
    body: CertificateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Queue certificate generation for the caller, if eligible."""
    try:
        return await request_certificate(
            db, user, event_id, body.participant_name, priority=body.priority
        )
    except LookupError:
        raise HTTPException(404, "Event not found")
    except IneligibleForCertificate as e:
        raise HTTPException(409, {"message": str(e), **e.verdict.to_dict()})
