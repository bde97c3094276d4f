"""Credentials API - issue scannable check-in codes."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.models.credential import CODE_EVENT_CHECKIN
from app.models.event import Event
from app.schemas.credential import CredentialCreate, CredentialResponse
from app.services.attendance import issue_credential

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


@router.post("", response_model=CredentialResponse, status_code=201)
async def create_credential(
    body: CredentialCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Issue a credential.

    Event check-in codes are issued by the event's organizer (or an admin).
    Anyone may issue a profile code for themselves.
    """
    if body.code_type == CODE_EVENT_CHECKIN:
        if body.event_id is None:
            raise HTTPException(422, "eventId is required for event check-in credentials")
        event = await db.get(Event, body.event_id)
        if not event:
            raise HTTPException(404, "Event not found")
        if not user.is_admin and event.organizer_id != user.id:
            raise HTTPException(403, "Only the event organizer can issue check-in codes")
    elif body.owner_id is not None and body.owner_id != user.id and not user.is_organizer:
        raise HTTPException(403, "Cannot issue a profile code for another user")

    return await issue_credential(
        db,
        created_by=user.id,
        code_type=body.code_type,
        event_id=body.event_id,
        owner_id=body.owner_id if body.code_type == CODE_EVENT_CHECKIN else (body.owner_id or user.id),
        max_scans=body.max_scans,
        requires_location_validation=body.requires_location_validation,
        proximity_tolerance_meters=body.proximity_tolerance_meters,
        expires_at=body.expires_at,
    )
