"""Attendance API - QR check-in."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.schemas.attendance import CheckInResponse, Location, ScanRequest
from app.services.attendance import (
    CheckInRejected,
    NOT_FOUND,
    process_check_in,
)
from app.services.proximity import Coordinates

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


def _coords(location: Optional[Location]) -> Optional[Coordinates]:
    return Coordinates(location.lat, location.lng) if location else None


@router.post("/scan", response_model=CheckInResponse)
async def scan(
    body: ScanRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Check a person in by scanning a credential.

    Rejections carry `{"reason", "message", ...}` in the error detail.
    """
    try:
        result = await process_check_in(
            db,
            body.token,
            scanner_id=user.id,
            reference=_coords(body.reference_location),
            candidate=_coords(body.candidate_location),
            tolerance_meters=body.tolerance_meters,
            device_info=body.device_info,
            ip_address=request.client.host if request.client else None,
        )
    except CheckInRejected as e:
        raise HTTPException(404 if e.reason == NOT_FOUND else 409, e.to_dict())
    return CheckInResponse.model_validate(result, from_attributes=True)
