"""Attendance state machine: credential scan -> validated check-in.

Guards run in a fixed order against the current persisted state:

    1. credential resolves to an active, unexpired check-in credential
    2. now is inside [start - before, start + during] (inclusive)
    3. scan counter below its ceiling
    4. the person holds an active registration
    5. no validated check-in yet for (person, event, today's civil date)
    6. proximity, when the credential requires it

On success the attendance record, workflow upsert, scan audit row and scan
counter increment are committed as one transaction. Any rejection rolls back
and leaves the store untouched.
"""
import base64
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.attendance import AttendanceRecord, STAGE_CHECKED_IN
from app.models.credential import Credential, CredentialScan, CODE_EVENT_CHECKIN
from app.models.event import Event, Registration, REGISTRATION_ACTIVE
from app.services.proximity import (
    Coordinates,
    MissingCoordinatesError,
    ProximityVerdict,
    validate_proximity,
)
from app.services.workflow import record_check_in
from app.utils.clock import check_in_window, civil_date, compare_to_window, ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Rejection reason codes
NOT_FOUND = "not_found"
WINDOW_NOT_OPEN = "window_not_open"
WINDOW_CLOSED = "window_closed"
SCAN_LIMIT_REACHED = "scan_limit_reached"
NOT_REGISTERED = "not_registered"
ALREADY_CHECKED_IN_TODAY = "already_checked_in_today"
LOCATION_REQUIRED = "location_required"
OUT_OF_RANGE = "out_of_range"


class CheckInRejected(Exception):
    """A check-in guard failed. Nothing was written."""

    def __init__(self, reason: str, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"reason": self.reason, "message": self.message, **self.details}


@dataclass
class CheckInResult:
    attendance_id: uuid.UUID
    workflow_id: uuid.UUID
    scan_id: uuid.UUID
    event_id: uuid.UUID
    user_id: uuid.UUID
    event_title: str
    checked_in_at: datetime
    check_in_date: str
    location_validated: bool
    distance_meters: Optional[int]
    window: dict = field(default_factory=dict)
    next_steps: dict = field(default_factory=dict)


def generate_token() -> str:
    """32 random bytes, base64url without padding."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


async def issue_credential(
    db: AsyncSession,
    created_by: uuid.UUID,
    code_type: str = CODE_EVENT_CHECKIN,
    event_id: Optional[uuid.UUID] = None,
    owner_id: Optional[uuid.UUID] = None,
    max_scans: Optional[int] = None,
    requires_location_validation: bool = False,
    proximity_tolerance_meters: Optional[int] = None,
    expires_at: Optional[datetime] = None,
) -> Credential:
    """Create and commit a credential with a fresh unique token."""
    if code_type == CODE_EVENT_CHECKIN and event_id is None:
        raise ValueError("An event check-in credential needs an event_id")
    credential = Credential(
        token=generate_token(),
        code_type=code_type,
        created_by=created_by,
        owner_id=owner_id,
        event_id=event_id,
        max_scans=max_scans,
        requires_location_validation=requires_location_validation,
        proximity_tolerance_meters=proximity_tolerance_meters,
        expires_at=expires_at,
        is_active=True,
        scan_count=0,
    )
    db.add(credential)
    await db.commit()
    await db.refresh(credential)
    logger.info(f"Issued {code_type} credential {credential.id} (event={event_id}, owner={owner_id})")
    return credential


async def _load_credential(db: AsyncSession, token: str, now: datetime) -> Credential:
    if not token or not token.strip():
        raise CheckInRejected(NOT_FOUND, "QR code not found or inactive")
    result = await db.execute(
        select(Credential).where(Credential.token == token.strip()).with_for_update()
    )
    credential = result.scalar_one_or_none()
    if (
        credential is None
        or not credential.is_active
        or credential.code_type != CODE_EVENT_CHECKIN
        or credential.event_id is None
    ):
        raise CheckInRejected(NOT_FOUND, "QR code not found or inactive")
    if credential.expires_at is not None and ensure_utc(credential.expires_at) < now:
        raise CheckInRejected(NOT_FOUND, "QR code has expired")
    return credential


def _check_window(event: Event, now: datetime) -> dict:
    before = event.check_in_before_minutes
    during = event.check_in_during_minutes
    opens_at, closes_at = check_in_window(
        event.start_at,
        settings.CHECK_IN_BEFORE_MINUTES if before is None else before,
        settings.CHECK_IN_DURING_MINUTES if during is None else during,
    )
    window = {
        "opens_at": opens_at.isoformat(),
        "closes_at": closes_at.isoformat(),
        "event_starts_at": ensure_utc(event.start_at).isoformat(),
    }
    position = compare_to_window(now, opens_at, closes_at)
    if position < 0:
        raise CheckInRejected(
            WINDOW_NOT_OPEN,
            f"Check-in not yet available. Opens {opens_at.isoformat()}",
            {"check_in_window": window},
        )
    if position > 0:
        raise CheckInRejected(
            WINDOW_CLOSED,
            f"Check-in window has closed. Closed {closes_at.isoformat()}",
            {"check_in_window": window},
        )
    return window


async def _check_registration(db: AsyncSession, user_id: uuid.UUID, event_id: uuid.UUID) -> Registration:
    result = await db.execute(
        select(Registration).where(
            Registration.user_id == user_id,
            Registration.event_id == event_id,
            Registration.status == REGISTRATION_ACTIVE,
        )
    )
    registration = result.scalar_one_or_none()
    if registration is None:
        raise CheckInRejected(NOT_REGISTERED, "User is not registered for this event")
    return registration


async def _todays_record(
    db: AsyncSession, user_id: uuid.UUID, event_id: uuid.UUID, today
) -> Optional[AttendanceRecord]:
    result = await db.execute(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.user_id == user_id,
            AttendanceRecord.event_id == event_id,
            AttendanceRecord.check_in_date == today,
        )
        .with_for_update()
    )
    record = result.scalar_one_or_none()
    if record is not None and record.is_validated:
        raise CheckInRejected(
            ALREADY_CHECKED_IN_TODAY, "User has already checked in for this event today"
        )
    return record


def _check_proximity(
    credential: Credential,
    reference: Optional[Coordinates],
    candidate: Optional[Coordinates],
    tolerance_meters: Optional[int],
) -> Optional[ProximityVerdict]:
    if not credential.requires_location_validation:
        return None
    tolerance = tolerance_meters
    if tolerance is None:
        tolerance = credential.proximity_tolerance_meters
    if tolerance is None:
        tolerance = settings.PROXIMITY_TOLERANCE_METERS
    try:
        verdict = validate_proximity(reference, candidate, tolerance)
    except MissingCoordinatesError as e:
        raise CheckInRejected(LOCATION_REQUIRED, str(e), {"missing": e.side})
    if not verdict.valid:
        raise CheckInRejected(
            OUT_OF_RANGE,
            "User is too far from the event location",
            {
                "location_validation": {
                    "distance_meters": verdict.distance_meters,
                    "max_distance_meters": verdict.tolerance_meters,
                }
            },
        )
    return verdict


async def _increment_scan_count(db: AsyncSession, credential_id: uuid.UUID, now: datetime) -> None:
    """Atomic conditional increment; loses the race cleanly instead of overshooting."""
    result = await db.execute(
        update(Credential)
        .where(
            Credential.id == credential_id,
            or_(Credential.max_scans.is_(None), Credential.scan_count < Credential.max_scans),
        )
        .values(scan_count=Credential.scan_count + 1, last_scanned_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise CheckInRejected(SCAN_LIMIT_REACHED, "QR code scan limit reached")


async def process_check_in(
    db: AsyncSession,
    token: str,
    scanner_id: uuid.UUID,
    reference: Optional[Coordinates] = None,
    candidate: Optional[Coordinates] = None,
    tolerance_meters: Optional[int] = None,
    device_info: Optional[dict] = None,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CheckInResult:
    """Run every guard, then commit the check-in atomically.

    The person checked in is the credential's owner when it has one
    (an organizer scanning an attendee's pass), otherwise the scanner
    (an attendee scanning the event's code).
    """
    now = ensure_utc(now or utcnow())
    try:
        credential = await _load_credential(db, token, now)
        event = await db.get(Event, credential.event_id)
        if event is None:
            raise CheckInRejected(NOT_FOUND, "Event for this QR code no longer exists")
        user_id = credential.owner_id or scanner_id

        window = _check_window(event, now)

        if credential.max_scans is not None and credential.scan_count >= credential.max_scans:
            raise CheckInRejected(SCAN_LIMIT_REACHED, "QR code scan limit reached")

        await _check_registration(db, user_id, event.id)

        today = civil_date(now, settings.EVENT_TIMEZONE)
        record = await _todays_record(db, user_id, event.id, today)

        verdict = _check_proximity(credential, reference, candidate, tolerance_meters)

        # All guards passed: write.
        if record is None:
            record = AttendanceRecord(user_id=user_id, event_id=event.id, check_in_date=today)
            db.add(record)
        record.check_in_time = now
        record.check_in_method = "qr_scan"
        record.is_validated = True
        record.validated_by = scanner_id
        await db.flush()

        workflow = await record_check_in(db, user_id, event.id, record.id, now=now)

        scan = CredentialScan(
            credential_id=credential.id,
            scanned_by=scanner_id,
            attendance_record_id=record.id,
            scan_method="qr_scan",
            location_validated=verdict.valid if verdict else None,
            location_validation_method="gps" if verdict else "skipped",
            reference_lat=reference.lat if reference else None,
            reference_lng=reference.lng if reference else None,
            candidate_lat=candidate.lat if candidate else None,
            candidate_lng=candidate.lng if candidate else None,
            distance_meters=verdict.distance_meters if verdict else None,
            device_info=device_info,
            ip_address=ip_address,
            workflow_stage=STAGE_CHECKED_IN,
            scanned_at=now,
        )
        db.add(scan)
        await _increment_scan_count(db, credential.id, now)
        await db.flush()
        workflow.scan_id = scan.id

        result = CheckInResult(
            attendance_id=record.id,
            workflow_id=workflow.id,
            scan_id=scan.id,
            event_id=event.id,
            user_id=user_id,
            event_title=event.title,
            checked_in_at=now,
            check_in_date=today.isoformat(),
            location_validated=bool(verdict and verdict.valid),
            distance_meters=verdict.distance_meters if verdict else None,
            window=window,
            next_steps={
                "survey_available": True,
                "certificate_eligible": False,
                "workflow_stage": workflow.current_stage,
            },
        )
        await db.commit()
    except CheckInRejected as rejection:
        await db.rollback()
        logger.info(f"Check-in rejected ({rejection.reason}) for scanner {scanner_id}: {rejection.message}")
        raise
    except IntegrityError:
        # A concurrent scan committed today's record first
        await db.rollback()
        logger.info(f"Check-in lost a race for scanner {scanner_id}; treating as duplicate")
        raise CheckInRejected(
            ALREADY_CHECKED_IN_TODAY, "User has already checked in for this event today"
        )

    logger.info(
        f"Checked in user {result.user_id} to event {result.event_id} "
        f"(attendance={result.attendance_id}, distance={result.distance_meters})"
    )
    return result
