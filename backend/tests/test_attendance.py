"""Check-in guards, their order, and what a successful check-in writes."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from app.models import AttendanceRecord, Credential, CredentialScan
from app.services import attendance
from app.services.attendance import (
    ALREADY_CHECKED_IN_TODAY,
    LOCATION_REQUIRED,
    NOT_FOUND,
    NOT_REGISTERED,
    OUT_OF_RANGE,
    SCAN_LIMIT_REACHED,
    WINDOW_CLOSED,
    WINDOW_NOT_OPEN,
    CheckInRejected,
    generate_token,
    issue_credential,
    process_check_in,
)
from app.services.proximity import Coordinates
from app.services.workflow import get_workflow

EVENT_START = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
ON_TIME = EVENT_START - timedelta(minutes=10)
VENUE = Coordinates(12.9716, 77.5946)


@pytest.fixture()
def check_in(in_session):
    async def _check_in(token, scanner_id, **kwargs):
        kwargs.setdefault("now", ON_TIME)
        return await in_session(process_check_in, token, scanner_id, **kwargs)
    return _check_in


async def _scalar(in_session, query):
    async def _run(db):
        return await db.scalar(query)
    return await in_session(_run)


async def _expect_rejection(check_in, token, scanner_id, reason, **kwargs) -> CheckInRejected:
    with pytest.raises(CheckInRejected) as exc:
        await check_in(token, scanner_id, **kwargs)
    assert exc.value.reason == reason
    return exc.value


def test_tokens_are_unique_and_url_safe():
    tokens = {generate_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(t) == 43 and "=" not in t and "+" not in t and "/" not in t for t in tokens)


async def test_event_credential_requires_event(db, organizer_id):
    with pytest.raises(ValueError):
        await issue_credential(db, created_by=organizer_id)


async def test_successful_check_in_writes_everything(
    in_session, check_in, make_event, register, make_credential, attendee_id, organizer_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event)

    result = await check_in(credential.token, attendee_id, device_info={"ua": "pytest"})

    assert result.user_id == attendee_id
    assert result.event_id == event.id
    assert result.event_title == "Intro to Robotics"
    assert result.check_in_date == "2026-03-10"
    assert result.location_validated is False
    assert result.distance_meters is None
    assert result.next_steps["workflow_stage"] == "checked_in"

    record = await in_session(lambda db: db.get(AttendanceRecord, result.attendance_id))
    assert record.is_validated is True
    assert record.validated_by == attendee_id

    workflow = await in_session(get_workflow, attendee_id, event.id)
    assert workflow.current_stage == "checked_in"
    assert workflow.attendance_record_id == result.attendance_id
    assert workflow.scan_id == result.scan_id
    assert workflow.checked_in_at is not None

    scan = await in_session(lambda db: db.get(CredentialScan, result.scan_id))
    assert scan.location_validation_method == "skipped"
    assert scan.workflow_stage == "checked_in"
    assert scan.device_info == {"ua": "pytest"}

    stored = await in_session(lambda db: db.get(Credential, credential.id))
    assert stored.scan_count == 1
    assert stored.last_scanned_at is not None


async def test_credential_owner_is_checked_in_when_organizer_scans(
    check_in, make_event, register, make_credential, attendee_id, organizer_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event, owner_id=attendee_id)

    result = await check_in(credential.token, organizer_id)
    assert result.user_id == attendee_id


async def test_unknown_token(check_in, attendee_id):
    await _expect_rejection(check_in, "no-such-token", attendee_id, NOT_FOUND)
    await _expect_rejection(check_in, "   ", attendee_id, NOT_FOUND)


async def test_inactive_or_expired_credential(
    db, check_in, make_event, register, make_credential, attendee_id
):
    event = await make_event()
    await register(event, attendee_id)
    inactive = await make_credential(event)
    inactive.is_active = False
    await db.commit()
    expired = await make_credential(event, expires_at=ON_TIME - timedelta(minutes=1))

    await _expect_rejection(check_in, inactive.token, attendee_id, NOT_FOUND)
    await _expect_rejection(check_in, expired.token, attendee_id, NOT_FOUND)


@pytest.mark.parametrize(
    "offset, outcome",
    [
        (timedelta(minutes=-60), None),
        (timedelta(minutes=-60, seconds=-1), WINDOW_NOT_OPEN),
        (timedelta(minutes=30), None),
        (timedelta(minutes=30, seconds=1), WINDOW_CLOSED),
    ],
)
async def test_window_boundaries(
    check_in, make_event, register, make_credential, attendee_id, offset, outcome
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event)
    now = EVENT_START + offset

    if outcome is None:
        result = await check_in(credential.token, attendee_id, now=now)
        assert result.checked_in_at == now
    else:
        rejection = await _expect_rejection(check_in, credential.token, attendee_id, outcome, now=now)
        window = rejection.details["check_in_window"]
        assert window["opens_at"] == (EVENT_START - timedelta(minutes=60)).isoformat()
        assert window["closes_at"] == (EVENT_START + timedelta(minutes=30)).isoformat()
        assert window["event_starts_at"] == EVENT_START.isoformat()


async def test_scan_limit(check_in, make_event, register, make_credential):
    event = await make_event()
    first, second = uuid.uuid4(), uuid.uuid4()
    await register(event, first)
    await register(event, second)
    credential = await make_credential(event, max_scans=1)

    await check_in(credential.token, first)
    await _expect_rejection(check_in, credential.token, second, SCAN_LIMIT_REACHED)


async def test_unlimited_scans_when_no_ceiling(check_in, make_event, register, make_credential):
    event = await make_event()
    credential = await make_credential(event)
    for _ in range(3):
        user_id = uuid.uuid4()
        await register(event, user_id)
        await check_in(credential.token, user_id)


async def test_not_registered(check_in, make_event, register, make_credential, attendee_id):
    event = await make_event()
    await register(event, attendee_id, status="cancelled")
    credential = await make_credential(event)
    await _expect_rejection(check_in, credential.token, attendee_id, NOT_REGISTERED)


async def test_one_check_in_per_day(
    in_session, check_in, make_event, register, make_credential, attendee_id
):
    # A multi-day event whose window is open on both days
    event = await make_event(before=60, during=60 * 24 * 2)
    await register(event, attendee_id)
    credential = await make_credential(event)

    await check_in(credential.token, attendee_id)
    await _expect_rejection(check_in, credential.token, attendee_id, ALREADY_CHECKED_IN_TODAY)
    await check_in(credential.token, attendee_id, now=ON_TIME + timedelta(days=1))

    records = await _scalar(
        in_session,
        select(func.count()).select_from(AttendanceRecord).where(AttendanceRecord.user_id == attendee_id),
    )
    assert records == 2
    workflow = await in_session(get_workflow, attendee_id, event.id)
    assert workflow.current_stage == "checked_in"


async def test_location_required_when_coordinates_missing(
    check_in, make_event, register, make_credential, attendee_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event, requires_location_validation=True)

    rejection = await _expect_rejection(check_in, credential.token, attendee_id, LOCATION_REQUIRED)
    assert rejection.details == {"missing": "reference"}
    rejection = await _expect_rejection(
        check_in, credential.token, attendee_id, LOCATION_REQUIRED, reference=VENUE
    )
    assert rejection.details == {"missing": "candidate"}


async def test_out_of_range(check_in, make_event, register, make_credential, attendee_id):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event, requires_location_validation=True)

    far_away = Coordinates(VENUE.lat + 0.01, VENUE.lng)  # ~1.1 km north
    rejection = await _expect_rejection(
        check_in, credential.token, attendee_id, OUT_OF_RANGE, reference=VENUE, candidate=far_away
    )
    validation = rejection.details["location_validation"]
    assert validation["max_distance_meters"] == 50
    assert validation["distance_meters"] > 1000


async def test_within_range_records_distance(
    in_session, check_in, make_event, register, make_credential, attendee_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(
        event, requires_location_validation=True, proximity_tolerance_meters=100
    )

    nearby = Coordinates(VENUE.lat + 0.0005, VENUE.lng)  # ~56 m north
    result = await check_in(credential.token, attendee_id, reference=VENUE, candidate=nearby)
    assert result.location_validated is True
    assert result.distance_meters == 56

    scan = await in_session(lambda db: db.get(CredentialScan, result.scan_id))
    assert scan.location_validation_method == "gps"
    assert scan.distance_meters == 56


async def test_request_tolerance_overrides_credential_default(
    check_in, make_event, register, make_credential, attendee_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(
        event, requires_location_validation=True, proximity_tolerance_meters=100
    )
    nearby = Coordinates(VENUE.lat + 0.0005, VENUE.lng)
    await _expect_rejection(
        check_in, credential.token, attendee_id, OUT_OF_RANGE,
        reference=VENUE, candidate=nearby, tolerance_meters=20,
    )


async def test_guard_order_window_before_registration(
    check_in, make_event, make_credential, attendee_id
):
    event = await make_event()
    credential = await make_credential(event)
    # Neither registered nor on time: the window is reported first
    await _expect_rejection(
        check_in, credential.token, attendee_id, WINDOW_CLOSED, now=EVENT_START + timedelta(hours=3)
    )


async def test_guard_order_duplicate_before_location(
    check_in, make_event, register, make_credential, attendee_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event, requires_location_validation=True)
    nearby = Coordinates(VENUE.lat, VENUE.lng)
    await check_in(credential.token, attendee_id, reference=VENUE, candidate=nearby)

    # Coordinates missing now, but the duplicate is what gets reported
    await _expect_rejection(check_in, credential.token, attendee_id, ALREADY_CHECKED_IN_TODAY)


async def test_rejection_leaves_no_trace(
    in_session, check_in, make_event, register, make_credential, attendee_id
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event, requires_location_validation=True)

    await _expect_rejection(check_in, credential.token, attendee_id, LOCATION_REQUIRED)

    assert await _scalar(in_session, select(func.count()).select_from(AttendanceRecord)) == 0
    assert await _scalar(in_session, select(func.count()).select_from(CredentialScan)) == 0
    assert await in_session(get_workflow, attendee_id, event.id) is None
    stored = await in_session(lambda db: db.get(Credential, credential.id))
    assert stored.scan_count == 0


async def test_concurrent_check_in_committing_first_wins(
    in_session, session_factory, check_in, make_event, register, make_credential, attendee_id, monkeypatch
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event)
    real_todays_record = attendance._todays_record

    async def other_scan_commits_first(db, user_id, event_id, today):
        record = await real_todays_record(db, user_id, event_id, today)
        async with session_factory() as other:
            other.add(AttendanceRecord(
                user_id=user_id, event_id=event_id, check_in_date=today, is_validated=True
            ))
            await other.commit()
        return record

    monkeypatch.setattr(attendance, "_todays_record", other_scan_commits_first)
    await _expect_rejection(check_in, credential.token, attendee_id, ALREADY_CHECKED_IN_TODAY)

    assert await _scalar(in_session, select(func.count()).select_from(AttendanceRecord)) == 1
    assert await _scalar(in_session, select(func.count()).select_from(CredentialScan)) == 0
    assert await in_session(get_workflow, attendee_id, event.id) is None


async def test_scan_ceiling_reached_between_guard_and_write(
    in_session, session_factory, check_in, make_event, register, make_credential, attendee_id, monkeypatch
):
    event = await make_event()
    await register(event, attendee_id)
    credential = await make_credential(event, max_scans=1)
    real_todays_record = attendance._todays_record

    async def last_scan_taken_meanwhile(db, user_id, event_id, today):
        record = await real_todays_record(db, user_id, event_id, today)
        async with session_factory() as other:
            await other.execute(update(Credential).where(Credential.id == credential.id).values(scan_count=1))
            await other.commit()
        return record

    monkeypatch.setattr(attendance, "_todays_record", last_scan_taken_meanwhile)
    await _expect_rejection(check_in, credential.token, attendee_id, SCAN_LIMIT_REACHED)

    assert await _scalar(in_session, select(func.count()).select_from(AttendanceRecord)) == 0
    stored = await in_session(lambda db: db.get(Credential, credential.id))
    assert stored.scan_count == 1
