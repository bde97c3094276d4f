"""Queue semantics: ordering, single claim, bounded retry, backoff and lease reaping."""
import asyncio
import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import update

from app.dependencies import CurrentUser
from app.models.job import Job
from app.schemas.job import BULK_NOTIFICATION, SINGLE_NOTIFICATION, UnknownJobTypeError
from app.services.job_queue import (
    JobAccessDenied,
    complete_job,
    compute_backoff,
    dequeue_job,
    enqueue_job,
    fail_job,
    get_job_status,
    list_jobs,
    requeue_stale_jobs,
)
from app.utils.clock import utcnow

OWNER = uuid.uuid4()


def _note(title="Reminder"):
    return {"user_id": str(uuid.uuid4()), "title": title, "message": "See you soon"}


async def _enqueue(in_session, title, priority=None, max_attempts=None, age_seconds=0):
    job = await in_session(
        enqueue_job, SINGLE_NOTIFICATION, _note(title), OWNER,
        priority=priority, max_attempts=max_attempts,
    )
    if age_seconds:
        # Pin creation order independently of clock resolution
        async def _age(db):
            await db.execute(
                update(Job).where(Job.id == job.id)
                .values(created_at=utcnow() - timedelta(seconds=age_seconds))
            )
            await db.commit()
        await in_session(_age)
    return job


async def test_enqueue_applies_defaults(in_session):
    job = await _enqueue(in_session, "Defaults")
    assert job.status == "pending"
    assert job.priority == 5
    assert job.max_attempts == 3
    assert job.attempts == 0
    assert job.started_at is None


async def test_enqueue_rejects_unknown_type(in_session):
    with pytest.raises(UnknownJobTypeError):
        await in_session(enqueue_job, "send_fax", {}, OWNER)


async def test_enqueue_rejects_malformed_payload(in_session):
    with pytest.raises(ValidationError):
        await in_session(enqueue_job, BULK_NOTIFICATION, {"user_ids": [], "title": "x", "message": "y"}, OWNER)


async def test_dequeue_orders_by_priority_then_age(in_session):
    low = await _enqueue(in_session, "low", priority=9, age_seconds=30)
    first_normal = await _enqueue(in_session, "normal-old", priority=5, age_seconds=20)
    second_normal = await _enqueue(in_session, "normal-new", priority=5, age_seconds=10)
    urgent = await _enqueue(in_session, "urgent", priority=1)

    claimed = [await in_session(dequeue_job) for _ in range(4)]
    assert [j.id for j in claimed] == [urgent.id, first_normal.id, second_normal.id, low.id]
    assert await in_session(dequeue_job) is None


async def test_claim_marks_processing_and_counts_attempt(in_session):
    await _enqueue(in_session, "claim me")
    job = await in_session(dequeue_job)
    assert job.status == "processing"
    assert job.attempts == 1
    assert job.started_at is not None


async def test_concurrent_dequeues_never_share_a_job(session_factory, in_session):
    for i in range(3):
        await _enqueue(in_session, f"job {i}")

    async def claim():
        async with session_factory() as session:
            return await dequeue_job(session)

    results = await asyncio.gather(*[claim() for _ in range(5)])
    claimed_ids = [job.id for job in results if job is not None]
    assert len(claimed_ids) == 3
    assert len(set(claimed_ids)) == 3


async def test_complete_only_from_processing(in_session):
    job = await _enqueue(in_session, "finish")
    assert await in_session(complete_job, job.id, {"sent": 1}) is False

    await in_session(dequeue_job)
    assert await in_session(complete_job, job.id, {"sent": 1}) is True
    # Completed is terminal
    assert await in_session(complete_job, job.id, {"sent": 2}) is False


async def test_retry_is_bounded_by_max_attempts(in_session):
    job = await _enqueue(in_session, "flaky", max_attempts=3)

    for attempt in (1, 2):
        claimed = await in_session(dequeue_job)
        assert claimed.id == job.id and claimed.attempts == attempt
        assert await in_session(fail_job, job.id, f"boom {attempt}", backoff_seconds=0) == "pending"

    claimed = await in_session(dequeue_job)
    assert claimed.attempts == 3
    assert await in_session(fail_job, job.id, "boom 3", backoff_seconds=0) == "failed"

    # A further failure report is a no-op and the job is never redelivered
    assert await in_session(fail_job, job.id, "boom 4", backoff_seconds=0) is None
    assert await in_session(dequeue_job) is None

    stored = await in_session(get_job_status, job.id, CurrentUser(OWNER))
    assert stored.status == "failed"
    assert stored.attempts == 3
    assert stored.error_message == "boom 3"
    assert stored.completed_at is not None


async def test_retry_clears_started_at_and_keeps_error(in_session):
    job = await _enqueue(in_session, "retry")
    await in_session(dequeue_job)
    await in_session(fail_job, job.id, "temporary outage", backoff_seconds=0)

    stored = await in_session(get_job_status, job.id, CurrentUser(OWNER))
    assert stored.status == "pending"
    assert stored.started_at is None
    assert stored.error_message == "temporary outage"


async def test_retry_backoff_delays_redelivery(in_session):
    job = await _enqueue(in_session, "backoff")
    claimed_at = utcnow()
    await in_session(dequeue_job, now=claimed_at)
    await in_session(fail_job, job.id, "later", backoff_seconds=60, now=claimed_at)

    assert await in_session(dequeue_job, now=claimed_at + timedelta(seconds=30)) is None
    retried = await in_session(dequeue_job, now=claimed_at + timedelta(seconds=61))
    assert retried.id == job.id
    assert retried.attempts == 2


def test_compute_backoff_doubles_and_caps():
    assert [compute_backoff(n, 30, 900) for n in (1, 2, 3, 4, 5, 6)] == [30, 60, 120, 240, 480, 900]
    assert compute_backoff(3, 0, 900) == 0


async def test_stale_processing_jobs_are_requeued(in_session):
    job = await _enqueue(in_session, "abandoned")
    started = utcnow() - timedelta(hours=1)
    await in_session(dequeue_job, now=started)

    assert await in_session(requeue_stale_jobs, lease_seconds=600) == 1
    stored = await in_session(get_job_status, job.id, CurrentUser(OWNER))
    assert stored.status == "pending"
    assert "Lease expired" in stored.error_message

    redelivered = await in_session(dequeue_job)
    assert redelivered.id == job.id
    assert redelivered.attempts == 2


async def test_stale_job_without_attempts_left_fails(in_session):
    job = await _enqueue(in_session, "abandoned twice", max_attempts=1)
    await in_session(dequeue_job, now=utcnow() - timedelta(hours=1))

    assert await in_session(requeue_stale_jobs, lease_seconds=600) == 1
    stored = await in_session(get_job_status, job.id, CurrentUser(OWNER))
    assert stored.status == "failed"


async def test_fresh_processing_jobs_are_left_alone(in_session):
    await _enqueue(in_session, "busy")
    await in_session(dequeue_job)
    assert await in_session(requeue_stale_jobs, lease_seconds=600) == 0


async def test_status_visible_to_creator_and_admin_only(in_session):
    job = await _enqueue(in_session, "private")

    assert (await in_session(get_job_status, job.id, CurrentUser(OWNER))).id == job.id
    assert (await in_session(get_job_status, job.id, CurrentUser(uuid.uuid4(), "admin"))).id == job.id
    with pytest.raises(JobAccessDenied):
        await in_session(get_job_status, job.id, CurrentUser(uuid.uuid4()))
    assert await in_session(get_job_status, uuid.uuid4(), CurrentUser(OWNER)) is None


async def test_list_jobs_scopes_to_caller(in_session):
    await _enqueue(in_session, "mine")
    await in_session(enqueue_job, SINGLE_NOTIFICATION, _note("theirs"), uuid.uuid4())

    mine = await in_session(list_jobs, CurrentUser(OWNER))
    everything = await in_session(list_jobs, CurrentUser(uuid.uuid4(), "admin"))
    assert len(mine) == 1
    assert len(everything) == 2
    assert await in_session(list_jobs, CurrentUser(OWNER), status="completed") == []
