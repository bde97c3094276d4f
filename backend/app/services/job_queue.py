"""Durable work queue on the jobs table.

Claiming is a single UPDATE whose target row comes from a
`SELECT ... FOR UPDATE SKIP LOCKED` subquery, so concurrent pollers never
receive the same job and never wait on each other's locks. Every operation
commits its own transaction.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, desc, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.dependencies import CurrentUser
from app.models.job import Job, JOB_PENDING, JOB_PROCESSING, JOB_COMPLETED, JOB_FAILED
from app.schemas.job import dump_job_payload, parse_job_payload
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LEN = 2000


class JobAccessDenied(Exception):
    """Raised when a caller asks for a job they neither created nor administer."""
    pass


def compute_backoff(attempts: int, base_seconds: int, max_seconds: int) -> int:
    """Exponential retry delay: base * 2^(attempts-1), capped. 0 disables backoff."""
    if base_seconds <= 0:
        return 0
    exponent = max(attempts - 1, 0)
    return min(base_seconds * (2 ** exponent), max_seconds)


async def enqueue_job(
    db: AsyncSession,
    job_type: str,
    payload: dict,
    created_by: Optional[uuid.UUID],
    priority: Optional[int] = None,
    max_attempts: Optional[int] = None,
) -> Job:
    """Validate the payload for its job type and insert a pending job."""
    parsed = parse_job_payload(job_type, payload)
    job = Job(
        job_type=job_type,
        payload=dump_job_payload(parsed),
        status=JOB_PENDING,
        priority=priority if priority is not None else settings.JOB_DEFAULT_PRIORITY,
        attempts=0,
        max_attempts=max_attempts if max_attempts is not None else settings.JOB_MAX_ATTEMPTS,
        created_by=created_by,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info(f"Enqueued job {job.id} (type={job_type}, priority={job.priority})")
    return job


async def dequeue_job(db: AsyncSession, now: Optional[datetime] = None) -> Optional[Job]:
    """Claim the most urgent runnable pending job, or return None without blocking.

    Ordering is priority ascending, then created_at ascending. The claim
    increments attempts and stamps started_at in the same statement.
    """
    now = now or utcnow()
    candidate = (
        select(Job.id)
        .where(
            Job.status == JOB_PENDING,
            or_(Job.run_after.is_(None), Job.run_after <= now),
        )
        .order_by(Job.priority, Job.created_at)
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    result = await db.execute(
        update(Job)
        .where(Job.id == candidate, Job.status == JOB_PENDING)
        .values(
            status=JOB_PROCESSING,
            started_at=now,
            attempts=Job.attempts + 1,
            run_after=None,
        )
        .returning(Job)
        .execution_options(synchronize_session=False)
    )
    job = result.scalar_one_or_none()
    await db.commit()
    return job


async def complete_job(
    db: AsyncSession, job_id: uuid.UUID, result: Optional[dict] = None, now: Optional[datetime] = None
) -> bool:
    """processing -> completed. Returns False (and changes nothing) otherwise."""
    outcome = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JOB_PROCESSING)
        .values(status=JOB_COMPLETED, completed_at=now or utcnow(), result=result or {})
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return outcome.rowcount > 0


async def fail_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    reason: str,
    backoff_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Record a failed attempt of a processing job.

    Exhausted attempts -> terminal 'failed'. Otherwise the job returns to
    'pending' with started_at cleared and a run_after not-before time.
    Returns the new status, or None when the job was not processing.
    """
    now = now or utcnow()
    reason = (reason or "Unknown error")[:ERROR_MESSAGE_MAX_LEN]

    result = await db.execute(
        select(Job).where(Job.id == job_id).with_for_update()
    )
    job = result.scalar_one_or_none()
    if job is None or job.status != JOB_PROCESSING:
        await db.rollback()
        return None

    if job.attempts >= job.max_attempts:
        job.status = JOB_FAILED
        job.error_message = reason
        job.completed_at = now
    else:
        base = settings.JOB_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        delay = compute_backoff(job.attempts, base, settings.JOB_RETRY_BACKOFF_MAX_SECONDS)
        job.status = JOB_PENDING
        job.error_message = reason
        job.started_at = None
        job.run_after = now + timedelta(seconds=delay) if delay else None
    new_status = job.status
    await db.commit()
    return new_status


async def get_job_status(
    db: AsyncSession, job_id: uuid.UUID, requester: CurrentUser
) -> Optional[Job]:
    """Job visible to its creator or an admin. None if it does not exist."""
    job = await db.get(Job, job_id)
    if job is None:
        return None
    if not requester.is_admin and job.created_by != requester.id:
        raise JobAccessDenied(f"Job {job_id} belongs to another user")
    return job


async def list_jobs(
    db: AsyncSession,
    requester: CurrentUser,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Job]:
    """Newest first. Admins see every job, everyone else only their own."""
    query = select(Job).order_by(desc(Job.created_at)).limit(limit).offset(offset)
    if not requester.is_admin:
        query = query.where(Job.created_by == requester.id)
    if status:
        query = query.where(Job.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def requeue_stale_jobs(
    db: AsyncSession, lease_seconds: Optional[int] = None, now: Optional[datetime] = None
) -> int:
    """Reclaim jobs whose worker died mid-run.

    A job still 'processing' after the lease is returned to 'pending', or
    terminally failed if it has no attempts left. Returns the number reclaimed.
    """
    now = now or utcnow()
    lease = settings.JOB_LEASE_SECONDS if lease_seconds is None else lease_seconds
    cutoff = now - timedelta(seconds=lease)

    result = await db.execute(
        select(Job)
        .where(and_(Job.status == JOB_PROCESSING, Job.started_at < cutoff))
        .with_for_update(skip_locked=True)
    )
    stale_jobs = result.scalars().all()
    for job in stale_jobs:
        message = f"Lease expired: job was processing for more than {lease} seconds"
        if job.attempts >= job.max_attempts:
            job.status = JOB_FAILED
            job.completed_at = now
        else:
            job.status = JOB_PENDING
            job.started_at = None
            job.run_after = None
        job.error_message = message
        logger.warning(f"Reclaimed stale job {job.id} -> {job.status} (attempts={job.attempts})")
    await db.commit()
    if stale_jobs:
        logger.info(f"Reclaimed {len(stale_jobs)} stale job(s)")
    return len(stale_jobs)
