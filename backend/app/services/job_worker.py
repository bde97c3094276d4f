"""Background job worker.

Claims jobs from the shared queue and dispatches them to registered handlers.
Runs as one or more asyncio tasks within the FastAPI process; several
processes may poll the same database since claiming is lock-free.
"""
import asyncio
import logging
import traceback
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.database import async_session
from app.models.job import Job, JOB_FAILED
from app.schemas.job import (
    BULK_NOTIFICATION,
    CERTIFICATE_GENERATION,
    SINGLE_NOTIFICATION,
    parse_job_payload,
)
from app.services.job_queue import (
    ERROR_MESSAGE_MAX_LEN,
    complete_job,
    dequeue_job,
    fail_job,
    requeue_stale_jobs,
)

logger = logging.getLogger(__name__)


async def recover_stale_jobs(session_factory: async_sessionmaker = async_session) -> int:
    """Return jobs left 'processing' by a crashed worker to the queue.

    Called once on startup and periodically from the worker loop.
    """
    async with session_factory() as db:
        return await requeue_stale_jobs(db)


def safe_error_message(e: Exception, fallback: str = "Job interrupted") -> str:
    """Extract a meaningful error message from an exception.

    Some exceptions (especially from third-party libraries or cancellation races)
    produce an empty str(e). This helper falls back to the exception class name.
    """
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg


# Job handler registry - add new job types here
JOB_HANDLERS = {}


def register_job_handler(job_type: str):
    """Decorator to register a job handler function."""
    def decorator(func):
        JOB_HANDLERS[job_type] = func
        return func
    return decorator


async def process_job(job_id, job_type: str, payload: dict, session_factory: async_sessionmaker) -> dict:
    """Dispatch job to the appropriate handler."""
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return await handler(job_id, payload, session_factory)


async def _mark_failed(job_id, error: Exception, session_factory: async_sessionmaker) -> Optional[str]:
    # Retry up to 3 times so a transient DB error doesn't leave the job
    # stuck in "processing" until the lease expires.
    message = safe_error_message(error)[:ERROR_MESSAGE_MAX_LEN]
    for attempt in range(3):
        try:
            async with session_factory() as db:
                return await fail_job(db, job_id, message)
        except Exception as db_err:
            logger.error(
                f"Failed to mark job {job_id} as failed "
                f"(attempt {attempt + 1}/3): {db_err}"
            )
            if attempt < 2:
                await asyncio.sleep(1)
    return None


async def execute_job(job: Job, session_factory: async_sessionmaker = async_session) -> bool:
    """Run one claimed job to completion or failure. Returns True on success."""
    logger.info(f"Processing job {job.id} (type={job.job_type}, attempt {job.attempts}/{job.max_attempts})")
    try:
        result_data = await process_job(job.id, job.job_type, job.payload, session_factory)
    except Exception as e:
        logger.error(f"Job {job.id} failed: {e}")
        logger.error(traceback.format_exc())
        status = await _mark_failed(job.id, e, session_factory)
        if status == JOB_FAILED:
            logger.warning(f"Job {job.id} failed permanently after {job.attempts} attempt(s)")
        return False

    async with session_factory() as db:
        completed = await complete_job(db, job.id, result_data)
    if completed:
        logger.info(f"Job {job.id} completed")
    else:
        logger.warning(f"Job {job.id} finished but was no longer processing; result discarded")
    return completed


async def run_pending_jobs(
    session_factory: async_sessionmaker = async_session, batch_size: Optional[int] = None
) -> dict:
    """Claim and run up to `batch_size` jobs one after another."""
    batch_size = batch_size or settings.WORKER_BATCH_SIZE
    stats = {"processed": 0, "succeeded": 0, "failed": 0}
    for _ in range(batch_size):
        async with session_factory() as db:
            job = await dequeue_job(db)
        if job is None:
            break
        ok = await execute_job(job, session_factory)
        stats["processed"] += 1
        stats["succeeded" if ok else "failed"] += 1
    return stats


async def worker_loop(name: str = "worker-0", session_factory: async_sessionmaker = async_session):
    """Main worker loop. Drains a batch, then sleeps when the queue is idle."""
    logger.info(f"Job worker {name} started")
    loop = asyncio.get_running_loop()
    last_reap = loop.time()
    while True:
        stats = {"processed": 0}
        try:
            if loop.time() - last_reap >= settings.WORKER_REAP_INTERVAL_SECONDS:
                last_reap = loop.time()
                await recover_stale_jobs(session_factory)

            stats = await run_pending_jobs(session_factory)
            if stats["processed"]:
                logger.info(
                    f"{name}: processed {stats['processed']} job(s) "
                    f"({stats['succeeded']} ok, {stats['failed']} failed)"
                )
        except asyncio.CancelledError:
            logger.info(f"Job worker {name} stopping")
            raise
        except Exception as e:
            logger.error(f"Worker loop error: {e}")

        if stats["processed"]:
            await asyncio.sleep(0)
        else:
            await asyncio.sleep(settings.WORKER_POLL_INTERVAL_SECONDS)


# ── Job Handlers ─────────────────────────────────────────────────

@register_job_handler(CERTIFICATE_GENERATION)
async def handle_certificate_generation(job_id, payload: dict, session_factory) -> dict:
    """Render and store a certificate, then notify its recipient."""
    from app.services.certificates import generate_certificate
    return await generate_certificate(parse_job_payload(CERTIFICATE_GENERATION, payload), session_factory)


@register_job_handler(BULK_NOTIFICATION)
async def handle_bulk_notification(job_id, payload: dict, session_factory) -> dict:
    from app.services.notifications import send_bulk_notification
    return await send_bulk_notification(parse_job_payload(BULK_NOTIFICATION, payload), session_factory)


@register_job_handler(SINGLE_NOTIFICATION)
async def handle_single_notification(job_id, payload: dict, session_factory) -> dict:
    from app.services.notifications import send_single_notification
    return await send_single_notification(parse_job_payload(SINGLE_NOTIFICATION, payload), session_factory)
