"""Jobs API - submit, list and check status of background jobs."""
from uuid import UUID
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.models.job import JOB_STATUSES
from app.schemas.job import JobCreate, JobResponse
from app.services import job_queue

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
async def submit_job(
    body: JobCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Submit a new background job."""
    return await job_queue.enqueue_job(
        db,
        body.job_type,
        body.payload.model_dump(mode="json"),
        created_by=user.id,
        priority=body.priority,
        max_attempts=body.max_attempts,
    )


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """List the caller's jobs (all jobs for admins), optionally filtered by status."""
    if status and status not in JOB_STATUSES:
        raise HTTPException(400, f"Unknown status '{status}'")
    return await job_queue.list_jobs(db, user, status=status, limit=limit, offset=offset)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Get job status and result."""
    try:
        job = await job_queue.get_job_status(db, job_id, user)
    except job_queue.JobAccessDenied:
        raise HTTPException(403, "Not allowed to view this job")
    if not job:
        raise HTTPException(404, "Job not found")
    return job
