"""Per-(person, event) workflow tracker.

checked_in -> survey_completed -> certificate_eligible -> certificate_generated.
The stage never moves backwards and each stage timestamp is written once.
Callers own the transaction; nothing here commits.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.attendance import AttendanceWorkflow, WORKFLOW_STAGES, STAGE_CHECKED_IN
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

_STAGE_TIMESTAMPS = {
    "checked_in": "checked_in_at",
    "survey_completed": "survey_completed_at",
    "certificate_eligible": "certificate_eligible_at",
    "certificate_generated": "certificate_generated_at",
}


def stage_rank(stage: str) -> int:
    try:
        return WORKFLOW_STAGES.index(stage)
    except ValueError:
        raise ValueError(f"Unknown workflow stage: {stage}")


async def get_workflow(
    db: AsyncSession, user_id: uuid.UUID, event_id: uuid.UUID, for_update: bool = False
) -> Optional[AttendanceWorkflow]:
    query = select(AttendanceWorkflow).where(
        AttendanceWorkflow.user_id == user_id,
        AttendanceWorkflow.event_id == event_id,
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


def _apply_stage(workflow: AttendanceWorkflow, stage: str, now: datetime) -> None:
    """Move forward to `stage` (no-op if already there or beyond).

    Stages skipped on the way are stamped too: reaching a later stage implies
    the earlier ones were reached.
    """
    target = stage_rank(stage)
    current = stage_rank(workflow.current_stage) if workflow.current_stage else -1
    for name in WORKFLOW_STAGES[: target + 1]:
        column = _STAGE_TIMESTAMPS[name]
        if getattr(workflow, column) is None:
            setattr(workflow, column, now)
    if target > current:
        workflow.current_stage = stage


async def record_check_in(
    db: AsyncSession,
    user_id: uuid.UUID,
    event_id: uuid.UUID,
    attendance_record_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> AttendanceWorkflow:
    """Idempotent upsert keyed by (user, event), linking the newest attendance record."""
    now = now or utcnow()
    workflow = await get_workflow(db, user_id, event_id, for_update=True)
    if workflow is None:
        workflow = AttendanceWorkflow(
            user_id=user_id,
            event_id=event_id,
            current_stage=STAGE_CHECKED_IN,
            workflow_data={},
        )
        db.add(workflow)
    workflow.attendance_record_id = attendance_record_id
    _apply_stage(workflow, STAGE_CHECKED_IN, now)
    await db.flush()
    return workflow


async def advance_workflow(
    db: AsyncSession,
    user_id: uuid.UUID,
    event_id: uuid.UUID,
    stage: str,
    survey_response_id: Optional[uuid.UUID] = None,
    certificate_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Optional[AttendanceWorkflow]:
    """Advance an existing workflow. Returns None if the person never checked in."""
    workflow = await get_workflow(db, user_id, event_id, for_update=True)
    if workflow is None:
        logger.info(f"No workflow for user {user_id} / event {event_id}; '{stage}' not recorded")
        return None

    previous = workflow.current_stage
    _apply_stage(workflow, stage, now or utcnow())
    if survey_response_id is not None and workflow.survey_response_id is None:
        workflow.survey_response_id = survey_response_id
    if certificate_id is not None and workflow.certificate_id is None:
        workflow.certificate_id = certificate_id
    if metadata:
        # Reassign so the JSON column is flagged dirty
        workflow.workflow_data = {**(workflow.workflow_data or {}), **metadata}
    await db.flush()
    if previous != workflow.current_stage:
        logger.info(f"Workflow {workflow.id}: {previous} -> {workflow.current_stage}")
    return workflow
