"""Post-event survey submission."""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.attendance import STAGE_SURVEY_COMPLETED
from app.models.survey import Survey, SurveyResponse
from app.services.workflow import advance_workflow
from app.utils.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class SurveyClosedError(Exception):
    pass


class DuplicateSurveyResponse(Exception):
    pass


def is_survey_available(survey: Survey, now: datetime) -> bool:
    """Active, opened by the organizer, and inside its optional schedule (bounds inclusive)."""
    if not survey.is_active or not survey.is_open:
        return False
    if survey.opens_at is not None and now < ensure_utc(survey.opens_at):
        return False
    if survey.closes_at is not None and now > ensure_utc(survey.closes_at):
        return False
    return True


async def submit_survey_response(
    db: AsyncSession, survey_id: uuid.UUID, user_id: uuid.UUID, answers: dict,
    now: Optional[datetime] = None,
) -> SurveyResponse:
    """Store a response and move the respondent's workflow to survey_completed.

    Raises LookupError for an unknown survey.
    """
    survey = await db.get(Survey, survey_id)
    if survey is None:
        raise LookupError(f"Survey {survey_id} not found")
    if not is_survey_available(survey, now or utcnow()):
        raise SurveyClosedError("This survey is not accepting responses")

    result = await db.execute(
        select(SurveyResponse.id).where(
            SurveyResponse.survey_id == survey_id, SurveyResponse.user_id == user_id
        )
    )
    if result.scalar_one_or_none() is not None:
        raise DuplicateSurveyResponse("Survey already submitted")

    response = SurveyResponse(survey_id=survey_id, user_id=user_id, answers=answers or {})
    db.add(response)
    try:
        await db.flush()
        await advance_workflow(
            db, user_id, survey.event_id, STAGE_SURVEY_COMPLETED, survey_response_id=response.id
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateSurveyResponse("Survey already submitted")
    await db.refresh(response)
    logger.info(f"Survey {survey_id} answered by user {user_id}")
    return response
