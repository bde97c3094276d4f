"""Surveys API - submit post-event survey responses."""
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.schemas.survey import SurveyResponseCreate, SurveyResponseOut
from app.services.surveys import (
    DuplicateSurveyResponse,
    SurveyClosedError,
    submit_survey_response,
)

router = APIRouter(prefix="/api/surveys", tags=["surveys"])


@router.post("/{survey_id}/responses", response_model=SurveyResponseOut, status_code=201)
async def submit_response(
    survey_id: UUID,
    body: SurveyResponseCreate,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    try:
        return await submit_survey_response(db, survey_id, user.id, body.answers)
    except LookupError:
        raise HTTPException(404, "Survey not found")
    except SurveyClosedError as e:
        raise HTTPException(409, str(e))
    except DuplicateSurveyResponse as e:
        raise HTTPException(409, str(e))
