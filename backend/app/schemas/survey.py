"""Survey response schemas."""
import uuid
from datetime import datetime
from app.schemas.base import CamelModel, CamelORMModel


class SurveyResponseCreate(CamelModel):
    answers: dict = {}


class SurveyResponseOut(CamelORMModel):
    id: uuid.UUID
    survey_id: uuid.UUID
    user_id: uuid.UUID
    answers: dict
    created_at: datetime
