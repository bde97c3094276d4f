"""Base schema classes with camelCase alias generation.

API schemas inherit from these instead of BaseModel directly: Python code
stays snake_case, JSON on the wire is camelCase. Timestamps read back from
the database are always reported as UTC.
"""
from datetime import datetime
from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel

from app.utils.clock import ensure_utc


class CamelModel(BaseModel):
    """Base for request schemas. Accepts and outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "protected_namespaces": (),
    }


class CamelORMModel(BaseModel):
    """Base for response schemas. Reads from SQLAlchemy rows, outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
        "protected_namespaces": (),
    }

    @field_validator("*", mode="after")
    @classmethod
    def naive_datetimes_are_utc(cls, v):
        return ensure_utc(v) if isinstance(v, datetime) else v
