"""
Evaluation API Schemas (Pydantic)
"""
import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class EvaluationCreate(BaseModel):
    """
    Request schema for recording an evaluation.

    Every field is optional so that the service reports all missing ones
    at once.
    """
    unit_id: Optional[int] = None
    date: Optional[datetime.date] = None
    area: Optional[str] = None
    type: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None

    @field_validator("color")
    @classmethod
    def normalize_color(cls, v):
        if v is None:
            return v
        return v.strip().lower() or None
