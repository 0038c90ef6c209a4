"""
Demerit API Schemas (Pydantic)
"""
import datetime
from typing import Optional

from pydantic import BaseModel, field_validator


class DemeritCreate(BaseModel):
    """
    Request schema for recording a demerit.

    Fields are optional here so that missing values reach the service and
    come back as a field-level ValidationError.
    """
    unit_id: Optional[int] = None
    date: Optional[datetime.date] = None
    type: Optional[str] = None
    description: Optional[str] = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, v):
        if v is None:
            return v
        return v.strip() or None
