"""
Championship API Schemas (Pydantic)
"""
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ChampionshipCreate(BaseModel):
    """Request schema for creating a championship (starts as draft)."""
    name: str = Field(..., min_length=3, max_length=255)
    year: int = Field(..., ge=2000, le=2100)
    start_date: date
    end_date: date
    description: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v):
        return v.strip()


class ChampionshipResponse(BaseModel):
    id: int
    name: str
    year: int
    description: Optional[str] = None
    start_date: date
    end_date: date
    status: str
    current_snapshot_version: Optional[int] = None

    class Config:
        from_attributes = True
