"""
championship/orm/demerit.py
Demerit: a negative scoring event recorded against a unit.

Demerits are append-only. A correction is made by voiding the row
(voided_at/voided_by/void_reason); rows are never hard-deleted so the
audit trail survives.
"""
from enum import Enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, ForeignKey, CheckConstraint, Index
)

from championship.orm.base import Base


class DemeritLevel(str, Enum):
    """Severity levels; D3 and D4 require a description."""
    D1 = "D1"
    D2 = "D2"
    D3 = "D3"
    D4 = "D4"


class Demerit(Base):
    __tablename__ = "demerits"

    id = Column(Integer, primary_key=True, index=True)
    championship_id = Column(
        Integer,
        ForeignKey("championships.id", ondelete="RESTRICT"),
        nullable=False
    )
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False)
    occurred_on = Column(Date, nullable=False)
    type = Column(String(60), nullable=False)
    level = Column(String(2), nullable=False)
    points_delta = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(Integer, nullable=True)
    void_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("points_delta < 0", name="ck_demerit_negative"),
        CheckConstraint("level IN ('D1', 'D2', 'D3', 'D4')", name="ck_demerit_level_valid"),
        Index("idx_demerit_lookup", "championship_id", "unit_id", "occurred_on"),
    )

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "championship_id": self.championship_id,
            "unit_id": self.unit_id,
            "occurred_on": self.occurred_on.isoformat() if self.occurred_on else None,
            "type": self.type,
            "level": self.level,
            "points_delta": self.points_delta,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "description": self.description,
            "voided": self.is_voided,
        }
