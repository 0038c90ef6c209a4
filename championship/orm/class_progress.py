"""
championship/orm/class_progress.py
Per-unit progress toward class/badge targets ("metas").

One row per (championship, unit, tier). Rows are seeded with default
targets when a championship is initialized and may be edited directly by
an administrator, which marks them as a manual override.
"""
from enum import Enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint
)

from championship.orm.base import Base


class ClassTier(str, Enum):
    REGULAR = "regular"
    ADVANCED = "advanced"
    BIBLICAL = "biblical"
    SPECIALTIES = "specialties"


class ClassProgress(Base):
    __tablename__ = "class_progress"

    id = Column(Integer, primary_key=True, index=True)
    championship_id = Column(Integer, ForeignKey("championships.id"), nullable=False)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False)
    tier = Column(String(20), nullable=False)
    target_count = Column(Integer, nullable=False, default=0)
    achieved_count = Column(Integer, nullable=False, default=0)
    manual_override = Column(Boolean, nullable=False, default=False)
    completed_on = Column(Date, nullable=True)
    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("championship_id", "unit_id", "tier", name="uq_class_progress_tier"),
        CheckConstraint("target_count >= 0", name="ck_class_target_non_negative"),
        CheckConstraint("achieved_count >= 0", name="ck_class_achieved_non_negative"),
    )

    def to_dict(self):
        return {
            "tier": self.tier,
            "target_count": self.target_count,
            "achieved_count": self.achieved_count,
            "manual_override": self.manual_override,
            "completed_on": self.completed_on.isoformat() if self.completed_on else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
