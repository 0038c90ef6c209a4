"""
championship/orm/source_records.py
Source records consumed by the event collector.

Attendance, dues and badge tables belong to other parts of the club system;
the engine only reads them. Evaluations are recorded by administrators
through the engine. Every row is attributed to exactly one unit.
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Numeric, ForeignKey, Index

from championship.orm.base import Base


class AttendanceStatus(str, Enum):
    PUNCTUAL = "punctual"
    LATE = "late"
    ABSENT = "absent"
    EXCUSED = "excused"


class EvaluationColor(str, Enum):
    """Evaluation grade; each color is worth a fixed number of points."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


EVALUATION_COLOR_POINTS = {
    EvaluationColor.GREEN.value: 50,
    EvaluationColor.YELLOW.value: 30,
    EvaluationColor.RED.value: 10,
}


class AttendanceRecord(Base):
    """One member's attendance mark at one club meeting."""
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    member_id = Column(Integer, nullable=False)
    meeting_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False)


class DuesPayment(Base):
    """A monthly dues installment; paid_on is NULL while unpaid."""
    __tablename__ = "dues_payments"

    id = Column(Integer, primary_key=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    member_id = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    paid_on = Column(Date, nullable=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False, default=0)


class BadgeDelivery(Base):
    """A badge (specialty) handed to a member."""
    __tablename__ = "badge_deliveries"

    id = Column(Integer, primary_key=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    member_id = Column(Integer, nullable=False)
    badge_name = Column(String(120), nullable=False)
    delivered_on = Column(Date, nullable=False, index=True)


class Evaluation(Base):
    """
    A counselor evaluation of a unit during a championship.

    Recorded and deleted through the evaluation service. Its score is
    derived from the color, never stored.
    """
    __tablename__ = "evaluations"

    id = Column(Integer, primary_key=True, index=True)
    championship_id = Column(Integer, ForeignKey("championships.id"), nullable=False)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False)
    evaluated_on = Column(Date, nullable=False)
    area = Column(String(40), nullable=False)
    evaluation_type = Column(String(60), nullable=False)
    color = Column(String(10), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_evaluation_championship_unit", "championship_id", "unit_id"),
    )

    @property
    def points(self) -> int:
        return EVALUATION_COLOR_POINTS.get(self.color, 0)

    def to_dict(self):
        return {
            "id": self.id,
            "championship_id": self.championship_id,
            "unit_id": self.unit_id,
            "evaluated_on": self.evaluated_on.isoformat() if self.evaluated_on else None,
            "area": self.area,
            "evaluation_type": self.evaluation_type,
            "color": self.color,
            "points": self.points,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
