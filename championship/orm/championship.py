"""
championship/orm/championship.py
Championship: a scored competition period between units.

Lifecycle: DRAFT -> ACTIVE -> CLOSED (DRAFT -> CLOSED is also allowed).
CLOSED is terminal. At most one championship may be ACTIVE at a time.
"""
from enum import Enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, CheckConstraint, Index, text
)

from championship.orm.base import TimestampedModel


class ChampionshipStatus(str, Enum):
    """Championship lifecycle status."""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class Championship(TimestampedModel):
    """
    Championship record.

    current_snapshot_version is the pointer to the snapshot served to
    readers. It is only ever moved by the ranking synchronizer, inside
    the same transaction that writes the snapshot it points to.

    sync_lease_token / sync_lease_expires_at form the single-writer lease
    held while a synchronization is in flight.
    """
    __tablename__ = "championships"

    name = Column(String(255), nullable=False)
    year = Column(Integer, nullable=False, index=True)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    status = Column(
        String(20),
        nullable=False,
        default=ChampionshipStatus.DRAFT.value,
        index=True
    )
    activated_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    current_snapshot_version = Column(Integer, nullable=True)

    sync_lease_token = Column(String(64), nullable=True)
    sync_lease_expires_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'closed')",
            name="ck_championship_status_valid"
        ),
        CheckConstraint(
            "end_date >= start_date",
            name="ck_championship_window"
        ),
        CheckConstraint(
            "(status != 'closed') OR (closed_at IS NOT NULL)",
            name="ck_closed_has_timestamp"
        ),
        # Only one ACTIVE championship
        Index(
            "uq_championship_single_active",
            "status",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    @property
    def is_closed(self) -> bool:
        return self.status == ChampionshipStatus.CLOSED.value

    @property
    def is_active(self) -> bool:
        return self.status == ChampionshipStatus.ACTIVE.value

    def contains(self, day) -> bool:
        """True when the date falls inside the championship window (inclusive)."""
        return self.start_date <= day <= self.end_date

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "year": self.year,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "current_snapshot_version": self.current_snapshot_version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
