"""
championship/orm/ranking_snapshot.py
Versioned ranking snapshots.

A snapshot is the published result of one full recomputation. Snapshots
are written once and never updated; the championship's
current_snapshot_version says which one readers are served.
"""
import json
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint,
    CheckConstraint, Index
)
from sqlalchemy.orm import relationship

from championship.orm.base import Base


class RankingSnapshot(Base):
    __tablename__ = "ranking_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    championship_id = Column(
        Integer,
        ForeignKey("championships.id", ondelete="CASCADE"),
        nullable=False
    )
    version = Column(Integer, nullable=False)
    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    synced_by = Column(Integer, nullable=True)
    unit_count = Column(Integer, nullable=False, default=0)
    checksum_hash = Column(String(64), nullable=True)

    entries = relationship(
        "UnitScoreEntry",
        back_populates="snapshot",
        order_by="UnitScoreEntry.rank",
        lazy="selectin",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("championship_id", "version", name="uq_snapshot_version"),
        CheckConstraint("version >= 1", name="ck_snapshot_version_positive"),
        Index("idx_snapshot_championship", "championship_id"),
    )

    def to_dict(self):
        return {
            "championship_id": self.championship_id,
            "version": self.version,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
            "unit_count": self.unit_count,
            "checksum_hash": self.checksum_hash,
        }


class UnitScoreEntry(Base):
    """One unit's score inside a snapshot."""
    __tablename__ = "unit_score_entries"

    id = Column(Integer, primary_key=True, index=True)
    snapshot_id = Column(
        Integer,
        ForeignKey("ranking_snapshots.id", ondelete="CASCADE"),
        nullable=False
    )
    unit_id = Column(Integer, nullable=False)
    unit_name = Column(String(120), nullable=False)
    primary_color = Column(String(20), nullable=True)
    secondary_color = Column(String(20), nullable=True)
    rank = Column(Integer, nullable=False)
    total = Column(Integer, nullable=False, default=0)
    demerit_count = Column(Integer, nullable=False, default=0)
    breakdown_json = Column(Text, nullable=False, default="{}")
    goals_json = Column(Text, nullable=False, default="[]")

    snapshot = relationship("RankingSnapshot", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("snapshot_id", "unit_id", name="uq_entry_unit"),
        UniqueConstraint("snapshot_id", "rank", name="uq_entry_rank"),
        CheckConstraint("rank >= 1", name="ck_entry_rank_positive"),
    )

    @property
    def breakdown(self):
        return json.loads(self.breakdown_json or "{}")

    @property
    def goals(self):
        return json.loads(self.goals_json or "[]")

    def to_dict(self):
        return {
            "rank": self.rank,
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "colors": {
                "primary": self.primary_color,
                "secondary": self.secondary_color,
            },
            "total": self.total,
            "demerit_count": self.demerit_count,
            "breakdown": self.breakdown,
            "goals": self.goals,
        }
