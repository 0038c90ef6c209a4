"""
championship/orm/unit.py
Unit reference data.

Owned by the member/unit directory. The engine only reads it; color
attributes are passed through to dashboards untouched.
"""
from sqlalchemy import Column, Integer, String, Boolean

from championship.orm.base import Base


class Unit(Base):
    """A competing sub-group of club members."""
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    primary_color = Column(String(20), nullable=True)
    secondary_color = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    def colors(self):
        return {
            "primary": self.primary_color,
            "secondary": self.secondary_color,
        }
