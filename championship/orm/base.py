"""
championship/orm/base.py
Declarative base and the timestamped abstract model.

Most tables map straight onto `Base` and declare their own columns.
`TimestampedModel` is for rows updated in place over their lifetime.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TimestampedModel(Base):
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<{type(self).__name__} id={self.id}>"
