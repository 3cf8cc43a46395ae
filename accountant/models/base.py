"""
Declarative base shared by all warehouse tables.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


class BaseModel(Base):
    """Abstract base for accountant tables."""

    __abstract__ = True

    def to_dict(self) -> dict:
        return {column.name: getattr(self, column.key) for column in self.__mapper__.columns}


class InsertedAtMixin:
    """Insertion timestamp, set once when the row is written."""

    inserted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="When the row was written"
    )
