"""
Revision model - one row per full recompute of the ledger.
"""

from datetime import datetime

from sqlalchemy import Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from accountant.core.config import settings
from .base import BaseModel, utcnow


class RevisionRow(BaseModel):
    """A revision partitions independent recomputations of the ledger."""

    __tablename__ = settings.revisions_table

    revision: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<RevisionRow(revision={self.revision})>"
