"""
Backfill cursor model - persisted progress of a range backfill.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from accountant.core.config import settings
from .base import BaseModel, utcnow


class BackfillStatus(str, Enum):
    """Status of a backfill job."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BackfillCursor(BaseModel):
    """Last completed epoch of a range backfill, so a crashed job can resume."""

    __tablename__ = settings.backfill_cursors_table

    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    from_epoch: Mapped[int] = mapped_column(Integer, nullable=False)
    to_epoch: Mapped[int] = mapped_column(Integer, nullable=False)
    last_completed_epoch: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=BackfillStatus.RUNNING.value, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def next_epoch(self) -> int:
        if self.last_completed_epoch is None:
            return self.from_epoch
        return self.last_completed_epoch + 1

    def __repr__(self) -> str:
        return f"<BackfillCursor(job_id={self.job_id}, next_epoch={self.next_epoch}, status={self.status})>"
