"""
Reward model - one immutable ledger fact per row.

Rows are appended per (revision, epoch[, address]) and never updated.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, BigInteger, Numeric, Date, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from accountant.core.config import settings
from .base import BaseModel, InsertedAtMixin


class RewardRow(BaseModel, InsertedAtMixin):
    """Ledger entry as stored in the warehouse."""

    __tablename__ = settings.rewards_table

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="uuid4 assigned at insert")
    revision: Mapped[int] = mapped_column(Integer, nullable=False)
    epoch: Mapped[int] = mapped_column(Integer, nullable=False)

    address: Mapped[str] = mapped_column(String(42), nullable=False)
    alias: Mapped[str] = mapped_column(String(255), default="")
    group: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(38, settings.numeric_scale),
        comment="Display amount, truncated to the warehouse scale"
    )
    amount_wei: Mapped[Decimal] = mapped_column(
        Numeric(78, 0),
        comment="Signed amount in base units"
    )
    currency: Mapped[str] = mapped_column(String(42), nullable=False)

    block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    earned_date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped[str] = mapped_column(String(40), nullable=False)
    direction: Mapped[str] = mapped_column("type", String(10), nullable=False, comment="credit or debit")

    __table_args__ = (
        Index("idx_rewards_revision_epoch", "revision", "epoch"),
        Index("idx_rewards_revision_epoch_address", "revision", "epoch", "address"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardRow(revision={self.revision}, epoch={self.epoch}, address={self.address}, "
            f"category={self.category}, amount_wei={self.amount_wei})>"
        )
