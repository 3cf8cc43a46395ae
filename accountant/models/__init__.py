"""
Warehouse tables for the accountant.

The rewards and revisions tables are partitioned logically by the
``revision`` column; backfill cursors track range backfills.
"""

from .base import Base, BaseModel, InsertedAtMixin
from .reward import RewardRow
from .revision import RevisionRow
from .backfill import BackfillCursor, BackfillStatus

__all__ = [
    "Base",
    "BaseModel",
    "InsertedAtMixin",
    "RewardRow",
    "RevisionRow",
    "BackfillCursor",
    "BackfillStatus",
]
