"""
Ledger store.

Rows are appended per (revision, epoch) or per (revision, epoch, address)
partition and never updated or deleted. The existence check before every
insert is the only concurrency control: a retried or overlapping load of a
partition that already has rows is a logged no-op.
"""

import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select, func, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accountant.core.database import get_async_session
from accountant.core.exceptions import LoadFailure, RevisionConflictError
from accountant.models.base import utcnow
from accountant.models.reward import RewardRow
from accountant.models.revision import RevisionRow
from .types import AddressBalances, Currency, LedgerEntry


logger = structlog.get_logger(__name__)

EPOCH_LISTING_LIMIT = 100


class LedgerStore(ABC):
    """Idempotent append-only storage of ledger entries."""

    @abstractmethod
    async def current_revision(self) -> int:
        """Highest revision, or 0 when none exists."""

    @abstractmethod
    async def create_revision(self) -> int:
        """Insert ``max + 1`` and return it."""

    @abstractmethod
    async def last_epoch_processed(self, revision: int) -> int:
        """Highest epoch with rows in ``revision``, or 0."""

    @abstractmethod
    async def all_epochs_processed(self, revision: int) -> List[int]:
        """Epochs with rows in ``revision``, newest first."""

    @abstractmethod
    async def is_epoch_loaded(self, epoch: int, revision: int) -> bool:
        ...

    @abstractmethod
    async def is_address_loaded(self, address: str, epoch: int, revision: int) -> bool:
        ...

    @abstractmethod
    async def insert_batch(self, entries: Sequence[LedgerEntry], revision: int) -> int:
        """Insert one epoch's entries; returns rows written (0 when already loaded)."""

    @abstractmethod
    async def insert_address_batch(self, entries: Sequence[LedgerEntry], revision: int) -> int:
        """Insert one address's entries for one epoch; returns rows written."""

    @abstractmethod
    async def aggregated_balances(self, epoch: int, revision: int) -> AddressBalances:
        """Summed base units per address and currency over epochs ``<= epoch``."""


class SqlLedgerStore(LedgerStore):
    """Ledger store backed by the SQLAlchemy warehouse tables."""

    def __init__(self):
        self.logger = logger.bind(class_name=self.__class__.__name__)

    async def current_revision(self) -> int:
        async with get_async_session() as session:
            return await self._max_revision(session)

    async def create_revision(self) -> int:
        try:
            async with get_async_session() as session:
                revision = await self._max_revision(session) + 1
                session.add(RevisionRow(revision=revision))
                await session.flush()
        except IntegrityError as e:
            self.logger.warning("Revision already created by another writer", error=str(e), investigate=True)
            raise RevisionConflictError(
                "Revision was created concurrently",
                details={"error": str(e)}
            )

        # Insert-then-reread: the new revision must now be visible as the maximum
        latest = await self.current_revision()
        if latest < revision:
            raise RevisionConflictError(
                f"Revision {revision} missing after insert",
                details={"revision": revision, "latest": latest}
            )
        if latest > revision:
            self.logger.warning(
                "Another revision was created right after ours",
                revision=revision,
                latest=latest,
                investigate=True,
            )

        self.logger.info(f"Created new revision with ID {revision}", revision=revision)
        return revision

    async def last_epoch_processed(self, revision: int) -> int:
        async with get_async_session() as session:
            result = await session.execute(
                select(func.max(RewardRow.epoch)).where(RewardRow.revision == revision)
            )
            return result.scalar() or 0

    async def all_epochs_processed(self, revision: int) -> List[int]:
        async with get_async_session() as session:
            result = await session.execute(
                select(RewardRow.epoch)
                .where(RewardRow.revision == revision)
                .distinct()
                .order_by(RewardRow.epoch.desc())
                .limit(EPOCH_LISTING_LIMIT)
            )
            return [row for row in result.scalars().all()]

    async def is_epoch_loaded(self, epoch: int, revision: int) -> bool:
        async with get_async_session() as session:
            return await self._count(session, revision, epoch) > 0

    async def is_address_loaded(self, address: str, epoch: int, revision: int) -> bool:
        async with get_async_session() as session:
            return await self._count(session, revision, epoch, address) > 0

    async def insert_batch(self, entries: Sequence[LedgerEntry], revision: int) -> int:
        if not entries:
            return 0

        epoch = entries[0].epoch
        return await self._guarded_insert(entries, revision, epoch)

    async def insert_address_batch(self, entries: Sequence[LedgerEntry], revision: int) -> int:
        if not entries:
            return 0

        first = entries[0]
        return await self._guarded_insert(entries, revision, first.epoch, first.address)

    async def aggregated_balances(self, epoch: int, revision: int) -> AddressBalances:
        async with get_async_session() as session:
            result = await session.execute(
                select(
                    RewardRow.address,
                    RewardRow.currency,
                    func.sum(RewardRow.amount_wei).label("balance"),
                )
                .where(RewardRow.revision == revision, RewardRow.epoch <= epoch)
                .group_by(RewardRow.address, RewardRow.currency)
                .order_by(RewardRow.address, RewardRow.currency)
            )
            rows = result.all()

        balances: AddressBalances = defaultdict(lambda: {currency: 0 for currency in Currency})
        for address, currency, balance in rows:
            known = Currency.from_symbol(currency)
            if known is None:
                self.logger.warning("Unknown currency in ledger", address=address, currency=currency, investigate=True)
                continue
            balances[address][known] = int(balance or 0)

        return dict(balances)

    async def _guarded_insert(
        self,
        entries: Sequence[LedgerEntry],
        revision: int,
        epoch: int,
        address: Optional[str] = None,
    ) -> int:
        log = self.logger.bind(epoch=epoch, revision=revision, address=address)

        try:
            async with get_async_session() as session:
                if await self._count(session, revision, epoch, address) > 0:
                    if address is None:
                        log.info(f"Already inserted rewards for epoch {epoch}, revision: {revision}")
                    else:
                        log.info(f"Already inserted rewards for {address}, epoch: {epoch}, revision: {revision}")
                    return 0

                inserted_at = utcnow()
                rows = [self._row(entry, revision, inserted_at) for entry in entries]
                await session.execute(insert(RewardRow), rows)
        except SQLAlchemyError as e:
            log.error("Could not load rewards", error=str(e), investigate=True)
            raise LoadFailure(
                f"Could not load rewards for epoch {epoch}",
                details={"epoch": epoch, "revision": revision, "address": address, "error": str(e)}
            )

        log.info(f"Loaded {len(rows)} records into {RewardRow.__tablename__}")
        return len(rows)

    @staticmethod
    def _row(entry: LedgerEntry, revision: int, inserted_at) -> dict:
        row = entry.to_row()
        row.update(
            id=str(uuid.uuid4()),
            revision=revision,
            amount=Decimal(entry.amount),
            amount_wei=Decimal(entry.amount_wei),
            inserted_at=inserted_at,
        )
        return row

    @staticmethod
    async def _max_revision(session: AsyncSession) -> int:
        result = await session.execute(select(func.max(RevisionRow.revision)))
        return result.scalar() or 0

    @staticmethod
    async def _count(
        session: AsyncSession,
        revision: int,
        epoch: int,
        address: Optional[str] = None,
    ) -> int:
        query = select(func.count(RewardRow.id)).where(
            RewardRow.revision == revision,
            RewardRow.epoch == epoch,
        )
        if address is not None:
            query = query.where(RewardRow.address == address)

        result = await session.execute(query)
        return result.scalar() or 0


_store: Optional[LedgerStore] = None


def get_ledger_store() -> LedgerStore:
    """Get or create the global ledger store."""
    global _store
    if _store is None:
        _store = SqlLedgerStore()
    return _store
