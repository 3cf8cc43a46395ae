"""
Collector interface and shared helpers.

A collector turns one category of chain events into ledger entries for one
epoch. Collectors share nothing but this interface; the helpers here are
plain functions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog

from accountant.core.config import settings
from accountant.ledger.types import Category, Currency, Direction, Epoch, LedgerEntry
from accountant.ledger.units import display_amount
from accountant.services.addresses import MonitoredAddresses
from accountant.services.chain_client import ChainClient
from accountant.services.explorer_client import ExplorerClient
from accountant.utils.blocktime import timestamp_from_block_time
from accountant.utils.concurrency import concurrent_map


logger = structlog.get_logger(__name__)


@dataclass
class CollectorContext:
    """Everything a collector needs for one epoch."""
    epoch: Epoch
    addresses: MonitoredAddresses
    chain: ChainClient
    explorer: ExplorerClient
    detail_concurrency: int = settings.detail_concurrency


class Collector(ABC):
    """Produces the ledger entries of one event category for an epoch."""

    name: str = ""

    def __init__(self):
        self.logger = logger.bind(class_name=self.__class__.__name__, collector=self.name)

    @abstractmethod
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        """Entries for ``context.epoch``. Any exception is a collection failure."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"


def make_entry(
    context: CollectorContext,
    address: str,
    magnitude: int,
    currency: Currency,
    category: Category,
    direction: Direction,
    block: int,
    earned_at: datetime,
    group: Optional[str] = None,
) -> Optional[LedgerEntry]:
    """
    Build one entry from a non-negative base-unit magnitude.

    The sign comes from ``direction``. Zero magnitudes produce no entry.
    """
    if magnitude == 0:
        return None

    negate = direction == Direction.DEBIT
    address = address.lower()
    return LedgerEntry(
        address=address,
        alias=context.addresses.lookup_alias(address),
        group=group.lower() if group else None,
        amount=display_amount(magnitude, negate=negate),
        amount_wei=-magnitude if negate else magnitude,
        currency=currency,
        epoch=context.epoch.number,
        block=block,
        earned_at=earned_at,
        earned_date=earned_at.date(),
        category=category,
        direction=direction,
    )


def epoch_entry(
    context: CollectorContext,
    address: str,
    magnitude: int,
    currency: Currency,
    category: Category,
    group: Optional[str] = None,
) -> Optional[LedgerEntry]:
    """Credit booked at the epoch's last block."""
    epoch = context.epoch
    return make_entry(
        context,
        address,
        magnitude,
        currency,
        category,
        Direction.CREDIT,
        epoch.last_block,
        epoch.last_block_time,
        group=group,
    )


async def block_times(context: CollectorContext, blocks: Iterable[int]) -> Dict[int, datetime]:
    """Timestamps of ``blocks``, fetched with bounded concurrency."""
    unique = sorted(set(blocks))

    async def fetch(block: int) -> datetime:
        return timestamp_from_block_time(await context.chain.block_timestamp(block))

    times = await concurrent_map(context.detail_concurrency, unique, fetch)
    return dict(zip(unique, times))


def compact(entries: Iterable[Optional[LedgerEntry]]) -> List[LedgerEntry]:
    return [entry for entry in entries if entry is not None]
