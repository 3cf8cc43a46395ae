"""
Shared fakes and fixtures.

The fakes stand in for the node, the explorer and the warehouse where the
behaviour under test is orchestration; the SQL store is exercised against
SQLite through aiosqlite.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio

from accountant.core.database import init_database, close_database, DatabaseManager
from accountant.core.exceptions import LoadFailure
from accountant.ledger import epochs
from accountant.ledger.store import LedgerStore
from accountant.ledger.types import (
    AddressBalances,
    Category,
    Currency,
    Direction,
    Epoch,
    LedgerEntry,
)
from accountant.services.addresses import MonitoredAddresses
from accountant.services.chain_client import ChainEvent


EPOCH_SIZE = 10
GENESIS_TIME = 1_600_000_000

DELEGATOR = "0x00000000000000000000000000000000000000a1"
OTHER_DELEGATOR = "0x00000000000000000000000000000000000000a2"
GROUP = "0x00000000000000000000000000000000000000b1"
VALIDATOR = "0x00000000000000000000000000000000000000c1"
STRANGER = "0x00000000000000000000000000000000000000f1"


def block_time(block: int) -> int:
    return GENESIS_TIME + block * 5


class FakeChain:
    """In-memory node with ten-block epochs."""

    def __init__(self, head: int = 25, epoch_size: int = EPOCH_SIZE):
        self.head = head
        self.epoch_size = epoch_size
        self.events: Dict[Tuple[str, str], List[ChainEvent]] = defaultdict(list)
        self.balances: Dict[Tuple[str, int], Any] = {}
        self.calls: Dict[Tuple[str, str, str], Any] = {}
        self.signers: List[str] = []
        self.traces: Dict[str, list] = {}
        self.transaction_blocks: Dict[str, int] = {}
        self.symbols: Dict[str, Any] = {}
        self.event_queries: List[Tuple[str, str, int, int]] = []

    def add_event(self, contract: str, name: str, block: int, log_index: int = 0, **args) -> ChainEvent:
        event = ChainEvent(name=name, args=args, block=block, log_index=log_index)
        self.events[(contract, name)].append(event)
        return event

    async def head_block(self) -> int:
        return self.head

    def epoch_number_of_block(self, block: int) -> int:
        return epochs.epoch_number_of_block(block, self.epoch_size)

    def first_block_of_epoch(self, epoch: int) -> int:
        return epochs.first_block_of_epoch(epoch, self.epoch_size)

    def last_block_of_epoch(self, epoch: int) -> int:
        return epochs.last_block_of_epoch(epoch, self.epoch_size)

    async def block_timestamp(self, block: int) -> int:
        return block_time(block)

    async def get_events(
        self,
        contract: str,
        event: str,
        from_block: int,
        to_block: int,
        filters: Optional[Dict[str, Sequence[str]]] = None,
    ) -> List[ChainEvent]:
        self.event_queries.append((contract, event, from_block, to_block))
        filters = filters or {}
        if any(not values for values in filters.values()):
            return []

        return [
            candidate
            for candidate in self.events[(contract, event)]
            if from_block <= candidate.block <= to_block
            and all(candidate.args.get(key) in values for key, values in filters.items())
        ]

    async def get_balance(self, address: str, block: int) -> int:
        value = self.balances.get((address, block), 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def call(self, contract: str, function: str, args: Sequence[Any] = (), block: Optional[int] = None) -> Any:
        value = self.calls.get((contract, function, args[0] if args else ""), 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def token_symbol(self, token: str) -> str:
        value = self.symbols[token]
        if isinstance(value, Exception):
            raise value
        return value

    async def validator_signers(self, block: int) -> List[str]:
        return list(self.signers)

    async def trace_transaction(self, transaction_hash: str) -> list:
        return self.traces.get(transaction_hash, [])

    async def transaction_block(self, transaction_hash: str) -> int:
        return self.transaction_blocks[transaction_hash]


class FakeExplorer:
    def __init__(self):
        self.balances: Dict[Tuple[str, int], Any] = {}
        self.transactions: Dict[str, list] = defaultdict(list)
        self.internal: Dict[str, list] = defaultdict(list)

    async def get_balance(self, address: str, block: Optional[int] = None) -> int:
        value = self.balances.get((address, block), 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def get_transactions(self, address: str, start_block=None, end_block=None) -> list:
        return [trxn for trxn in self.transactions[address] if start_block <= trxn.block <= end_block]

    async def get_internal_transactions(self, address: str, start_block=None, end_block=None) -> list:
        return [trxn for trxn in self.internal[address] if start_block <= trxn.block <= end_block]


class InMemoryStore(LedgerStore):
    """List-backed store with the same idempotency guards as the SQL store."""

    def __init__(self):
        self.revisions: List[int] = []
        self.rows: List[Tuple[int, LedgerEntry]] = []
        self.failing_addresses: set = set()

    async def current_revision(self) -> int:
        return max(self.revisions, default=0)

    async def create_revision(self) -> int:
        revision = await self.current_revision() + 1
        self.revisions.append(revision)
        return revision

    async def last_epoch_processed(self, revision: int) -> int:
        return max((entry.epoch for rev, entry in self.rows if rev == revision), default=0)

    async def all_epochs_processed(self, revision: int) -> List[int]:
        return sorted({entry.epoch for rev, entry in self.rows if rev == revision}, reverse=True)

    async def is_epoch_loaded(self, epoch: int, revision: int) -> bool:
        return any(rev == revision and entry.epoch == epoch for rev, entry in self.rows)

    async def is_address_loaded(self, address: str, epoch: int, revision: int) -> bool:
        return any(
            rev == revision and entry.epoch == epoch and entry.address == address
            for rev, entry in self.rows
        )

    async def insert_batch(self, entries: Sequence[LedgerEntry], revision: int) -> int:
        if not entries or await self.is_epoch_loaded(entries[0].epoch, revision):
            return 0
        self.rows.extend((revision, entry) for entry in entries)
        return len(entries)

    async def insert_address_batch(self, entries: Sequence[LedgerEntry], revision: int) -> int:
        if not entries:
            return 0
        first = entries[0]
        if first.address in self.failing_addresses:
            raise LoadFailure("insert rejected", details={"address": first.address})
        if await self.is_address_loaded(first.address, first.epoch, revision):
            return 0
        self.rows.extend((revision, entry) for entry in entries)
        return len(entries)

    async def aggregated_balances(self, epoch: int, revision: int) -> AddressBalances:
        balances: AddressBalances = {}
        for rev, entry in self.rows:
            if rev != revision or entry.epoch > epoch:
                continue
            per_currency = balances.setdefault(entry.address, {currency: 0 for currency in Currency})
            per_currency[entry.currency] += entry.amount_wei
        return balances


def make_epoch(number: int = 2, epoch_size: int = EPOCH_SIZE) -> Epoch:
    last_block = epochs.last_block_of_epoch(number, epoch_size)
    last_block_time = datetime.fromtimestamp(block_time(last_block), tz=timezone.utc)
    return Epoch(
        number=number,
        first_block=epochs.first_block_of_epoch(number, epoch_size),
        last_block=last_block,
        last_block_time=last_block_time,
        last_block_date=last_block_time.date(),
    )


def make_ledger_entry(
    address: str = DELEGATOR,
    amount_wei: int = 100,
    currency: Currency = Currency.CELO,
    epoch: int = 2,
    category: Category = Category.VOTER,
) -> LedgerEntry:
    earned_at = datetime.fromtimestamp(block_time(20), tz=timezone.utc)
    return LedgerEntry(
        address=address,
        alias="",
        group=None,
        amount=str(amount_wei),
        amount_wei=amount_wei,
        currency=currency,
        epoch=epoch,
        block=20,
        earned_at=earned_at,
        earned_date=earned_at.date(),
        category=category,
        direction=Direction.CREDIT if amount_wei >= 0 else Direction.DEBIT,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def explorer() -> FakeExplorer:
    return FakeExplorer()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def addresses() -> MonitoredAddresses:
    return MonitoredAddresses({
        "delegators": [DELEGATOR, OTHER_DELEGATOR],
        "groups": [],
        "aliases": {DELEGATOR: "Delegator", OTHER_DELEGATOR: "Other Delegator"},
    })


@pytest_asyncio.fixture
async def database(tmp_path):
    """Fresh SQLite warehouse per test."""
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await DatabaseManager.create_tables()
    yield
    await close_database()
