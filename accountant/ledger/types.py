"""
Types for ledger derivation and reconciliation.
"""

from datetime import date, datetime
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from accountant.core.exceptions import InvariantViolation


class Currency(str, Enum):
    """Fungible units tracked by the ledger."""
    CELO = "CELO"
    CUSD = "cUSD"

    @classmethod
    def from_symbol(cls, symbol: str) -> Optional["Currency"]:
        for currency in cls:
            if currency.value == symbol:
                return currency
        return None


class Direction(str, Enum):
    """Whether an entry adds to or removes from an address balance."""
    CREDIT = "credit"
    DEBIT = "debit"


class Category(str, Enum):
    """Event category an entry was derived from."""
    ATTESTATION_FEES = "attestationFees"
    EXCHANGE = "exchange"
    GOLD_LOCKED = "goldLocked"
    LOCKED_GOLD_WITHDRAWN = "lockedGoldWithdrawn"
    SLASHING_PENALTY = "slashingPenalty"
    SLASHING_REWARD = "slashingReward"
    STABLE_TRANSFER = "cUSDTransfer"
    NATIVE_TRANSFER = "Transfer"
    TRXN = "trxn"
    INTERNAL_TRXN = "internalTrxn"
    TRXN_FEES = "trxnFees"
    VALIDATOR = "validator"
    GROUP = "group"
    VOTER = "voter"


@dataclass(frozen=True)
class Epoch:
    """Block window of one epoch. Immutable once resolved."""
    number: int
    first_block: int
    last_block: int
    last_block_time: datetime
    last_block_date: date


@dataclass(frozen=True)
class LedgerEntry:
    """
    One immutable credit or debit attributable to one address.

    ``amount_wei`` carries the signed value used for all arithmetic;
    ``amount`` is its display projection at warehouse precision.
    """
    address: str
    alias: str
    group: Optional[str]
    amount: str
    amount_wei: int
    currency: Currency
    epoch: int
    block: int
    earned_at: datetime
    earned_date: date
    category: Category
    direction: Direction

    def __post_init__(self):
        is_credit = self.direction == Direction.CREDIT
        if (self.amount_wei >= 0) != is_credit:
            raise InvariantViolation(
                f"Sign of {self.amount_wei} does not match {self.direction.value}",
                details={"address": self.address, "category": self.category.value, "epoch": self.epoch}
            )

    def to_row(self) -> Dict[str, Any]:
        """Column values for the rewards table."""
        return {
            "address": self.address,
            "alias": self.alias,
            "group": self.group,
            "amount": self.amount,
            "amount_wei": self.amount_wei,
            "currency": self.currency.value,
            "epoch": self.epoch,
            "block": self.block,
            "earned_at": self.earned_at,
            "earned_date": self.earned_date,
            "category": self.category.value,
            "direction": self.direction.value,
        }


# address -> currency -> summed base units
AddressBalances = Dict[str, Dict[Currency, int]]


OVERALL = "Overall"


@dataclass
class ReconciliationRecord:
    """Derived balance of one address compared with its on-chain balance."""
    address: str
    alias: str
    on_chain_total: int
    calculated_total: int
    on_chain_liquid: int
    on_chain_locked: int
    difference: int
    on_chain_stable: int
    calculated_stable: int
    stable_difference: int
    mismatch: bool
    epoch: int

    SUMMED_FIELDS = (
        "on_chain_total",
        "calculated_total",
        "on_chain_liquid",
        "on_chain_locked",
        "difference",
        "on_chain_stable",
        "calculated_stable",
        "stable_difference",
    )

    @property
    def is_overall(self) -> bool:
        return self.address == OVERALL

    def to_dict(self) -> Dict[str, Any]:
        # Base-unit integers exceed JSON-safe range, so they travel as strings
        data = asdict(self)
        for name in self.SUMMED_FIELDS:
            data[name] = str(data[name])
        return data


@dataclass
class CurrentStatus:
    """Warehouse state for the current revision."""
    current_revision: int = 0
    latest_epoch: int = 0
    all_epochs: List[int] = field(default_factory=list)
