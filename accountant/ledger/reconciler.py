"""
Reconciliation of the derived ledger against on-chain balances.

For every known address the on-chain CELO balance (liquid plus locked and
pending withdrawal) and cUSD balance at the epoch's last block are compared
with the ledger's running totals. Any nonzero difference is a mismatch.
"""

from typing import List, Optional

import structlog

from accountant.core.config import settings
from accountant.core.exceptions import NodeUnavailableError
from accountant.services.addresses import MonitoredAddresses
from accountant.services.balances import native_balance
from accountant.services.chain_client import ChainClient
from accountant.services.explorer_client import ExplorerClient
from accountant.utils.concurrency import concurrent_map
from accountant.utils.timing import exec_time
from .store import LedgerStore
from .types import OVERALL, AddressBalances, Currency, ReconciliationRecord


logger = structlog.get_logger(__name__)


def summarize(records: List[ReconciliationRecord], epoch: int) -> ReconciliationRecord:
    """Field-wise sum of ``records`` as the synthetic Overall record."""
    overall = ReconciliationRecord(
        address=OVERALL,
        alias=OVERALL,
        on_chain_total=0,
        calculated_total=0,
        on_chain_liquid=0,
        on_chain_locked=0,
        difference=0,
        on_chain_stable=0,
        calculated_stable=0,
        stable_difference=0,
        mismatch=False,
        epoch=epoch,
    )
    for record in records:
        for name in ReconciliationRecord.SUMMED_FIELDS:
            setattr(overall, name, getattr(overall, name) + getattr(record, name))
        overall.mismatch = overall.mismatch or record.mismatch
    return overall


def compare(
    address: str,
    alias: str,
    epoch: int,
    liquid: int,
    locked: int,
    stable: int,
    calculated: AddressBalances,
) -> ReconciliationRecord:
    """Exact comparison of one address; differences are on-chain minus calculated."""
    balances = calculated.get(address, {})
    calculated_total = balances.get(Currency.CELO, 0)
    calculated_stable = balances.get(Currency.CUSD, 0)

    on_chain_total = liquid + locked
    difference = on_chain_total - calculated_total
    stable_difference = stable - calculated_stable

    return ReconciliationRecord(
        address=address,
        alias=alias,
        on_chain_total=on_chain_total,
        calculated_total=calculated_total,
        on_chain_liquid=liquid,
        on_chain_locked=locked,
        difference=difference,
        on_chain_stable=stable,
        calculated_stable=calculated_stable,
        stable_difference=stable_difference,
        mismatch=difference != 0 or stable_difference != 0,
        epoch=epoch,
    )


class Reconciler:
    """Computes reconciliation records for one epoch of one revision."""

    def __init__(
        self,
        chain: ChainClient,
        explorer: ExplorerClient,
        store: LedgerStore,
        addresses: MonitoredAddresses,
        concurrency: Optional[int] = None,
    ):
        self.chain = chain
        self.explorer = explorer
        self.store = store
        self.addresses = addresses
        self.concurrency = concurrency or settings.reconcile_concurrency
        self.logger = logger.bind(class_name=self.__class__.__name__)

    @exec_time
    async def run(self, epoch: int, block: int, revision: int) -> List[ReconciliationRecord]:
        """
        Mismatched records followed by the Overall summary.

        Matching records are logged but not returned. A failure of the run as
        a whole is logged and yields no records; an unavailable node aborts.
        """
        log = self.logger.bind(epoch=epoch, revision=revision)

        try:
            records = await self.reconcile(epoch, block, revision)
        except NodeUnavailableError:
            raise
        except Exception as e:
            log.error(f"Unable to reconcile rewards for epoch {epoch}", error=str(e), investigate=True)
            return []

        summary = summarize(records, epoch)
        log.info("Overall Reconciliation Result", **summary.to_dict())

        return [record for record in records if record.mismatch] + [summary]

    async def reconcile(self, epoch: int, block: int, revision: int) -> List[ReconciliationRecord]:
        """Per-address records sorted by CELO difference, largest first."""
        log = self.logger.bind(epoch=epoch, revision=revision)

        keys = await self.addresses.all_known_addresses(self.chain)
        calculated = await self.store.aggregated_balances(epoch, revision)

        async def reconcile_address(address: str) -> Optional[ReconciliationRecord]:
            try:
                liquid = await native_balance(self.chain, self.explorer, address, block)
                locked = await self.locked_balance(address, block)
                stable = int(await self.chain.call("StableToken", "balanceOf", [address], block))
            except NodeUnavailableError:
                raise
            except Exception as e:
                log.error(
                    f"Unable to run reconciliation for {address}",
                    address=address,
                    error=str(e),
                    investigate=True,
                )
                return None

            record = compare(
                address,
                self.addresses.lookup_alias(address),
                epoch,
                liquid,
                locked,
                stable,
                calculated,
            )
            log.info("Address reconciliation result", **record.to_dict())
            return record

        results = await concurrent_map(self.concurrency, keys, reconcile_address)
        records = [record for record in results if record is not None]
        records.sort(key=lambda record: record.difference, reverse=True)
        return records

    async def locked_balance(self, address: str, block: int) -> int:
        """Locked CELO plus withdrawals still pending."""
        locked = await self.chain.call("LockedGold", "getAccountTotalLockedGold", [address], block)
        pending = await self.chain.call("LockedGold", "getTotalPendingWithdrawals", [address], block)
        return int(locked) + int(pending)
