"""
Transactions of known addresses, from the explorer.

Covers top-level transactions (value plus gas for senders), internal CALL
frames that move value into or out of the address, and for elected validator
signers the transaction fees they earned, implied from the balance change
over the epoch.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Set

from accountant.core.exceptions import ExplorerError
from accountant.ledger.types import Category, Currency, Direction, LedgerEntry
from accountant.services.balances import native_balance
from accountant.utils.blocktime import timestamp_from_block_time
from accountant.utils.concurrency import concurrent_map
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, block_times, compact, epoch_entry, make_entry


@dataclass
class InternalCall:
    """Value-moving frame of a transaction trace, placed in its block."""
    from_address: str
    to_address: str
    value: int
    block: int
    earned_at: datetime


class TransactionsCollector(Collector):
    name = "transactions"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        signers = set(await context.chain.validator_signers(context.epoch.first_block))
        keys = await context.addresses.all_known_addresses(context.chain)

        entries: List[LedgerEntry] = []
        # Keys run one at a time so detail lookups never nest
        for key in keys:
            entries.extend(await self.collect_for_address(context, key, signers))
        return entries

    async def collect_for_address(
        self,
        context: CollectorContext,
        key: str,
        signers: Set[str],
    ) -> List[LedgerEntry]:
        epoch = context.epoch
        group = context.addresses.group_for_address(key)
        self.logger.debug(f"Fetching trxns for {key}", epoch=epoch.number)

        entries = []
        transactions = await context.explorer.get_transactions(key, epoch.first_block, epoch.last_block)
        for trxn in transactions:
            outgoing = trxn.from_address == key
            entries.append(make_entry(
                context,
                key,
                trxn.value + trxn.fee if outgoing else trxn.value,
                Currency.CELO,
                Category.TRXN,
                Direction.DEBIT if outgoing else Direction.CREDIT,
                trxn.block,
                timestamp_from_block_time(trxn.timestamp),
                group=group,
            ))

        for call in await self.internal_calls(context, key):
            outgoing = call.from_address == key
            entries.append(make_entry(
                context,
                key,
                call.value,
                Currency.CELO,
                Category.INTERNAL_TRXN,
                Direction.DEBIT if outgoing else Direction.CREDIT,
                call.block,
                call.earned_at,
                group=group,
            ))

        entries = compact(entries)

        # Only elected signers earn transaction fees
        if key in signers:
            fee = await self.implied_fees(context, key, entries)
            if fee > 0:
                entries.append(epoch_entry(context, key, fee, Currency.CELO, Category.TRXN_FEES, group=group))

        return entries

    async def internal_calls(self, context: CollectorContext, key: str) -> List[InternalCall]:
        """Value-moving CALL frames below the top level that touch ``key``."""
        epoch = context.epoch
        internal = await context.explorer.get_internal_transactions(key, epoch.first_block, epoch.last_block)
        hashes = sorted({trxn.transaction_hash for trxn in internal if trxn.transaction_hash})
        if not hashes:
            return []

        traces = await concurrent_map(context.detail_concurrency, hashes, context.chain.trace_transaction)
        relevant = [
            call
            for trace in traces
            for call in trace
            # Depth 0 is the transaction itself, already booked from the transaction list
            if call.depth > 0 and call.call_type == "CALL" and key in (call.from_address, call.to_address)
        ]
        if not relevant:
            return []

        relevant_hashes = sorted({call.transaction_hash for call in relevant})
        blocks = await concurrent_map(context.detail_concurrency, relevant_hashes, context.chain.transaction_block)
        block_of: Dict[str, int] = dict(zip(relevant_hashes, blocks))
        times = await block_times(context, blocks)

        return [
            InternalCall(
                from_address=call.from_address,
                to_address=call.to_address,
                value=call.value,
                block=block_of[call.transaction_hash],
                earned_at=times[block_of[call.transaction_hash]],
            )
            for call in relevant
        ]

    async def implied_fees(self, context: CollectorContext, key: str, entries: List[LedgerEntry]) -> int:
        """Balance change over the epoch not explained by booked transactions."""
        epoch = context.epoch
        start_block = epoch.first_block if epoch.first_block <= 1 else epoch.first_block - 1

        try:
            starting = await native_balance(context.chain, context.explorer, key, start_block)
            ending = await native_balance(context.chain, context.explorer, key, epoch.last_block)
        except ExplorerError as e:
            self.logger.error(
                f"Could not determine balances for {key}, skipping fees",
                address=key,
                epoch=epoch.number,
                error=str(e),
                investigate=True,
            )
            return 0

        transacted = sum(entry.amount_wei for entry in entries if entry.currency == Currency.CELO)
        fees = ending - starting - transacted

        if fees < 0:
            self.logger.warning(
                "Fees apparently less than 0, may require manual intervention",
                address=key,
                epoch=epoch.number,
                starting_balance=str(starting),
                ending_balance=str(ending),
                fees=str(fees),
                trxns=str(transacted),
                investigate=True,
            )
            return 0

        return fees

