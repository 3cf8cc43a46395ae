"""
CELO locked into and withdrawn from the LockedGold contract.
"""

from typing import List

from accountant.ledger.types import Category, Currency, Direction, LedgerEntry
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, block_times, compact, make_entry


class LockedGoldCollector(Collector):
    name = "locked_gold"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        keys = await context.addresses.all_known_addresses(context.chain)

        locked = await context.chain.get_events(
            "LockedGold", "GoldLocked", epoch.first_block, epoch.last_block, {"account": keys}
        )
        withdrawn = await context.chain.get_events(
            "LockedGold", "GoldWithdrawn", epoch.first_block, epoch.last_block, {"account": keys}
        )
        times = await block_times(context, (event.block for event in locked + withdrawn))

        entries = []
        for events, category, direction in (
            (locked, Category.GOLD_LOCKED, Direction.CREDIT),
            (withdrawn, Category.LOCKED_GOLD_WITHDRAWN, Direction.DEBIT),
        ):
            for event in events:
                account = event.args["account"]
                entries.append(make_entry(
                    context,
                    account,
                    int(event.args["value"]),
                    Currency.CELO,
                    category,
                    direction,
                    event.block,
                    times[event.block],
                    group=context.addresses.group_for_address(account),
                ))

        return compact(entries)
