"""
CELO <-> cUSD exchanges made by known addresses.
"""

from typing import List

from accountant.ledger.types import Category, Currency, Direction, LedgerEntry
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, block_times, compact, make_entry


class ExchangesCollector(Collector):
    name = "exchanges"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        keys = await context.addresses.all_known_addresses(context.chain)

        events = await context.chain.get_events(
            "Exchange",
            "Exchanged",
            epoch.first_block,
            epoch.last_block,
            {"exchanger": keys},
        )
        times = await block_times(context, (event.block for event in events))

        entries = []
        for event in events:
            exchanger = event.args["exchanger"]
            sold_gold = bool(event.args["soldGold"])
            bought, sold = (Currency.CUSD, Currency.CELO) if sold_gold else (Currency.CELO, Currency.CUSD)
            group = context.addresses.group_for_address(exchanger)

            entries.append(make_entry(
                context, exchanger, int(event.args["buyAmount"]), bought,
                Category.EXCHANGE, Direction.CREDIT, event.block, times[event.block], group=group,
            ))
            entries.append(make_entry(
                context, exchanger, int(event.args["sellAmount"]), sold,
                Category.EXCHANGE, Direction.DEBIT, event.block, times[event.block], group=group,
            ))

        return compact(entries)
