"""
Slashing: penalties paid by monitored groups and validators, and rewards
earned by known addresses that reported a slashable offence.
"""

from typing import List

from accountant.ledger.types import Category, Currency, Direction, LedgerEntry
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, block_times, compact, make_entry


class SlashingPenaltiesCollector(Collector):
    name = "slashing_penalties"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        slashable = context.addresses.all_group_owners() + context.addresses.all_validators()

        events = await context.chain.get_events(
            "LockedGold", "AccountSlashed", epoch.first_block, epoch.last_block, {"slashed": slashable}
        )
        times = await block_times(context, (event.block for event in events))

        return compact(
            make_entry(
                context,
                event.args["slashed"],
                int(event.args["penalty"]),
                Currency.CELO,
                Category.SLASHING_PENALTY,
                Direction.DEBIT,
                event.block,
                times[event.block],
                group=context.addresses.group_for_address(event.args["slashed"], warn=True),
            )
            for event in events
        )


class SlashingRewardsCollector(Collector):
    name = "slashing_rewards"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        keys = await context.addresses.all_known_addresses(context.chain)

        events = await context.chain.get_events(
            "LockedGold", "AccountSlashed", epoch.first_block, epoch.last_block, {"reporter": keys}
        )
        times = await block_times(context, (event.block for event in events))

        return compact(
            make_entry(
                context,
                event.args["reporter"],
                int(event.args["reward"]),
                Currency.CELO,
                Category.SLASHING_REWARD,
                Direction.CREDIT,
                event.block,
                times[event.block],
            )
            for event in events
        )
