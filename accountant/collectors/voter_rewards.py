"""
Voter rewards.

Each group's epoch reward pool is split across the monitored voters by their
share of the group's active votes when the reward was paid.
"""

from typing import List

from accountant.ledger.apportionment import RewardEvent, StakeDelta, apportion_rewards
from accountant.ledger.types import Category, Currency, LedgerEntry
from accountant.services.chain_client import ChainEvent
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, compact, epoch_entry


ACTIVATED = "ValidatorGroupVoteActivated"
REVOKED = "ValidatorGroupActiveVoteRevoked"
DISTRIBUTED = "EpochRewardsDistributedToVoters"


def stake_delta(event: ChainEvent) -> StakeDelta:
    """Activation adds units, revocation removes them."""
    units = int(event.args["units"])
    return StakeDelta(
        voter=event.args["account"],
        group=event.args["group"],
        units=units if event.name == ACTIVATED else -units,
        block=event.block,
        log_index=event.log_index,
    )


class VoterRewardsCollector(Collector):
    name = "voter_rewards"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        voters = context.addresses.all_voters()

        voter_events = await self.vote_events(context, {"account": voters})
        groups = sorted({event.args["group"] for event in voter_events if event.name == ACTIVATED})
        if not groups:
            return []

        group_events = await self.vote_events(context, {"group": groups})
        reward_events = await context.chain.get_events(
            "Election", DISTRIBUTED, epoch.last_block, epoch.last_block, {"group": groups}
        )

        shares = apportion_rewards(
            rewards=[
                RewardEvent(
                    group=event.args["group"],
                    value=int(event.args["value"]),
                    block=event.block,
                    log_index=event.log_index,
                )
                for event in reward_events
            ],
            voter_deltas=[stake_delta(event) for event in voter_events],
            group_deltas=[stake_delta(event) for event in group_events],
        )

        return compact(
            epoch_entry(context, share.voter, share.amount, Currency.CELO, Category.VOTER, group=share.group)
            for share in shares
        )

    async def vote_events(self, context: CollectorContext, filters) -> List[ChainEvent]:
        """Activations and revocations from genesis through the epoch's last block."""
        last_block = context.epoch.last_block
        activated = await context.chain.get_events("Election", ACTIVATED, 0, last_block, filters)
        revoked = await context.chain.get_events("Election", REVOKED, 0, last_block, filters)
        return activated + revoked
