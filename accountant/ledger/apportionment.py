"""
Voter reward apportionment.

Each ``EpochRewardsDistributedToVoters`` event pays a pool to a validator
group. A voter's share is ``reward * voter_total / group_total`` where both
totals are running sums of activation (+) and revocation (-) deltas recorded
before the reward event. All arithmetic is integer; shares are floored.
"""

from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

import structlog

from accountant.core.exceptions import InvariantViolation


logger = structlog.get_logger(__name__)

# (block number, log index) orders events on chain
EventPosition = Tuple[int, int]


@dataclass(frozen=True)
class StakeDelta:
    """Signed change of a voter's active votes for a group."""
    voter: str
    group: str
    units: int
    block: int
    log_index: int = 0

    @property
    def position(self) -> EventPosition:
        return (self.block, self.log_index)


@dataclass(frozen=True)
class RewardEvent:
    """Pooled reward paid to a group's voters."""
    group: str
    value: int
    block: int
    log_index: int = 0

    @property
    def position(self) -> EventPosition:
        return (self.block, self.log_index)


@dataclass(frozen=True)
class VoterShare:
    """A voter's floored portion of one reward event."""
    voter: str
    group: str
    amount: int
    block: int


class RunningTotal:
    """Cumulative sum of deltas in event order, queryable at any position."""

    def __init__(self, deltas: Iterable[StakeDelta]):
        ordered = sorted(deltas, key=lambda d: d.position)
        self.positions: List[EventPosition] = []
        self.totals: List[int] = []
        total = 0
        for delta in ordered:
            total += delta.units
            self.positions.append(delta.position)
            self.totals.append(total)

    def before(self, position: EventPosition) -> int:
        """Total of all deltas strictly before ``position``."""
        index = bisect_left(self.positions, position)
        if index == 0:
            return 0
        return self.totals[index - 1]


def group_running_totals(deltas: Iterable[StakeDelta]) -> Dict[str, RunningTotal]:
    by_group: Dict[str, List[StakeDelta]] = defaultdict(list)
    for delta in deltas:
        by_group[delta.group].append(delta)
    return {group: RunningTotal(items) for group, items in by_group.items()}


def voter_running_totals(deltas: Iterable[StakeDelta]) -> Dict[str, Dict[str, RunningTotal]]:
    """group -> voter -> running total. Only voters with activity in a group appear under it."""
    by_pair: Dict[Tuple[str, str], List[StakeDelta]] = defaultdict(list)
    for delta in deltas:
        by_pair[(delta.group, delta.voter)].append(delta)

    totals: Dict[str, Dict[str, RunningTotal]] = defaultdict(dict)
    for (group, voter), items in by_pair.items():
        totals[group][voter] = RunningTotal(items)
    return totals


def apportion_reward(
    reward: RewardEvent,
    group_total: int,
    voter_totals: Dict[str, int],
) -> List[VoterShare]:
    """
    Split one reward across voters.

    Raises:
        InvariantViolation: if the group's total is negative
    """
    if group_total < 0:
        raise InvariantViolation(
            f"Vote total less than 0 ({group_total}) for {reward.group}",
            details={"group": reward.group, "block": reward.block},
        )

    shares: List[VoterShare] = []
    if group_total == 0:
        if reward.value != 0:
            logger.warning(
                "Reward paid to a group without active votes",
                group=reward.group,
                reward=str(reward.value),
                block=reward.block,
                investigate=True,
            )
        return shares

    for voter, voter_total in voter_totals.items():
        if voter_total == 0:
            continue
        if voter_total < 0:
            logger.warning(
                f"Vote total less than 0 ({voter_total}) for {voter}:{reward.group}",
                address=voter,
                group=reward.group,
                investigate=True,
            )
            continue

        # Floor division keeps the sum of shares within the pool
        amount = reward.value * voter_total // group_total
        if amount == 0:
            continue
        if amount < 0:
            logger.warning(
                f"Calculated reward amount less than 0 ({amount}) for {voter}:{reward.group}",
                address=voter,
                group=reward.group,
                investigate=True,
            )
            continue

        shares.append(VoterShare(voter=voter, group=reward.group, amount=amount, block=reward.block))

    return shares


def apportion_rewards(
    rewards: Iterable[RewardEvent],
    voter_deltas: Iterable[StakeDelta],
    group_deltas: Iterable[StakeDelta],
) -> List[VoterShare]:
    """
    Compute every voter's share of every reward event.

    ``voter_deltas`` are the monitored voters' own activations and
    revocations; ``group_deltas`` are all activations and revocations for
    the rewarded groups, from every voter. Reward events are processed
    independently of each other.
    """
    groups = group_running_totals(group_deltas)
    voters = voter_running_totals(voter_deltas)

    shares: List[VoterShare] = []
    for reward in sorted(rewards, key=lambda r: r.position):
        group_running = groups.get(reward.group)
        group_total = group_running.before(reward.position) if group_running else 0

        voter_totals = {
            voter: running.before(reward.position)
            for voter, running in voters.get(reward.group, {}).items()
        }
        shares.extend(apportion_reward(reward, group_total, voter_totals))

    return shares
