"""
Event collectors and the default registry.
"""

from typing import List

from .base import Collector, CollectorContext, make_entry, epoch_entry, block_times
from .attestation_fees import AttestationFeesCollector
from .exchanges import ExchangesCollector
from .locked_gold import LockedGoldCollector
from .slashing import SlashingPenaltiesCollector, SlashingRewardsCollector
from .token_transfers import TokenTransfersCollector, stable_token_collector, native_token_collector
from .transactions import TransactionsCollector
from .validator_rewards import ValidatorRewardsCollector
from .voter_rewards import VoterRewardsCollector


def default_collectors() -> List[Collector]:
    """One fresh instance of every collector, in load order."""
    return [
        AttestationFeesCollector(),
        ExchangesCollector(),
        LockedGoldCollector(),
        SlashingPenaltiesCollector(),
        SlashingRewardsCollector(),
        stable_token_collector(),
        native_token_collector(),
        TransactionsCollector(),
        ValidatorRewardsCollector(),
        VoterRewardsCollector(),
    ]


__all__ = [
    "Collector",
    "CollectorContext",
    "make_entry",
    "epoch_entry",
    "block_times",
    "default_collectors",
    "AttestationFeesCollector",
    "ExchangesCollector",
    "LockedGoldCollector",
    "SlashingPenaltiesCollector",
    "SlashingRewardsCollector",
    "TokenTransfersCollector",
    "TransactionsCollector",
    "ValidatorRewardsCollector",
    "VoterRewardsCollector",
]
