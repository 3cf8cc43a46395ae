"""
ERC20 transfers of CELO and cUSD into and out of known addresses.

Incoming transfers are read up to the block before the epoch's last block,
outgoing ones through the last block.
"""

from typing import List

from accountant.ledger.types import Category, Currency, Direction, LedgerEntry
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, block_times, compact, make_entry


class TokenTransfersCollector(Collector):
    """Transfers of one token contract, configured per instance."""

    def __init__(self, name: str, contract: str, currency: Currency, category: Category):
        self.name = name
        self.contract = contract
        self.currency = currency
        self.category = category
        super().__init__()

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        keys = await context.addresses.all_known_addresses(context.chain)

        transfers_to = await context.chain.get_events(
            self.contract, "Transfer", epoch.first_block, epoch.last_block - 1, {"to": keys}
        )
        transfers_from = await context.chain.get_events(
            self.contract, "Transfer", epoch.first_block, epoch.last_block, {"from": keys}
        )
        times = await block_times(context, (event.block for event in transfers_to + transfers_from))

        entries = []
        for events, side, direction in (
            (transfers_to, "to", Direction.CREDIT),
            (transfers_from, "from", Direction.DEBIT),
        ):
            for event in events:
                address = event.args[side]
                entries.append(make_entry(
                    context,
                    address,
                    int(event.args["value"]),
                    self.currency,
                    self.category,
                    direction,
                    event.block,
                    times[event.block],
                    group=context.addresses.group_for_address(address),
                ))

        return compact(entries)


def stable_token_collector() -> TokenTransfersCollector:
    return TokenTransfersCollector("stable_token", "StableToken", Currency.CUSD, Category.STABLE_TRANSFER)


def native_token_collector() -> TokenTransfersCollector:
    return TokenTransfersCollector("native_token", "GoldToken", Currency.CELO, Category.NATIVE_TRANSFER)
