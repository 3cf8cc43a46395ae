"""
Attestation fees withdrawn by the monitored validators' attestation signers.
"""

from typing import Dict, List

from accountant.core.exceptions import ChainError, NodeUnavailableError
from accountant.ledger.types import Category, Currency, Direction, LedgerEntry
from accountant.utils.concurrency import concurrent_map
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, block_times, make_entry


class AttestationFeesCollector(Collector):
    name = "attestation_fees"

    def __init__(self):
        super().__init__()
        self.token_symbols: Dict[str, str] = {}

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch
        keys = await context.addresses.all_signer_keys_of_type("Attestation", context.chain)

        events = await context.chain.get_events(
            "Attestations",
            "Withdrawal",
            epoch.first_block,
            epoch.last_block,
            {"account": keys},
        )
        if not events:
            return []

        times = await block_times(context, (event.block for event in events))
        tokens = sorted({event.args["token"] for event in events})
        await concurrent_map(
            context.detail_concurrency,
            tokens,
            lambda token: self.symbol_for_token(context, token),
        )

        entries: List[LedgerEntry] = []
        for event in events:
            account = event.args["account"]
            symbol = self.token_symbols[event.args["token"]]
            currency = Currency.from_symbol(symbol)
            if currency is None:
                self.logger.warning(
                    f"Attestation fee paid in untracked token {symbol}",
                    address=account,
                    token=event.args["token"],
                    epoch=epoch.number,
                    investigate=True,
                )
                continue

            self.logger.debug(f"Fetching attestation rewards for {account}", epoch=epoch.number)
            entry = make_entry(
                context,
                account,
                int(event.args["amount"]),
                currency,
                Category.ATTESTATION_FEES,
                Direction.CREDIT,
                event.block,
                times[event.block],
                group=context.addresses.group_for_address(account, warn=True),
            )
            if entry:
                entries.append(entry)

        return entries

    async def symbol_for_token(self, context: CollectorContext, token: str) -> str:
        """ERC20 symbol of ``token``, falling back to its address."""
        if token in self.token_symbols:
            return self.token_symbols[token]

        try:
            symbol = await context.chain.token_symbol(token)
        except NodeUnavailableError:
            raise
        except ChainError as e:
            self.logger.error(
                f"Error fetching symbol for {token}",
                token=token,
                error=str(e),
                investigate=True,
            )
            symbol = token

        self.token_symbols[token] = symbol
        return symbol
