"""
Epoch payments to monitored validators and their groups, paid in cUSD at the
epoch's last block.
"""

from typing import List

from accountant.ledger.types import Category, Currency, LedgerEntry
from accountant.utils.concurrency import concurrent_map
from accountant.utils.timing import exec_time
from .base import Collector, CollectorContext, compact, epoch_entry


class ValidatorRewardsCollector(Collector):
    name = "validator_rewards"

    @exec_time
    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        epoch = context.epoch

        async def payments_for(validator: str) -> list:
            self.logger.debug(f"Fetching validator rewards for {validator}", epoch=epoch.number)
            events = await context.chain.get_events(
                "Validators",
                "ValidatorEpochPaymentDistributed",
                epoch.last_block,
                epoch.last_block,
                {"validator": [validator]},
            )
            if len(events) > 1:
                self.logger.warning(
                    f"Validator {validator} received multiple payouts during epoch {epoch.number}",
                    address=validator,
                    epoch=epoch.number,
                    payouts=len(events),
                    investigate=True,
                )
            return events

        per_validator = await concurrent_map(
            context.detail_concurrency, context.addresses.all_validators(), payments_for
        )

        entries = []
        for events in per_validator:
            for event in events:
                validator = event.args["validator"]
                group = event.args["group"]
                entries.append(epoch_entry(
                    context, validator, int(event.args["validatorPayment"]),
                    Currency.CUSD, Category.VALIDATOR, group=group,
                ))
                entries.append(epoch_entry(
                    context, group, int(event.args["groupPayment"]),
                    Currency.CUSD, Category.GROUP, group=group,
                ))

        return compact(entries)
