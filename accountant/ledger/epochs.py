"""
Epoch boundaries.

Celo epochs are fixed-length windows of blocks. Block 0 is epoch 0; every
later block ``b`` belongs to epoch ``ceil(b / size)``.
"""

from typing import Protocol

import structlog

from accountant.utils.blocktime import timestamp_from_block_time
from .types import Epoch


logger = structlog.get_logger(__name__)


def epoch_number_of_block(block: int, epoch_size: int) -> int:
    if block < 0:
        raise ValueError(f"Block number must be non-negative, got {block}")
    return -(-block // epoch_size)


def first_block_of_epoch(epoch: int, epoch_size: int) -> int:
    if epoch < 0:
        raise ValueError(f"Epoch number must be non-negative, got {epoch}")
    if epoch == 0:
        return 0
    return (epoch - 1) * epoch_size + 1


def last_block_of_epoch(epoch: int, epoch_size: int) -> int:
    if epoch == 0:
        return 0
    return first_block_of_epoch(epoch, epoch_size) + epoch_size - 1


class EpochSource(Protocol):
    """Chain capabilities needed to resolve epochs."""

    async def head_block(self) -> int: ...

    def epoch_number_of_block(self, block: int) -> int: ...

    def first_block_of_epoch(self, epoch: int) -> int: ...

    def last_block_of_epoch(self, epoch: int) -> int: ...

    async def block_timestamp(self, block: int) -> int: ...


class EpochResolver:
    """Maps the chain head and epoch numbers to resolved ``Epoch`` windows."""

    def __init__(self, chain: EpochSource):
        self.chain = chain
        self.logger = logger.bind(class_name=self.__class__.__name__)

    async def current_epoch(self) -> int:
        head = await self.chain.head_block()
        return self.chain.epoch_number_of_block(head)

    async def epoch_completed(self, epoch: int) -> bool:
        """An epoch is complete once the head has moved into a later one."""
        return epoch < await self.current_epoch()

    async def get_epoch(self, epoch: int) -> Epoch:
        first_block = self.chain.first_block_of_epoch(epoch)
        last_block = self.chain.last_block_of_epoch(epoch)
        block_time = await self.chain.block_timestamp(last_block)
        last_block_time = timestamp_from_block_time(block_time)

        self.logger.debug(
            "Resolved epoch",
            epoch=epoch,
            first_block=first_block,
            last_block=last_block,
        )

        return Epoch(
            number=epoch,
            first_block=first_block,
            last_block=last_block,
            last_block_time=last_block_time,
            last_block_date=last_block_time.date(),
        )
