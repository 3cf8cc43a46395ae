"""
Point-in-time native balances with the explorer as historical fallback.
"""

import structlog

from accountant.core.exceptions import MissingHistoricalStateError
from .chain_client import ChainClient
from .explorer_client import ExplorerClient


logger = structlog.get_logger(__name__)


async def native_balance(chain: ChainClient, explorer: ExplorerClient, address: str, block: int) -> int:
    """
    CELO balance of ``address`` at ``block``.

    Nodes that pruned the state at ``block`` answer with a missing trie node
    error; the explorer's balance is used instead.
    """
    try:
        return await chain.get_balance(address, block)
    except MissingHistoricalStateError as e:
        logger.warning(
            f"Could not fetch balance for {address} at block {block} due to missing trie node",
            address=address,
            block=block,
            error=str(e),
            investigate=True,
        )
        return await explorer.get_balance(address, block)
