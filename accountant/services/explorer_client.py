"""
Celo explorer service for historical data the node cannot serve.

Talks to the Blockscout-compatible ``module=account`` API. A failed
transaction list fetch is logged for investigation and returns the empty
list. A failed balance lookup raises ``ExplorerError``.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from accountant.core.config import settings
from accountant.core.exceptions import ExplorerError


logger = structlog.get_logger(__name__)


@dataclass
class ExplorerTransaction:
    """Top-level transaction from ``txlist``."""
    hash: str
    block: int
    timestamp: int
    from_address: str
    to_address: str
    value: int
    gas_used: int
    gas_price: int

    @property
    def fee(self) -> int:
        return self.gas_used * self.gas_price


@dataclass
class ExplorerInternalTransaction:
    """Internal call from ``txlistinternal``."""
    transaction_hash: str
    block: int
    from_address: str
    to_address: str
    value: int
    call_type: str


def _int(value: Any) -> int:
    if value in (None, ""):
        return 0
    if isinstance(value, int):
        return value
    return int(str(value), 0) if str(value).startswith("0x") else int(str(value))


class ExplorerClient:
    """Async client for the explorer REST API."""

    def __init__(self, base_url: Optional[str] = None, timeout: int = 30):
        self.base_url = base_url or settings.resolved_explorer_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logger.bind(service="explorer_client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _request(self, action: str, **params) -> Dict[str, Any]:
        query = {"module": "account", "action": action}
        query.update({key: str(value) for key, value in params.items() if value is not None})

        session = self._get_session()
        async with session.get(self.base_url, params=query) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    async def get_balance(self, address: str, block: Optional[int] = None) -> int:
        """Native balance of ``address`` at ``block``."""
        try:
            data = await self._request("eth_get_balance", address=address, block=block)
            result = data.get("result")
            if result is None:
                raise ValueError(data.get("message") or "no balance in response")
            return _int(result)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, AttributeError) as e:
            self.logger.error(
                f"Could not fetch balance for {address}",
                address=address,
                block=block,
                error=str(e),
                investigate=True,
            )
            raise ExplorerError(
                f"Could not fetch balance for {address}",
                details={"address": address, "block": block, "error": str(e)}
            ) from e

    async def get_transactions(
        self,
        address: str,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
    ) -> List[ExplorerTransaction]:
        try:
            data = await self._request("txlist", address=address, startblock=start_block, endblock=end_block)
            return [
                ExplorerTransaction(
                    hash=item.get("hash", ""),
                    block=_int(item.get("blockNumber")),
                    timestamp=_int(item.get("timeStamp")),
                    from_address=(item.get("from") or "").lower(),
                    to_address=(item.get("to") or "").lower(),
                    value=_int(item.get("value")),
                    gas_used=_int(item.get("gasUsed")),
                    gas_price=_int(item.get("gasPrice")),
                )
                for item in data.get("result") or []
            ]
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, AttributeError) as e:
            self.logger.error(
                f"Could not fetch transactions for {address}",
                address=address,
                start_block=start_block,
                end_block=end_block,
                error=str(e),
                investigate=True,
            )
            return []

    async def get_internal_transactions(
        self,
        address: str,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
    ) -> List[ExplorerInternalTransaction]:
        try:
            data = await self._request(
                "txlistinternal", address=address, startblock=start_block, endblock=end_block
            )
            return [
                ExplorerInternalTransaction(
                    transaction_hash=item.get("transactionHash", ""),
                    block=_int(item.get("blockNumber")),
                    from_address=(item.get("from") or "").lower(),
                    to_address=(item.get("to") or "").lower(),
                    value=_int(item.get("value")),
                    call_type=item.get("callType") or item.get("type") or "",
                )
                for item in data.get("result") or []
            ]
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, AttributeError) as e:
            self.logger.error(
                f"Could not fetch internal transactions for {address}",
                address=address,
                start_block=start_block,
                end_block=end_block,
                error=str(e),
                investigate=True,
            )
            return []


# Global instance
_explorer: Optional[ExplorerClient] = None


def get_explorer_client() -> ExplorerClient:
    global _explorer
    if _explorer is None:
        _explorer = ExplorerClient()
    return _explorer


async def close_explorer_client():
    global _explorer
    if _explorer:
        await _explorer.close()
        _explorer = None
