"""
Celo RPC client service.

Wraps an AsyncWeb3 HTTP provider with the reads the accountant needs: chain
head, epoch boundaries, historical event logs, point-in-time balances and
contract calls, block timestamps and call traces. Provider errors are
translated into the ChainError family so callers can match on classes.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import structlog
from web3 import AsyncWeb3, AsyncHTTPProvider
from web3.middleware import ExtraDataToPOAMiddleware

from accountant.core.config import settings
from accountant.core.exceptions import ChainError, MissingHistoricalStateError, NodeUnavailableError
from accountant.ledger import epochs
from .celo_abi import CONTRACT_ABIS, ERC20_ABI, REGISTRY_ABI, REGISTRY_ADDRESS


logger = structlog.get_logger(__name__)

UNAVAILABLE_STATUSES = {502, 503, 504}
UNAVAILABLE_PATTERN = re.compile(r"\b50[234]\b|Bad Gateway|Service Unavailable|Gateway Timeout", re.IGNORECASE)
MISSING_STATE_PATTERN = re.compile(r"missing trie node", re.IGNORECASE)
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass
class ChainEvent:
    """Decoded event log. Address arguments are lowercased."""
    name: str
    args: Dict[str, Any]
    block: int
    log_index: int = 0
    transaction_hash: str = ""


@dataclass
class TraceCall:
    """One frame of a flattened call trace."""
    from_address: str
    to_address: str
    value: int
    call_type: str
    transaction_hash: str
    depth: int = 0


def normalize_address(value: Any) -> Any:
    if isinstance(value, str) and ADDRESS_PATTERN.match(value):
        return value.lower()
    return value


def translate_error(error: Exception, operation: str, **context) -> ChainError:
    """Map a provider error onto the ChainError family."""
    if isinstance(error, ChainError):
        return error

    message = str(error) or error.__class__.__name__
    details = {"operation": operation, "error": message, **context}

    if MISSING_STATE_PATTERN.search(message):
        return MissingHistoricalStateError(f"{operation} failed: {message}", details=details)
    if isinstance(error, aiohttp.ClientResponseError) and error.status in UNAVAILABLE_STATUSES:
        return NodeUnavailableError(f"{operation} failed: node returned {error.status}", details=details)
    if isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return NodeUnavailableError(f"{operation} failed: {message}", details=details)
    if UNAVAILABLE_PATTERN.search(message):
        return NodeUnavailableError(f"{operation} failed: {message}", details=details)
    return ChainError(f"{operation} failed: {message}", details=details)


def flatten_trace(frame: Dict[str, Any], transaction_hash: str, depth: int = 0) -> List[TraceCall]:
    """Depth-first list of a callTracer frame and all of its sub-calls."""
    calls = [
        TraceCall(
            from_address=(frame.get("from") or "").lower(),
            to_address=(frame.get("to") or "").lower(),
            value=int(frame.get("value") or "0x0", 16),
            call_type=frame.get("type", ""),
            transaction_hash=transaction_hash,
            depth=depth,
        )
    ]
    for child in frame.get("calls") or []:
        calls.extend(flatten_trace(child, transaction_hash, depth + 1))
    return calls


class ChainClient:
    """
    Async Celo RPC client.

    Core contract addresses are resolved through the on-chain registry once
    and cached. Block timestamps are memoised since blocks never change.
    """

    def __init__(self, endpoint: Optional[str] = None, epoch_size: Optional[int] = None):
        self.endpoint = endpoint or settings.rpc_endpoint_url
        self.epoch_size = epoch_size or settings.epoch_size
        self.w3 = AsyncWeb3(
            AsyncHTTPProvider(
                self.endpoint,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=settings.rpc_timeout)},
            )
        )
        # Celo block headers carry extra data beyond 32 bytes
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self._contracts: Dict[str, Any] = {}
        self._timestamps: Dict[int, int] = {}
        self._symbols: Dict[str, str] = {}
        self.logger = logger.bind(service="chain_client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the provider session."""
        await self.w3.provider.disconnect()

    # Epoch rules

    def epoch_number_of_block(self, block: int) -> int:
        return epochs.epoch_number_of_block(block, self.epoch_size)

    def first_block_of_epoch(self, epoch: int) -> int:
        return epochs.first_block_of_epoch(epoch, self.epoch_size)

    def last_block_of_epoch(self, epoch: int) -> int:
        return epochs.last_block_of_epoch(epoch, self.epoch_size)

    # Blocks

    async def head_block(self) -> int:
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise translate_error(e, "head_block") from e

    async def get_block(self, block: int) -> Dict[str, Any]:
        try:
            return dict(await self.w3.eth.get_block(block))
        except Exception as e:
            raise translate_error(e, "get_block", block=block) from e

    async def block_timestamp(self, block: int) -> int:
        if block not in self._timestamps:
            data = await self.get_block(block)
            self._timestamps[block] = int(data["timestamp"])
        return self._timestamps[block]

    async def transaction_block(self, transaction_hash: str) -> int:
        try:
            transaction = await self.w3.eth.get_transaction(transaction_hash)
        except Exception as e:
            raise translate_error(e, "get_transaction", transaction_hash=transaction_hash) from e
        return int(transaction["blockNumber"])

    # Contracts

    async def contract(self, name: str):
        """Core contract bound to its registry address."""
        if name not in self._contracts:
            registry = self.w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(REGISTRY_ADDRESS),
                abi=REGISTRY_ABI,
            )
            try:
                address = await registry.functions.getAddressForString(name).call()
            except Exception as e:
                raise translate_error(e, "registry_lookup", contract=name) from e

            self._contracts[name] = self.w3.eth.contract(address=address, abi=CONTRACT_ABIS[name])
            self.logger.debug("Resolved core contract", contract=name, address=address)

        return self._contracts[name]

    async def get_events(
        self,
        contract: str,
        event: str,
        from_block: int,
        to_block: int,
        filters: Optional[Dict[str, Sequence[str]]] = None,
    ) -> List[ChainEvent]:
        """
        Historical logs of ``contract.event`` in ``[from_block, to_block]``.

        Filter values match indexed arguments. An empty filter list matches
        nothing, so no query is made.
        """
        argument_filters: Dict[str, Any] = {}
        for argument, values in (filters or {}).items():
            values = list(values)
            if not values:
                return []
            argument_filters[argument] = [
                AsyncWeb3.to_checksum_address(value) if ADDRESS_PATTERN.match(str(value)) else value
                for value in values
            ]

        if to_block < from_block:
            return []

        instance = await self.contract(contract)
        try:
            logs = await getattr(instance.events, event).get_logs(
                from_block=from_block,
                to_block=to_block,
                argument_filters=argument_filters or None,
            )
        except Exception as e:
            raise translate_error(
                e, "get_events", contract=contract, event=event, from_block=from_block, to_block=to_block
            ) from e

        return [
            ChainEvent(
                name=log["event"],
                args={key: normalize_address(value) for key, value in dict(log["args"]).items()},
                block=int(log["blockNumber"]),
                log_index=int(log["logIndex"]),
                transaction_hash=log["transactionHash"].to_0x_hex(),
            )
            for log in logs
        ]

    async def call(self, contract: str, function: str, args: Sequence[Any] = (), block: Optional[int] = None) -> Any:
        """Read-only contract call at ``block`` (latest when omitted)."""
        instance = await self.contract(contract)
        call_args = [
            AsyncWeb3.to_checksum_address(arg) if isinstance(arg, str) and ADDRESS_PATTERN.match(arg) else arg
            for arg in args
        ]
        try:
            return await getattr(instance.functions, function)(*call_args).call(
                block_identifier=block if block is not None else "latest"
            )
        except Exception as e:
            raise translate_error(e, "call", contract=contract, function=function, block=block) from e

    async def get_balance(self, address: str, block: int) -> int:
        """Native CELO balance of ``address`` at ``block``."""
        try:
            return int(await self.w3.eth.get_balance(AsyncWeb3.to_checksum_address(address), block_identifier=block))
        except Exception as e:
            raise translate_error(e, "get_balance", address=address, block=block) from e

    async def token_symbol(self, token: str) -> str:
        if token not in self._symbols:
            instance = self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(token), abi=ERC20_ABI)
            try:
                self._symbols[token] = await instance.functions.symbol().call()
            except Exception as e:
                raise translate_error(e, "token_symbol", token=token) from e
        return self._symbols[token]

    async def validator_signers(self, block: int) -> List[str]:
        """Signers of the validators elected at ``block``."""
        signers = await self.call("Election", "getCurrentValidatorSigners", block=block)
        return [signer.lower() for signer in signers]

    async def trace_transaction(self, transaction_hash: str) -> List[TraceCall]:
        try:
            response = await self.w3.provider.make_request(
                "debug_traceTransaction",
                [transaction_hash, {"tracer": "callTracer"}],
            )
        except Exception as e:
            raise translate_error(e, "trace_transaction", transaction_hash=transaction_hash) from e

        if "error" in response:
            error = response["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise translate_error(RuntimeError(message), "trace_transaction", transaction_hash=transaction_hash)

        return flatten_trace(response["result"], transaction_hash)


# Global client instance
_client: Optional[ChainClient] = None


async def get_chain_client() -> ChainClient:
    """Get or create a global chain client instance."""
    global _client
    if _client is None:
        _client = ChainClient()
    return _client


async def close_chain_client():
    """Close the global chain client instance."""
    global _client
    if _client:
        await _client.close()
        _client = None
