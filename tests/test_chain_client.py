"""
Test provider error translation and trace flattening.
"""

import asyncio

import aiohttp
import pytest
from structlog.testing import capture_logs

from accountant.core.exceptions import (
    ChainError,
    ExplorerError,
    MissingHistoricalStateError,
    NodeUnavailableError,
)
from accountant.services.chain_client import flatten_trace, normalize_address, translate_error
from accountant.services.explorer_client import ExplorerClient, _int


def test_missing_trie_node_is_missing_historical_state():
    error = translate_error(ValueError("missing trie node 4f2a (path )"), "get_balance", block=5)

    assert isinstance(error, MissingHistoricalStateError)
    assert error.details["block"] == 5


def test_gateway_errors_mean_the_node_is_down():
    assert isinstance(translate_error(RuntimeError("502 Bad Gateway"), "call"), NodeUnavailableError)
    assert isinstance(translate_error(RuntimeError("HTTP 504"), "call"), NodeUnavailableError)
    assert isinstance(translate_error(aiohttp.ClientConnectionError("refused"), "call"), NodeUnavailableError)
    assert isinstance(translate_error(asyncio.TimeoutError(), "call"), NodeUnavailableError)


def test_other_errors_are_generic_chain_errors():
    error = translate_error(ValueError("execution reverted"), "call")

    assert type(error) is ChainError
    assert error.code == "CHAIN_ERROR"


def test_chain_errors_pass_through():
    original = NodeUnavailableError("down")

    assert translate_error(original, "call") is original


def test_flatten_trace_depth_first():
    frame = {
        "type": "CALL",
        "from": "0xAA00000000000000000000000000000000000000",
        "to": "0xbb00000000000000000000000000000000000000",
        "value": "0x10",
        "calls": [
            {
                "type": "CALL",
                "from": "0xbb00000000000000000000000000000000000000",
                "to": "0xcc00000000000000000000000000000000000000",
                "value": "0x1",
                "calls": [{"type": "STATICCALL", "from": "0xcc00000000000000000000000000000000000000"}],
            },
            {"type": "DELEGATECALL", "to": "0xdd00000000000000000000000000000000000000"},
        ],
    }

    calls = flatten_trace(frame, "0xhash")

    assert [(call.call_type, call.depth, call.value) for call in calls] == [
        ("CALL", 0, 16),
        ("CALL", 1, 1),
        ("STATICCALL", 2, 0),
        ("DELEGATECALL", 1, 0),
    ]
    assert calls[0].from_address == "0xaa00000000000000000000000000000000000000"
    assert calls[2].to_address == ""
    assert all(call.transaction_hash == "0xhash" for call in calls)


def test_normalize_address_only_touches_addresses():
    assert normalize_address("0xAB00000000000000000000000000000000000000") == "0xab00000000000000000000000000000000000000"
    assert normalize_address("Hello") == "Hello"
    assert normalize_address(5) == 5


def test_explorer_integers_accept_hex_and_decimal():
    assert _int("0x1f") == 31
    assert _int("31") == 31
    assert _int("") == 0
    assert _int(None) == 0


def explorer_answering(response):
    client = ExplorerClient(base_url="http://explorer.test/api")

    async def request(action, **params):
        if isinstance(response, Exception):
            raise response
        return response

    client._request = request
    return client


@pytest.mark.asyncio
async def test_explorer_balance():
    client = explorer_answering({"status": "1", "result": "0x64"})

    assert await client.get_balance("0xabc", 20) == 100


@pytest.mark.asyncio
async def test_explorer_balance_failures_raise():
    unreachable = explorer_answering(aiohttp.ClientConnectionError("connection refused"))
    error_body = explorer_answering({"status": "0", "message": "Invalid block", "result": None})

    with capture_logs() as logs:
        with pytest.raises(ExplorerError):
            await unreachable.get_balance("0xabc", 20)
        with pytest.raises(ExplorerError, match="Could not fetch balance"):
            await error_body.get_balance("0xabc", 20)

    assert [log["investigate"] for log in logs] == [True, True]
