"""
Test reconciliation of the ledger against on-chain balances.
"""

import pytest
from structlog.testing import capture_logs

from accountant.core.exceptions import (
    ChainError,
    ExplorerError,
    MissingHistoricalStateError,
    NodeUnavailableError,
)
from accountant.ledger.reconciler import Reconciler, compare, summarize
from accountant.ledger.types import OVERALL, Currency
from accountant.services.addresses import MonitoredAddresses

from conftest import DELEGATOR, OTHER_DELEGATOR, STRANGER, make_ledger_entry


BLOCK = 20


def set_on_chain(chain, address, liquid=0, locked=0, pending=0, stable=0):
    chain.balances[(address, BLOCK)] = liquid
    chain.calls[("LockedGold", "getAccountTotalLockedGold", address)] = locked
    chain.calls[("LockedGold", "getTotalPendingWithdrawals", address)] = pending
    chain.calls[("StableToken", "balanceOf", address)] = stable


async def load(store, *entries):
    revision = await store.create_revision()
    await store.insert_batch(list(entries), revision)
    return revision


def test_equal_balances_do_not_mismatch():
    record = compare(DELEGATOR, "", 2, 300, 200, 0, {DELEGATOR: {Currency.CELO: 500, Currency.CUSD: 0}})

    assert record.on_chain_total == 500
    assert record.difference == 0
    assert record.mismatch is False


def test_any_difference_is_a_mismatch():
    record = compare(DELEGATOR, "", 2, 301, 200, 0, {DELEGATOR: {Currency.CELO: 500, Currency.CUSD: 0}})

    assert record.difference == 1
    assert record.mismatch is True

    below = compare(DELEGATOR, "", 2, 299, 200, 0, {DELEGATOR: {Currency.CELO: 500, Currency.CUSD: 0}})
    assert below.difference == -1
    assert below.mismatch is True


def test_stable_difference_alone_is_a_mismatch():
    record = compare(DELEGATOR, "", 2, 0, 0, 8, {DELEGATOR: {Currency.CELO: 0, Currency.CUSD: 10}})

    assert record.difference == 0
    assert record.stable_difference == -2
    assert record.mismatch is True


def test_absent_address_has_zero_calculated_balance():
    record = compare(STRANGER, "", 2, 5, 0, 0, {})

    assert record.calculated_total == 0
    assert record.difference == 5


def test_summary_sums_every_field():
    first = compare(DELEGATOR, "", 2, 10, 5, 3, {DELEGATOR: {Currency.CELO: 15, Currency.CUSD: 3}})
    second = compare(OTHER_DELEGATOR, "", 2, 7, 0, 1, {})

    overall = summarize([first, second], 2)

    assert overall.address == OVERALL
    assert overall.on_chain_total == 22
    assert overall.calculated_total == 15
    assert overall.difference == 7
    assert overall.on_chain_stable == 4
    assert overall.mismatch is True


@pytest.mark.asyncio
async def test_matching_ledger_returns_only_overall(chain, explorer, store, addresses):
    revision = await load(store, make_ledger_entry(DELEGATOR, 500), make_ledger_entry(DELEGATOR, 9, Currency.CUSD))
    set_on_chain(chain, DELEGATOR, liquid=300, locked=150, pending=50, stable=9)
    set_on_chain(chain, OTHER_DELEGATOR)

    with capture_logs():
        records = await Reconciler(chain, explorer, store, addresses, concurrency=2).run(2, BLOCK, revision)

    assert len(records) == 1
    assert records[0].is_overall
    assert records[0].mismatch is False
    assert records[0].on_chain_total == 500


@pytest.mark.asyncio
async def test_off_by_one_is_reported(chain, explorer, store, addresses):
    revision = await load(store, make_ledger_entry(DELEGATOR, 500))
    set_on_chain(chain, DELEGATOR, liquid=501)
    set_on_chain(chain, OTHER_DELEGATOR)

    with capture_logs():
        records = await Reconciler(chain, explorer, store, addresses).run(2, BLOCK, revision)

    assert [record.address for record in records] == [DELEGATOR, OVERALL]
    assert records[0].difference == 1
    assert records[0].mismatch is True


@pytest.mark.asyncio
async def test_mismatches_sorted_by_difference_with_overall_last(chain, explorer, store):
    third = "0x00000000000000000000000000000000000000a3"
    addresses = MonitoredAddresses({"delegators": [DELEGATOR, OTHER_DELEGATOR, third]})
    revision = await load(store, make_ledger_entry(DELEGATOR, 100))
    set_on_chain(chain, DELEGATOR, liquid=105)
    set_on_chain(chain, OTHER_DELEGATOR, liquid=20)
    set_on_chain(chain, third, liquid=0, stable=4)
    store.rows.append((revision, make_ledger_entry(third, 3, epoch=1)))

    with capture_logs():
        records = await Reconciler(chain, explorer, store, addresses).run(2, BLOCK, revision)

    assert [(record.address, record.difference) for record in records] == [
        (OTHER_DELEGATOR, 20),
        (DELEGATOR, 5),
        (third, -3),
        (OVERALL, 22),
    ]


@pytest.mark.asyncio
async def test_failed_address_is_excluded(chain, explorer, store, addresses):
    revision = await load(store, make_ledger_entry(DELEGATOR, 500))
    chain.balances[(DELEGATOR, BLOCK)] = ChainError("execution reverted")
    set_on_chain(chain, OTHER_DELEGATOR, liquid=4)

    with capture_logs() as logs:
        records = await Reconciler(chain, explorer, store, addresses).reconcile(2, BLOCK, revision)

    assert [record.address for record in records] == [OTHER_DELEGATOR]
    assert any(log.get("investigate") and log.get("address") == DELEGATOR for log in logs)


@pytest.mark.asyncio
async def test_missing_state_falls_back_to_explorer(chain, explorer, store, addresses):
    revision = await load(store, make_ledger_entry(DELEGATOR, 500))
    chain.balances[(DELEGATOR, BLOCK)] = MissingHistoricalStateError("missing trie node abc")
    explorer.balances[(DELEGATOR, BLOCK)] = 500
    set_on_chain(chain, OTHER_DELEGATOR)

    with capture_logs():
        records = await Reconciler(chain, explorer, store, addresses).reconcile(2, BLOCK, revision)

    by_address = {record.address: record for record in records}
    assert by_address[DELEGATOR].on_chain_liquid == 500
    assert by_address[DELEGATOR].mismatch is False


@pytest.mark.asyncio
async def test_failed_fallback_excludes_address(chain, explorer, store, addresses):
    revision = await load(store, make_ledger_entry(DELEGATOR, 500))
    chain.balances[(DELEGATOR, BLOCK)] = MissingHistoricalStateError("missing trie node abc")
    explorer.balances[(DELEGATOR, BLOCK)] = ExplorerError("Could not fetch balance")
    set_on_chain(chain, OTHER_DELEGATOR)

    with capture_logs() as logs:
        records = await Reconciler(chain, explorer, store, addresses).reconcile(2, BLOCK, revision)

    assert [record.address for record in records] == [OTHER_DELEGATOR]
    assert any(log.get("investigate") and log.get("address") == DELEGATOR for log in logs)


@pytest.mark.asyncio
async def test_unavailable_node_aborts_reconciliation(chain, explorer, store, addresses):
    revision = await load(store, make_ledger_entry(DELEGATOR, 500))
    chain.balances[(DELEGATOR, BLOCK)] = NodeUnavailableError("503 Service Unavailable")

    with capture_logs():
        with pytest.raises(NodeUnavailableError):
            await Reconciler(chain, explorer, store, addresses).run(2, BLOCK, revision)


@pytest.mark.asyncio
async def test_whole_run_failure_returns_nothing(chain, explorer, addresses):
    class BrokenStore:
        async def aggregated_balances(self, epoch, revision):
            raise RuntimeError("warehouse down")

    with capture_logs() as logs:
        records = await Reconciler(chain, explorer, BrokenStore(), addresses).run(2, BLOCK, 1)

    assert records == []
    assert any(log.get("investigate") for log in logs)
