"""
Test the ledger orchestrator against in-memory collaborators.
"""

from typing import List

import pytest
from structlog.testing import capture_logs

from accountant.collectors import Collector, CollectorContext
from accountant.core.exceptions import CollectionFailure, LoadFailure, NodeUnavailableError
from accountant.ledger.accountant import Accountant, RunState
from accountant.ledger.types import LedgerEntry

from conftest import DELEGATOR, OTHER_DELEGATOR, make_ledger_entry


class StaticCollector(Collector):
    def __init__(self, name: str, entries: List[LedgerEntry]):
        self.name = name
        self.entries = entries
        self.calls = 0
        super().__init__()

    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        self.calls += 1
        return [entry for entry in self.entries if entry.epoch == context.epoch.number]


class FailingCollector(Collector):
    def __init__(self, name: str, error: Exception):
        self.name = name
        self.error = error
        super().__init__()

    async def collect(self, context: CollectorContext) -> List[LedgerEntry]:
        raise self.error


class RecordingReconciler:
    def __init__(self):
        self.runs = []

    async def run(self, epoch: int, block: int, revision: int):
        self.runs.append((epoch, block, revision))
        return []


def build(chain, explorer, store, addresses, collectors):
    return Accountant(
        chain,
        explorer,
        store,
        addresses,
        collectors=collectors,
        collector_concurrency=2,
        detail_concurrency=2,
        reconciler=RecordingReconciler(),
    )


@pytest.mark.asyncio
async def test_process_epoch_loads_and_reconciles(chain, explorer, store, addresses):
    entries = [make_ledger_entry(DELEGATOR, 100), make_ledger_entry(OTHER_DELEGATOR, -30)]
    accountant = build(chain, explorer, store, addresses, [StaticCollector("static", entries)])

    result = await accountant.process_epoch(2)

    assert result.revision == 1
    assert result.entries_collected == 2
    assert result.entries_loaded == 2
    assert not result.skipped
    assert result.history == [
        RunState.REVISION_ENSURED,
        RunState.EPOCH_VALIDATED,
        RunState.COLLECTED,
        RunState.LOADED,
        RunState.RECONCILED,
        RunState.DONE,
    ]
    assert accountant.reconciler.runs == [(2, 20, 1)]


@pytest.mark.asyncio
async def test_processing_twice_is_a_no_op(chain, explorer, store, addresses):
    collector = StaticCollector("static", [make_ledger_entry(DELEGATOR, 100)])
    accountant = build(chain, explorer, store, addresses, [collector])

    await accountant.process_epoch(2)
    second = await accountant.process_epoch(2)

    assert len(store.rows) == 1
    assert second.skipped_reason == "already processed"
    assert second.history[-2:] == [RunState.LOADED, RunState.DONE]
    assert collector.calls == 1


@pytest.mark.asyncio
async def test_incomplete_epoch_exits_without_error(chain, explorer, store, addresses):
    collector = StaticCollector("static", [make_ledger_entry(DELEGATOR, 100, epoch=3)])
    accountant = build(chain, explorer, store, addresses, [collector])

    result = await accountant.process_epoch(3)

    assert result.skipped_reason == "epoch not completed"
    assert result.history == [RunState.REVISION_ENSURED, RunState.DONE]
    assert store.rows == []
    assert collector.calls == 0


@pytest.mark.asyncio
async def test_existing_revision_is_reused(chain, explorer, store, addresses):
    await store.create_revision()
    await store.create_revision()
    accountant = build(chain, explorer, store, addresses, [])

    assert await accountant.ensure_revision() == 2
    assert store.revisions == [1, 2]


@pytest.mark.asyncio
async def test_failing_collector_does_not_block_the_batch(chain, explorer, store, addresses):
    collectors = [
        StaticCollector("first", [make_ledger_entry(DELEGATOR, 100)]),
        FailingCollector("broken", ValueError("bad event")),
        FailingCollector("wrapped", CollectionFailure("wrapped", KeyError("args"))),
        StaticCollector("second", [make_ledger_entry(OTHER_DELEGATOR, 5)]),
    ]
    accountant = build(chain, explorer, store, addresses, collectors)

    with capture_logs() as logs:
        result = await accountant.process_epoch(2)

    assert result.entries_loaded == 2
    assert sorted(result.failed_collectors) == ["broken", "wrapped"]
    assert sum(1 for log in logs if log.get("investigate") and log.get("collector") in ("broken", "wrapped")) == 2


@pytest.mark.asyncio
async def test_unavailable_node_aborts_the_run(chain, explorer, store, addresses):
    collectors = [
        StaticCollector("first", [make_ledger_entry(DELEGATOR, 100)]),
        FailingCollector("down", NodeUnavailableError("502 Bad Gateway")),
    ]
    accountant = build(chain, explorer, store, addresses, collectors)

    with pytest.raises(NodeUnavailableError):
        await accountant.process_epoch(2)

    assert store.rows == []


@pytest.mark.asyncio
async def test_unavailable_node_inside_collection_failure_aborts(chain, explorer, store, addresses):
    failure = CollectionFailure("down", NodeUnavailableError("connection refused"))
    accountant = build(chain, explorer, store, addresses, [FailingCollector("down", failure)])

    with pytest.raises(NodeUnavailableError):
        await accountant.process_epoch(2)


@pytest.mark.asyncio
async def test_backfill_loads_each_address(chain, explorer, store, addresses):
    entries = [
        make_ledger_entry(DELEGATOR, 100),
        make_ledger_entry(DELEGATOR, 3),
        make_ledger_entry(OTHER_DELEGATOR, 5),
    ]
    accountant = build(chain, explorer, store, addresses, [StaticCollector("static", entries)])

    result = await accountant.backfill_addresses(2)

    assert result.entries_loaded == 3
    assert await store.is_address_loaded(DELEGATOR, 2, 1)
    assert await store.is_address_loaded(OTHER_DELEGATOR, 2, 1)


@pytest.mark.asyncio
async def test_backfill_skips_addresses_already_loaded(chain, explorer, store, addresses):
    await store.create_revision()
    await store.insert_address_batch([make_ledger_entry(DELEGATOR, 100)], 1)
    entries = [make_ledger_entry(DELEGATOR, 100), make_ledger_entry(OTHER_DELEGATOR, 5)]
    accountant = build(chain, explorer, store, addresses, [StaticCollector("static", entries)])

    result = await accountant.backfill_addresses(2)

    assert result.entries_loaded == 1
    assert len(store.rows) == 2


@pytest.mark.asyncio
async def test_backfill_address_failure_fails_loudly(chain, explorer, store, addresses):
    store.failing_addresses.add(OTHER_DELEGATOR)
    entries = [make_ledger_entry(DELEGATOR, 100), make_ledger_entry(OTHER_DELEGATOR, 5)]
    accountant = build(chain, explorer, store, addresses, [StaticCollector("static", entries)])

    with capture_logs() as logs:
        with pytest.raises(LoadFailure) as error:
            await accountant.backfill_addresses(2)

    assert error.value.details["address"] == OTHER_DELEGATOR
    assert any(log.get("investigate") and log.get("address") == OTHER_DELEGATOR for log in logs)


@pytest.mark.asyncio
async def test_reconcile_defaults_to_last_processed_epoch(chain, explorer, store, addresses):
    await store.create_revision()
    await store.insert_batch([make_ledger_entry(DELEGATOR, 100, epoch=1)], 1)
    accountant = build(chain, explorer, store, addresses, [])

    await accountant.reconcile()

    assert accountant.reconciler.runs == [(1, 10, 1)]


@pytest.mark.asyncio
async def test_process_latest_epoch_targets_previous_epoch(chain, explorer, store, addresses):
    collector = StaticCollector("static", [make_ledger_entry(DELEGATOR, 100)])
    accountant = build(chain, explorer, store, addresses, [collector])

    result = await accountant.process_latest_epoch()

    assert result.epoch == 2
    assert result.entries_loaded == 1


@pytest.mark.asyncio
async def test_current_status(chain, explorer, store, addresses):
    await store.create_revision()
    await store.insert_batch([make_ledger_entry(DELEGATOR, 1, epoch=1)], 1)
    await store.insert_batch([make_ledger_entry(DELEGATOR, 1, epoch=2)], 1)
    accountant = build(chain, explorer, store, addresses, [])

    status = await accountant.current_status()

    assert (status.current_revision, status.latest_epoch, status.all_epochs) == (1, 2, [2, 1])
