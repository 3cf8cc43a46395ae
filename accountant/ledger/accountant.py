"""
Ledger orchestrator.

Drives one processing run per epoch: ensure a revision exists, check the
epoch is complete and not yet loaded, fan out to every collector with
bounded concurrency, load the merged batch and reconcile it.

Revision and epoch are resolved per call and passed explicitly; nothing about
a run is cached on the orchestrator between calls.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from accountant.core.config import settings
from accountant.core.exceptions import CollectionFailure, LoadFailure, NodeUnavailableError
from accountant.collectors import Collector, CollectorContext, default_collectors
from accountant.services.addresses import MonitoredAddresses
from accountant.services.chain_client import ChainClient, get_chain_client
from accountant.services.explorer_client import ExplorerClient, get_explorer_client
from accountant.utils.concurrency import concurrent_map
from accountant.utils.timing import exec_time
from .epochs import EpochResolver
from .reconciler import Reconciler
from .store import LedgerStore, get_ledger_store
from .types import CurrentStatus, LedgerEntry, ReconciliationRecord


logger = structlog.get_logger(__name__)


class RunState(Enum):
    """Stages of one processing run."""
    UNINITIALIZED = "uninitialized"
    REVISION_ENSURED = "revision_ensured"
    EPOCH_VALIDATED = "epoch_validated"
    COLLECTED = "collected"
    LOADED = "loaded"
    RECONCILED = "reconciled"
    DONE = "done"


@dataclass
class ProcessingResult:
    """Outcome of one processing run."""
    epoch: int
    revision: int = 0
    state: RunState = RunState.UNINITIALIZED
    history: List[RunState] = field(default_factory=list)
    entries_collected: int = 0
    entries_loaded: int = 0
    failed_collectors: List[str] = field(default_factory=list)
    reconciliation: List[ReconciliationRecord] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    def advance(self, state: RunState) -> None:
        self.history.append(state)
        self.state = state

    def finish(self, reason: Optional[str] = None) -> "ProcessingResult":
        self.skipped_reason = reason
        self.advance(RunState.DONE)
        return self

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class Accountant:
    """Derives, loads and reconciles the ledger for one epoch at a time."""

    def __init__(
        self,
        chain: ChainClient,
        explorer: ExplorerClient,
        store: LedgerStore,
        addresses: MonitoredAddresses,
        collectors: Optional[List[Collector]] = None,
        collector_concurrency: Optional[int] = None,
        detail_concurrency: Optional[int] = None,
        reconciler: Optional[Reconciler] = None,
    ):
        self.chain = chain
        self.explorer = explorer
        self.store = store
        self.addresses = addresses
        self.collectors = collectors if collectors is not None else default_collectors()
        self.collector_concurrency = collector_concurrency or settings.collector_concurrency
        self.detail_concurrency = detail_concurrency or settings.detail_concurrency

        self.resolver = EpochResolver(chain)
        self.reconciler = reconciler or Reconciler(chain, explorer, store, addresses)
        self.logger = logger.bind(class_name=self.__class__.__name__)

    async def ensure_revision(self) -> int:
        """Current revision, creating the first one on an empty warehouse."""
        revision = await self.store.current_revision()
        if revision == 0:
            revision = await self.store.create_revision()
        return revision

    async def process_latest_epoch(self) -> ProcessingResult:
        """Process the most recent completed epoch."""
        current = await self.resolver.current_epoch()
        return await self.process_epoch(current - 1)

    @exec_time
    async def process_epoch(self, epoch: int) -> ProcessingResult:
        result = ProcessingResult(epoch=epoch)

        revision = await self.ensure_revision()
        result.revision = revision
        result.advance(RunState.REVISION_ENSURED)
        log = self.logger.bind(epoch=epoch, revision=revision)

        if not await self.resolver.epoch_completed(epoch):
            log.info(f"Epoch {epoch} has not completed yet, exiting")
            return result.finish("epoch not completed")
        result.advance(RunState.EPOCH_VALIDATED)

        if await self.store.is_epoch_loaded(epoch, revision):
            log.info(f"Epoch {epoch} already processed, exiting")
            result.advance(RunState.LOADED)
            return result.finish("already processed")

        log.info(f"Processing rewards for epoch {epoch}")
        entries = await self.collect_rewards(epoch, result)
        result.advance(RunState.COLLECTED)

        try:
            result.entries_loaded = await self.store.insert_batch(entries, revision)
        except LoadFailure as e:
            log.error(f"Could not load rewards for epoch {epoch}", error=str(e), investigate=True)
            raise
        result.advance(RunState.LOADED)
        log.info(f"Loaded {result.entries_loaded} rewards for epoch {epoch}")

        result.reconciliation = await self.reconcile(epoch, revision=revision)
        result.advance(RunState.RECONCILED)
        return result.finish()

    @exec_time
    async def backfill_addresses(self, epoch: int) -> ProcessingResult:
        """
        Collect an epoch and load it address by address.

        Addresses already loaded are skipped by the store, so a retried
        backfill only writes what is missing. Any address that fails to load
        aborts the call.
        """
        result = ProcessingResult(epoch=epoch)

        revision = await self.ensure_revision()
        result.revision = revision
        result.advance(RunState.REVISION_ENSURED)
        log = self.logger.bind(epoch=epoch, revision=revision)

        if not await self.resolver.epoch_completed(epoch):
            log.info(f"Epoch {epoch} has not completed yet, exiting")
            return result.finish("epoch not completed")
        result.advance(RunState.EPOCH_VALIDATED)

        log.info(f"Backfilling rewards for epoch {epoch}")
        entries = await self.collect_rewards(epoch, result)
        result.advance(RunState.COLLECTED)

        by_address: Dict[str, List[LedgerEntry]] = defaultdict(list)
        for entry in entries:
            by_address[entry.address].append(entry)

        async def load(address_entries: List[LedgerEntry]) -> int:
            address = address_entries[0].address
            try:
                loaded = await self.store.insert_address_batch(address_entries, revision)
            except LoadFailure as e:
                log.error(
                    f"Could not load rewards for {address} in epoch {epoch}",
                    address=address,
                    error=str(e),
                    investigate=True,
                )
                raise LoadFailure(
                    f"Could not load rewards for {address} in epoch {epoch}",
                    details={"address": address, "epoch": epoch, "revision": revision}
                ) from e

            log.info(f"Loaded {loaded} rewards for {address} in epoch {epoch}", address=address)
            return loaded

        loaded_counts = await concurrent_map(self.collector_concurrency, list(by_address.values()), load)
        result.entries_loaded = sum(loaded_counts)
        result.advance(RunState.LOADED)

        result.reconciliation = await self.reconcile(epoch, revision=revision)
        result.advance(RunState.RECONCILED)
        return result.finish()

    async def collect_rewards(self, epoch: int, result: Optional[ProcessingResult] = None) -> List[LedgerEntry]:
        """
        Run every collector for ``epoch`` and merge their entries.

        A failing collector contributes nothing. An unavailable node aborts
        the whole collection.
        """
        resolved = await self.resolver.get_epoch(epoch)
        context = CollectorContext(
            epoch=resolved,
            addresses=self.addresses,
            chain=self.chain,
            explorer=self.explorer,
            detail_concurrency=self.detail_concurrency,
        )

        failed: List[str] = []
        per_collector = await concurrent_map(
            self.collector_concurrency,
            self.collectors,
            lambda collector: self._run_collector(collector, context, failed),
        )
        entries = [entry for collected in per_collector for entry in collected]

        if result is not None:
            result.entries_collected = len(entries)
            result.failed_collectors = failed
        return entries

    async def _run_collector(
        self,
        collector: Collector,
        context: CollectorContext,
        failed: List[str],
    ) -> List[LedgerEntry]:
        log = self.logger.bind(epoch=context.epoch.number, collector=collector.name)

        try:
            return await collector.collect(context)
        except NodeUnavailableError as e:
            log.error("Node may be down, exiting run early", error=str(e), investigate=True)
            raise
        except Exception as e:
            failure = e if isinstance(e, CollectionFailure) else CollectionFailure(collector.name, e)
            if isinstance(failure.cause, NodeUnavailableError):
                log.error("Node may be down, exiting run early", error=str(failure.cause), investigate=True)
                raise failure.cause from failure

            log.error(
                f"Unable to collect {collector.name} rewards for epoch {context.epoch.number}",
                error=str(failure.cause),
                error_type=type(failure.cause).__name__,
                investigate=True,
            )
            failed.append(collector.name)
            return []

    async def reconcile(
        self,
        epoch: Optional[int] = None,
        revision: Optional[int] = None,
    ) -> List[ReconciliationRecord]:
        """Reconcile ``epoch``, defaulting to the last epoch processed in the revision."""
        if revision is None:
            revision = await self.ensure_revision()
        if epoch is None:
            epoch = await self.store.last_epoch_processed(revision)

        block = self.chain.last_block_of_epoch(epoch)
        self.logger.info(f"Running reconciliation for epoch {epoch}", epoch=epoch, revision=revision)
        return await self.reconciler.run(epoch, block, revision)

    async def current_status(self) -> CurrentStatus:
        revision = await self.store.current_revision()
        return CurrentStatus(
            current_revision=revision,
            latest_epoch=await self.store.last_epoch_processed(revision),
            all_epochs=await self.store.all_epochs_processed(revision),
        )

    async def create_revision(self) -> int:
        return await self.store.create_revision()

    @classmethod
    async def conjure(cls, addresses: Optional[Dict[str, Any]] = None) -> "Accountant":
        """Accountant wired to the global clients and warehouse store."""
        return cls(
            chain=await get_chain_client(),
            explorer=get_explorer_client(),
            store=get_ledger_store(),
            addresses=MonitoredAddresses(addresses),
        )
