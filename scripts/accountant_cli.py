#!/usr/bin/env python3
"""
Operator commands for the Celo accountant.
"""

import asyncio
import sys
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from accountant.core.config import settings
from accountant.core.database import init_database, close_database, DatabaseManager
from accountant.core.exceptions import NodeUnavailableError
from accountant.core.logging import setup_logging, get_logger
from accountant.ledger.accountant import Accountant
from accountant.ledger.backfill import BackfillRunner
from accountant.models.backfill import BackfillStatus
from accountant.services.chain_client import close_chain_client
from accountant.services.explorer_client import close_explorer_client

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Celo accountant commands")

T = TypeVar("T")


def run(operation: str, work: Callable[[Accountant], Awaitable[T]]) -> T:
    """Run ``work`` against a fully wired accountant, exiting 1 on failure."""
    async def _run():
        setup_logging(settings.log_file)
        await init_database()
        try:
            accountant = await Accountant.conjure()
            return await work(accountant)
        finally:
            await close_chain_client()
            await close_explorer_client()
            await close_database()

    try:
        return asyncio.run(_run())
    except NodeUnavailableError as e:
        console.print(f"❌ Node unavailable, {operation} aborted: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unable to {operation}", error=str(e), investigate=True)
        console.print(f"❌ Unable to {operation}: {e}")
        sys.exit(1)


@app.command("init-db")
def init_db():
    """Create the warehouse tables."""
    async def _init():
        setup_logging()
        await init_database()
        await DatabaseManager.create_tables()
        await close_database()
        console.print("✅ Database initialized successfully!")

    asyncio.run(_init())


@app.command("process-latest")
def process_latest():
    """Process the most recent completed epoch."""
    result = run("process latest epoch", lambda accountant: accountant.process_latest_epoch())
    if result.skipped:
        console.print(f"⏭️ Epoch {result.epoch} skipped: {result.skipped_reason}")
    else:
        console.print(f"✅ Epoch {result.epoch} loaded {result.entries_loaded} entries (revision {result.revision})")


@app.command()
def process(epoch: int):
    """Process one epoch."""
    result = run(f"process epoch {epoch}", lambda accountant: accountant.process_epoch(epoch))
    if result.skipped:
        console.print(f"⏭️ Epoch {epoch} skipped: {result.skipped_reason}")
    else:
        console.print(f"✅ Epoch {epoch} loaded {result.entries_loaded} entries (revision {result.revision})")
    if result.failed_collectors:
        console.print(f"⚠️ Failed collectors: {', '.join(result.failed_collectors)}")


@app.command()
def backfill(epoch: int):
    """Backfill one epoch address by address."""
    result = run(f"backfill epoch {epoch}", lambda accountant: accountant.backfill_addresses(epoch))
    if result.skipped:
        console.print(f"⏭️ Epoch {epoch} skipped: {result.skipped_reason}")
    else:
        console.print(f"✅ Epoch {epoch} backfilled {result.entries_loaded} entries")


@app.command("backfill-range")
def backfill_range(
    from_epoch: int,
    to_epoch: int,
    job_id: Optional[str] = typer.Option(None, help="Resume or name a specific backfill job"),
):
    """Backfill an epoch range, resuming from the persisted cursor."""
    cursor = run(
        f"backfill epochs {from_epoch}-{to_epoch}",
        lambda accountant: BackfillRunner(accountant).run(from_epoch, to_epoch, job_id=job_id),
    )
    if cursor.status == BackfillStatus.COMPLETED.value:
        console.print(f"✅ Backfill {cursor.job_id} completed at epoch {cursor.last_completed_epoch}")
    else:
        console.print(
            f"⏸️ Backfill {cursor.job_id} paused after epoch {cursor.last_completed_epoch}, "
            f"run again once epoch {cursor.next_epoch} has completed"
        )


@app.command()
def reconcile(epoch: Optional[int] = typer.Argument(None, help="Defaults to the last epoch processed")):
    """Reconcile the ledger against on-chain balances."""
    records = run("reconcile", lambda accountant: accountant.reconcile(epoch))

    table = Table(title="Reconciliation")
    table.add_column("Address")
    table.add_column("Alias")
    table.add_column("CELO difference", justify="right")
    table.add_column("cUSD difference", justify="right")
    table.add_column("Mismatch")

    for record in records:
        table.add_row(
            record.address,
            record.alias,
            str(record.difference),
            str(record.stable_difference),
            "❌" if record.mismatch else "✅",
        )

    console.print(table)


@app.command()
def status():
    """Show the current revision and processed epochs."""
    current = run("read current status", lambda accountant: accountant.current_status())

    table = Table(title="Current Status")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Current revision", str(current.current_revision))
    table.add_row("Latest epoch", str(current.latest_epoch))
    table.add_row("Epochs", ", ".join(str(epoch) for epoch in current.all_epochs) or "-")

    console.print(table)


@app.command("create-revision")
def create_revision():
    """Start a new revision for a full recompute."""
    revision = run("create revision", lambda accountant: accountant.create_revision())
    console.print(f"✅ Created revision {revision}")


if __name__ == "__main__":
    app()
