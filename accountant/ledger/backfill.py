"""
Range backfill driver.

Walks a range of epochs in order, backfilling each one through the
accountant. Progress is persisted as a cursor after every completed epoch,
so a crashed or failed job resumes where it stopped. Failed epochs are
retried a bounded number of times with exponential backoff. An epoch that
has not completed yet pauses the job without moving the cursor; the job stays
running and the next run picks up at that epoch.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy import select

from accountant.core.config import settings
from accountant.core.database import get_async_session
from accountant.core.exceptions import BackfillError, NodeUnavailableError, ValidationError
from accountant.ledger.accountant import ProcessingResult
from accountant.models.backfill import BackfillCursor, BackfillStatus
from accountant.utils.timing import exec_time


logger = structlog.get_logger(__name__)


class BackfillCursorStore:
    """Persists backfill cursors in the warehouse."""

    async def open(self, job_id: str, from_epoch: int, to_epoch: int) -> BackfillCursor:
        """Existing cursor for ``job_id``, or a new one at ``from_epoch``."""
        async with get_async_session() as session:
            cursor = await session.get(BackfillCursor, job_id)
            if cursor is None:
                cursor = BackfillCursor(
                    job_id=job_id,
                    from_epoch=from_epoch,
                    to_epoch=to_epoch,
                    last_completed_epoch=None,
                    status=BackfillStatus.RUNNING.value,
                    attempts=0,
                )
                session.add(cursor)
            elif (cursor.from_epoch, cursor.to_epoch) != (from_epoch, to_epoch):
                raise ValidationError(
                    f"Backfill job {job_id} already covers epochs {cursor.from_epoch}-{cursor.to_epoch}",
                    details={"job_id": job_id, "from_epoch": from_epoch, "to_epoch": to_epoch}
                )
            elif cursor.status == BackfillStatus.FAILED.value:
                cursor.status = BackfillStatus.RUNNING.value
                cursor.attempts = 0
            await session.flush()
            return cursor

    async def get(self, job_id: str) -> Optional[BackfillCursor]:
        async with get_async_session() as session:
            return await session.get(BackfillCursor, job_id)

    async def complete_epoch(self, job_id: str, epoch: int) -> None:
        async with get_async_session() as session:
            cursor = await self._locked(session, job_id)
            cursor.last_completed_epoch = epoch
            cursor.attempts = 0

    async def record_attempt(self, job_id: str) -> None:
        async with get_async_session() as session:
            cursor = await self._locked(session, job_id)
            cursor.attempts += 1

    async def set_status(self, job_id: str, status: BackfillStatus) -> None:
        async with get_async_session() as session:
            cursor = await self._locked(session, job_id)
            cursor.status = status.value

    @staticmethod
    async def _locked(session, job_id: str) -> BackfillCursor:
        result = await session.execute(
            select(BackfillCursor).where(BackfillCursor.job_id == job_id).with_for_update()
        )
        return result.scalar_one()


class BackfillRunner:
    """Backfills an epoch range with a persisted cursor and bounded retries."""

    def __init__(
        self,
        accountant,
        cursors: Optional[BackfillCursorStore] = None,
        throttle_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.accountant = accountant
        self.cursors = cursors or BackfillCursorStore()
        self.throttle_seconds = settings.backfill_throttle_seconds if throttle_seconds is None else throttle_seconds
        self.max_retries = settings.backfill_max_retries if max_retries is None else max_retries
        self.retry_base_delay = (
            settings.backfill_retry_base_delay if retry_base_delay is None else retry_base_delay
        )
        self.sleep = sleep
        self.logger = logger.bind(class_name=self.__class__.__name__)

    @staticmethod
    def job_id_for(from_epoch: int, to_epoch: int) -> str:
        return f"backfill-{from_epoch}-{to_epoch}"

    @exec_time
    async def run(self, from_epoch: int, to_epoch: int, job_id: Optional[str] = None) -> BackfillCursor:
        if from_epoch > to_epoch:
            raise ValidationError(
                f"fromEpoch {from_epoch} is after toEpoch {to_epoch}",
                details={"from_epoch": from_epoch, "to_epoch": to_epoch}
            )

        job_id = job_id or self.job_id_for(from_epoch, to_epoch)
        log = self.logger.bind(job_id=job_id)

        cursor = await self.cursors.open(job_id, from_epoch, to_epoch)
        if cursor.status == BackfillStatus.COMPLETED.value:
            log.info("Backfill already completed")
            return cursor

        epoch = cursor.next_epoch
        if epoch > from_epoch:
            log.info(f"Resuming backfill at epoch {epoch}", epoch=epoch)

        while epoch <= to_epoch:
            result = await self._backfill_epoch(job_id, epoch)
            if result.skipped:
                log.info(
                    f"Backfill paused at epoch {epoch}: {result.skipped_reason}",
                    epoch=epoch,
                    reason=result.skipped_reason,
                )
                return await self.cursors.get(job_id)

            await self.cursors.complete_epoch(job_id, epoch)
            log.info(f"Backfilled epoch {epoch}", epoch=epoch, remaining=to_epoch - epoch)

            if epoch < to_epoch:
                await self.sleep(self.throttle_seconds)
            epoch += 1

        await self.cursors.set_status(job_id, BackfillStatus.COMPLETED)
        log.info("Backfill completed", from_epoch=from_epoch, to_epoch=to_epoch)
        return await self.cursors.get(job_id)

    async def _backfill_epoch(self, job_id: str, epoch: int) -> ProcessingResult:
        log = self.logger.bind(job_id=job_id, epoch=epoch)

        for attempt in range(self.max_retries + 1):
            try:
                return await self.accountant.backfill_addresses(epoch)
            except NodeUnavailableError:
                await self.cursors.set_status(job_id, BackfillStatus.FAILED)
                raise
            except Exception as e:
                await self.cursors.record_attempt(job_id)

                if attempt >= self.max_retries:
                    await self.cursors.set_status(job_id, BackfillStatus.FAILED)
                    log.error(
                        f"Backfill of epoch {epoch} failed after {attempt + 1} attempts",
                        error=str(e),
                        investigate=True,
                    )
                    raise BackfillError(
                        f"Backfill of epoch {epoch} failed after {attempt + 1} attempts",
                        details={"job_id": job_id, "epoch": epoch, "error": str(e)}
                    ) from e

                delay = self.retry_base_delay * 2 ** attempt
                log.warning(
                    f"Backfill of epoch {epoch} failed, retrying in {delay}s",
                    attempt=attempt + 1,
                    error=str(e),
                )
                await self.sleep(delay)
