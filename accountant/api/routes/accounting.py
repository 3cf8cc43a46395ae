"""
Accounting trigger routes.

Action routes answer with a bare success or failure marker; value routes
answer with their value, or a fixed default when the run fails. Diagnostics
live in the log stream only.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

import structlog

from accountant.core.config import settings
from accountant.ledger.backfill import BackfillRunner
from accountant.api.dependencies import (
    AccountantFactory,
    get_accountant_factory,
    get_backfill_runner_factory,
    get_user_input,
)
from accountant.api.schemas.accounting import (
    CurrentStatusResponse,
    ReconciliationRecordResponse,
    UserInput,
)
from accountant.api.schemas.common import FAILURE_MARKER, SUCCESS_MARKER


logger = structlog.get_logger(__name__)

router = APIRouter()


async def success_or_failure(operation: str, action: Callable[[], Awaitable[Any]]) -> PlainTextResponse:
    """Run ``action`` and reduce its outcome to a marker."""
    try:
        await action()
    except Exception as e:
        logger.error(
            f"Unable to {operation}",
            error=str(e),
            error_type=type(e).__name__,
            investigate=True,
        )
        return PlainTextResponse(FAILURE_MARKER, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return PlainTextResponse(SUCCESS_MARKER, status_code=status.HTTP_200_OK)


def require(value: Optional[int], name: str) -> int:
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": f"{name} is required"}
        )
    return value


async def run_backfill(runner: BackfillRunner, from_epoch: int, to_epoch: int) -> None:
    """Background backfill; failures end up in the log stream."""
    try:
        await runner.run(from_epoch, to_epoch)
    except Exception as e:
        logger.error(
            f"Backfill of epochs {from_epoch}-{to_epoch} stopped",
            from_epoch=from_epoch,
            to_epoch=to_epoch,
            error=str(e),
            error_type=type(e).__name__,
            investigate=True,
        )


@router.post(
    "/process-latest-epoch",
    response_class=PlainTextResponse,
    summary="Process Latest Epoch",
    description="Collect, load and reconcile the most recent completed epoch"
)
async def process_latest_epoch(
    user_input: UserInput = Depends(get_user_input),
    conjure: AccountantFactory = Depends(get_accountant_factory),
):
    async def action():
        accountant = await conjure(user_input.addresses)
        await accountant.process_latest_epoch()

    return await success_or_failure("process latest epoch", action)


@router.post(
    "/backfill-epoch",
    response_class=PlainTextResponse,
    summary="Backfill Epoch",
    description="Collect an epoch and load it address by address"
)
async def backfill_epoch(
    user_input: UserInput = Depends(get_user_input),
    conjure: AccountantFactory = Depends(get_accountant_factory),
):
    epoch = require(user_input.epoch, "epoch")

    async def action():
        accountant = await conjure(user_input.addresses)
        await accountant.backfill_addresses(epoch)

    return await success_or_failure(f"backfill epoch {epoch}", action)


@router.post(
    "/initiate-backfill",
    response_class=PlainTextResponse,
    summary="Initiate Backfill",
    description="Start a resumable backfill of an epoch range in the background"
)
async def initiate_backfill(
    background_tasks: BackgroundTasks,
    user_input: UserInput = Depends(get_user_input),
    conjure: AccountantFactory = Depends(get_accountant_factory),
    runner_factory: Type[BackfillRunner] = Depends(get_backfill_runner_factory),
):
    from_epoch = require(user_input.from_epoch, "fromEpoch")
    to_epoch = require(user_input.to_epoch, "toEpoch")
    if from_epoch > to_epoch:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": "fromEpoch must not be after toEpoch"}
        )

    async def action():
        runner = runner_factory(await conjure(user_input.addresses))
        background_tasks.add_task(run_backfill, runner, from_epoch, to_epoch)
        logger.info(
            f"Initiating backfill from epoch {from_epoch} to {to_epoch}",
            from_epoch=from_epoch,
            to_epoch=to_epoch,
        )

    return await success_or_failure(f"initiate backfill of epochs {from_epoch}-{to_epoch}", action)


@router.api_route(
    "/reconcile",
    methods=["GET", "POST"],
    response_model=List[ReconciliationRecordResponse],
    summary="Reconcile",
    description="Mismatched addresses followed by the Overall summary; [] on failure"
)
async def reconcile(
    user_input: UserInput = Depends(get_user_input),
    conjure: AccountantFactory = Depends(get_accountant_factory),
):
    try:
        accountant = await conjure(user_input.addresses)
        records = await accountant.reconcile(user_input.epoch)
    except Exception as e:
        logger.error("Unable to reconcile", epoch=user_input.epoch, error=str(e), investigate=True)
        return []
    return [ReconciliationRecordResponse.from_record(record) for record in records]


@router.get(
    "/current-status",
    response_model=CurrentStatusResponse,
    response_model_exclude_none=True,
    summary="Current Status",
    description="Current revision, latest processed epoch and every processed epoch"
)
async def current_status(
    user_input: UserInput = Depends(get_user_input),
    conjure: AccountantFactory = Depends(get_accountant_factory),
):
    try:
        accountant = await conjure(user_input.addresses)
        return CurrentStatusResponse.from_status(await accountant.current_status())
    except Exception as e:
        logger.error("Unable to read current status", error=str(e), investigate=True)
        return CurrentStatusResponse(error=True)


@router.post(
    "/create-revision",
    response_model=Optional[int],
    summary="Create Revision",
    description="Create the next revision; null on failure"
)
async def create_revision(
    user_input: UserInput = Depends(get_user_input),
    conjure: AccountantFactory = Depends(get_accountant_factory),
):
    try:
        accountant = await conjure(user_input.addresses)
        return await accountant.create_revision()
    except Exception as e:
        logger.error("Unable to create revision", error=str(e), investigate=True)
        return None


@router.get(
    "/configuration",
    response_model=Dict[str, Any],
    summary="Configuration",
    description="Non-secret runtime configuration"
)
async def configuration(user_input: UserInput = Depends(get_user_input)):
    try:
        return settings.public_view()
    except Exception as e:
        logger.error("Unable to read configuration", error=str(e), investigate=True)
        return {}
