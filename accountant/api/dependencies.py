"""
API dependencies for the trigger routes.

Every route reads its input through ``get_user_input``; the accountant and
backfill runner factories are dependencies so they can be overridden.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from fastapi import HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

import structlog

from accountant.ledger.accountant import Accountant
from accountant.ledger.backfill import BackfillRunner
from accountant.api.schemas.accounting import UserInput


logger = structlog.get_logger(__name__)


AccountantFactory = Callable[[Optional[Dict[str, Any]]], Awaitable[Accountant]]


async def _json_body(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        data = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": "Request body is not valid JSON"}
        )
    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": "Request body must be a JSON object"}
        )
    return data


async def get_user_input(request: Request) -> UserInput:
    """Query parameters merged with the JSON body; the body wins."""
    raw: Dict[str, Any] = dict(request.query_params)
    raw.update(await _json_body(request))

    logger.info("Request received", path=request.url.path, input=raw)

    try:
        return UserInput.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning("Invalid request input", path=request.url.path, errors=e.errors(include_url=False))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "VALIDATION_ERROR", "message": "Epoch inputs must be non-negative whole numbers"}
        )


def get_accountant_factory() -> AccountantFactory:
    return Accountant.conjure


def get_backfill_runner_factory() -> Type[BackfillRunner]:
    return BackfillRunner
