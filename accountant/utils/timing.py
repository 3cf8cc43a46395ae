"""
Execution timing decorator.
"""

import functools
import time
from typing import Any, Callable

import structlog


logger = structlog.get_logger(__name__)


def exec_time(func: Callable) -> Callable:
    """
    Log start and duration of an async method.

    The owning class name is taken from ``self`` so collectors sharing a
    decorated method still report under their own name.
    """
    @functools.wraps(func)
    async def async_wrapper(*args, **kwargs) -> Any:
        owner = type(args[0]).__name__ if args else None
        logger.info("Started execution", class_name=owner, method=func.__name__)

        start = time.monotonic()
        result = await func(*args, **kwargs)
        duration = round(time.monotonic() - start, 3)

        logger.info(
            f"Finished execution in {duration}s",
            class_name=owner,
            method=func.__name__,
            duration=duration,
        )
        return result

    return async_wrapper
