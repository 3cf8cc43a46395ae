"""
Bounded fan-out for I/O-bound coroutines.

Every fan-out against the node, the explorer or the warehouse goes through
``concurrent_map`` so the number of in-flight upstream calls never exceeds
the configured limit. Within a collector fan-outs do not nest, so a run has
at most ``collector_concurrency * detail_concurrency`` calls in flight.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar


T = TypeVar("T")
R = TypeVar("R")


async def concurrent_map(
    limit: int,
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
) -> List[R]:
    """
    Apply ``func`` to every item with at most ``limit`` calls in flight.

    Results keep the order of ``items``. The first exception cancels the
    remaining calls and is re-raised.
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be at least 1, got {limit}")

    semaphore = asyncio.Semaphore(limit)

    async def run_with_semaphore(item: T) -> R:
        async with semaphore:
            return await func(item)

    tasks = [asyncio.ensure_future(run_with_semaphore(item)) for item in items]
    if not tasks:
        return []

    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
