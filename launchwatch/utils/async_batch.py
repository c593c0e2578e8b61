"""Async batch utilities for parallel API operations."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterator, Sequence, TypeVar

log = logging.getLogger("launchwatch.batch")

T = TypeVar("T")
R = TypeVar("R")


def iter_batches(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def with_timeout(awaitable: Awaitable[R], seconds: float | None) -> R:
    """Await with an optional deadline; raises asyncio.TimeoutError."""
    if seconds is None or seconds <= 0:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=seconds)


async def batch_gather(
    items: Sequence[T],
    async_fn: Callable[[T], Awaitable[R]],
    max_concurrent: int = 5,
) -> list[R | BaseException]:
    """Execute async function on items with concurrency limit.

    Args:
        items: Items to process
        async_fn: Async function to call on each item
        max_concurrent: Max concurrent operations

    Returns:
        Results in input order; a failed item yields its exception instead.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def bounded_call(item: T) -> R:
        async with semaphore:
            return await async_fn(item)

    return await asyncio.gather(*[bounded_call(item) for item in items], return_exceptions=True)


async def run_in_batches(
    items: Sequence[T],
    async_fn: Callable[[T], Awaitable[R]],
    on_batch: Callable[[Sequence[T], list[R | BaseException]], Any],
    batch_size: int = 10,
    delay_seconds: float = 1.5,
    abort: asyncio.Event | None = None,
) -> bool:
    """Process ``items`` batch by batch, handing each batch's results to ``on_batch``.

    The abort event is checked before each batch starts; a batch already in
    flight always finishes and is handed over. Returns True if aborted.
    """
    batches = list(iter_batches(items, batch_size))
    for index, batch in enumerate(batches):
        if abort is not None and abort.is_set():
            log.info("Abort requested; %d of %d batches skipped", len(batches) - index, len(batches))
            return True
        results = await batch_gather(batch, async_fn, max_concurrent=len(batch))
        outcome = on_batch(batch, results)
        if asyncio.iscoroutine(outcome):
            await outcome
        if index < len(batches) - 1 and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)
    return False
