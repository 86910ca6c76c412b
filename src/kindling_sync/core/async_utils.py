"""Async utilities for dispatching blocking import/sync work off the event loop."""

import asyncio
import logging
from typing import Any, Callable, Iterable, TypeVar

T = TypeVar("T")
A = TypeVar("A")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread.

    Readers, the diff engine and the SQLite store are all synchronous; this
    is how async callers reach them.

    Example:
        preview = await run_sync(service.get_sync_preview, project_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def map_bounded(
    func: Callable[[A], T], items: Iterable[A], max_parallel: int
) -> list[T]:
    """Call *func* on every item in worker threads, at most *max_parallel* at once.

    The semaphore belongs to this call, so concurrent batches on other event
    loops never share it. Results are in input order; the first exception
    propagates.
    """
    semaphore = asyncio.Semaphore(max_parallel)

    async def _one(item: A) -> T:
        async with semaphore:
            return await asyncio.to_thread(func, item)

    batch = list(items)
    logger.debug("Dispatching %d calls, max_parallel=%d", len(batch), max_parallel)
    return list(await asyncio.gather(*(_one(item) for item in batch)))
