"""Async utilities for running blocking store/HTTP work off the event loop."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore, initialized at server startup
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 4) -> None:
    """Initialize the concurrency semaphore. Call once at startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "Trip reconciliation semaphore initialized: max_parallel=%d",
        max_parallel,
    )


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The webhook handler uses this for calendar reconciliation, which
    performs blocking HTTP calls and file writes.

    Example:
        report = await run_sync(runner.sync_calendar_channel, channel_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool, bounded by the concurrency semaphore.

    Falls back to unbounded if semaphore not initialized.
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Coroutine[Any, Any, T]],
) -> list[T]:
    """Run coroutines concurrently, bounded by the semaphore.

    Each coroutine should use run_sync_limited internally.
    Returns results in order. Exceptions propagate from the first failure.
    """
    return list(await asyncio.gather(*coros))


async def run_periodic(
    func: Callable[[], Awaitable[Any]],
    interval: float,
    *,
    stop: asyncio.Event | None = None,
) -> None:
    """Await *func* every *interval* seconds until *stop* is set.

    A failing run is logged and the loop continues with the next tick;
    there is no immediate retry.  The first run starts right away.
    """
    stop = stop or asyncio.Event()
    while not stop.is_set():
        try:
            await func()
        except Exception:
            logger.exception("Periodic job failed; retrying next cycle")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
