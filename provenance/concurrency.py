import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def bounded_map(items: Sequence[T], mapper: Callable[[T], Awaitable[R]], concurrency: int) -> List[R]:
    """Run ``mapper`` over ``items`` with at most ``concurrency`` calls in flight.

    Results are index-aligned with ``items``. The first exception cancels the
    remaining work and is re-raised.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")
    if not items:
        return []

    semaphore = asyncio.Semaphore(concurrency)

    async def run(item: T) -> R:
        async with semaphore:
            return await mapper(item)

    tasks = [asyncio.ensure_future(run(item)) for item in items]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return [task.result() for task in tasks]
