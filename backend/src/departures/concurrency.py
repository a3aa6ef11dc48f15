"""Order-preserving async map with a fixed number of concurrent workers."""
import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_bounded(
    items: Sequence[T],
    limit: int,
    work: Callable[[T], Awaitable[R]],
) -> list[R]:
    """
    Run work(item) for every item with at most `limit` calls in flight.
    Results come back in input order whatever the completion order.
    The first failure propagates; workers already running are not cancelled.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    results: list[R | None] = [None] * len(items)
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while cursor < len(items):
            # No await between read and increment, so workers never share an index
            idx = cursor
            cursor += 1
            results[idx] = await work(items[idx])

    workers = [asyncio.create_task(worker()) for _ in range(min(limit, len(items)))]
    if workers:
        await asyncio.gather(*workers)
    return results  # type: ignore[return-value]
