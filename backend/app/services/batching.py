"""Bounded-concurrency helper shared by liveness probes and bulk checks."""

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_in_batches(
    items: Sequence[T],
    func: Callable[[T], Awaitable[R]],
    batch_size: int = 5,
) -> list[R]:
    """Run ``func`` over ``items`` in fixed-size concurrent batches.

    Each batch is awaited in full before the next one starts, so at most
    ``batch_size`` calls are in flight.  Results come back in input order.
    Exceptions raised by ``func`` propagate; callers that want per-item
    failure tolerance must catch inside ``func``.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    results: list[R] = []
    for start in range(0, len(items), batch_size):
        chunk = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(func(item) for item in chunk)))
    return results
