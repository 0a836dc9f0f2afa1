"""Concurrency-limited execution of independent generation units."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

T = TypeVar("T")


def divide_array(array: Sequence[T], capacity: int) -> List[List[T]]:
    """Split ``array`` into the fewest chunks of at most ``capacity`` items,
    balancing chunk sizes."""

    if capacity <= 0:
        raise ValueError("capacity must be positive")
    if not array:
        return []
    count = -(-len(array) // capacity)
    size = -(-len(array) // count)
    return [list(array[i : i + size]) for i in range(0, len(array), size)]


async def execute_batch(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
) -> List[T]:
    """Run task factories concurrently behind a counting admission gate.

    Results keep the order of ``tasks``. The first exception propagates once
    every task has finished; callers that want partial results contain
    failures inside each task.
    """

    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(task: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await task()

    results = await asyncio.gather(*(_run(task) for task in tasks), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)  # type: ignore[arg-type]


__all__ = ["divide_array", "execute_batch"]
