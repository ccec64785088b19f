from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class BoundedExecutor:
    """Caps in-flight fetch/extract coroutines at a fixed budget.

    Excess callers wait on a condition until a slot frees up. The slot is
    released on every exit path, including errors and cancellation.
    """

    def __init__(self, limit: int = 10) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._active = 0
        self._cv = asyncio.Condition()

    async def submit(self, fn: Callable[..., Awaitable[R]], *args) -> R:
        """Run ``fn(*args)`` once a slot is free and return its result."""
        async with self._cv:
            await self._cv.wait_for(lambda: self._active < self._limit)
            self._active += 1
        try:
            return await fn(*args)
        finally:
            async with self._cv:
                self._active -= 1
                self._cv.notify_all()

    async def map(self, fn: Callable[[T], Awaitable[R]], items: Iterable[T]) -> List[R]:
        """Apply ``fn`` to every item concurrently, one slot per call."""
        return await gather_ordered(self.submit(fn, item) for item in items)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active


async def gather_ordered(aws: Iterable[Awaitable[R]]) -> List[R]:
    """Await everything concurrently; results keep input order.

    The first error propagates after the remaining tasks are cancelled.
    Awaitables that do I/O must take their own executor slots.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
