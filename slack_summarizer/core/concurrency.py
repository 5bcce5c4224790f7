"""
Bounded async worker pools.

Two pools exist at runtime: one per pipeline run for channel-level work,
and a process-wide pool shared by every LLM call.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_LLM_CONCURRENCY = 20


class BoundedPool:
    """
    Runs coroutines with at most ``concurrency`` in flight.

    Queued tasks wait on a semaphore for a free slot; results of ``map``
    come back in submission order regardless of completion order.
    """

    def __init__(self, concurrency: int, name: str = "pool"):
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self.name = name
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._active = 0

    @property
    def active(self) -> int:
        """Number of tasks currently holding a slot."""
        return self._active

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Semaphores bind to one event loop; rebuild when a new loop uses the pool
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._loop = loop
        return self._semaphore

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run one coroutine factory once a slot is free."""
        async with self._get_semaphore():
            self._active += 1
            try:
                return await fn()
            finally:
                self._active -= 1

    async def map(self, items: Iterable[T], fn: Callable[[T], Awaitable[R]]) -> List[R]:
        """
        Apply ``fn`` to every item concurrently within the bound.

        Parameters
        ----------
        items : iterable
            Inputs, in submission order.
        fn : callable
            Async function applied to each item.

        Returns
        -------
        list
            Results index-correlated with ``items``.
        """
        items = list(items)
        if not items:
            return []
        logger.debug("%s: mapping %d items (concurrency=%d)", self.name, len(items), self.concurrency)
        return list(await asyncio.gather(*(self.run(lambda item=item: fn(item)) for item in items)))


_llm_pool: Optional[BoundedPool] = None


def get_llm_pool(concurrency: Optional[int] = None) -> BoundedPool:
    """
    Get the process-wide LLM pool, creating it on first use.

    ``concurrency`` only takes effect on the call that creates the pool.
    """
    global _llm_pool
    if _llm_pool is None:
        _llm_pool = BoundedPool(concurrency or DEFAULT_LLM_CONCURRENCY, name="llm")
        logger.debug("Created LLM pool with concurrency %d", _llm_pool.concurrency)
    return _llm_pool


def reset_llm_pool() -> None:
    """Drop the process-wide LLM pool (tests)."""
    global _llm_pool
    _llm_pool = None
