"""
Bounded pool of detached build tasks.

Builds triggered by push notifications run after the triggering request has
been answered. Each submission returns the asyncio.Task so callers (and
tests) can observe it; at most `max_concurrent` builds run at once and the
rest wait on a semaphore.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 2


class BuildDispatcher:
    """Runs build coroutines as tracked background tasks."""

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        self.max_concurrent = max(1, max_concurrent)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        """Submitted tasks not yet finished (running or waiting for a slot)."""
        return len(self._tasks)

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    async def _run(self, fn: Callable[[], Awaitable], name: str):
        async with self._get_semaphore():
            logger.info(f"dispatch_start task={name}")
            try:
                return await fn()
            except asyncio.CancelledError:
                logger.warning(f"dispatch_cancelled task={name}")
                raise
            except Exception:
                # Nobody awaits a detached build; the record store carries the outcome
                logger.exception(f"dispatch_error task={name}")
                return None
            finally:
                logger.info(f"dispatch_done task={name}")

    def submit(self, fn: Callable[[], Awaitable], name: str = "build") -> asyncio.Task:
        """Schedule fn() on the running loop and return its task handle."""
        task = asyncio.create_task(self._run(fn, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks (application shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"dispatch_shutdown cancelled={len(tasks)}")
