"""Detached background tasks.

Best-effort side effects (cache writes, queue dispatch) run as tasks that
the request path never awaits. Failures are captured by a done-callback and
logged; they never reach the caller.
"""

import asyncio
from typing import Any, Coroutine, Optional, Set

from docgate.app.core.logging import get_logger

logger = get_logger(__name__)


class BackgroundTaskRunner:
    """Spawns fire-and-forget tasks and keeps them alive until they finish.

    asyncio only keeps weak references to running tasks, so the runner holds
    a strong reference for each pending task and drops it on completion.

    Usage:
        runner = BackgroundTaskRunner()
        runner.spawn(cache.put(key, value), name="content-cache-write")

        # On shutdown (or in tests) wait for pending work:
        await runner.drain()
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._tasks)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None
    ) -> asyncio.Task:
        """Schedule ``coro`` without awaiting it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {exc!r}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for all pending tasks; tasks still running after ``timeout`` are cancelled."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} background tasks still running at drain")
            await asyncio.gather(*pending, return_exceptions=True)
