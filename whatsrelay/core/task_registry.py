"""Task registry for tracking deferred and background asyncio work.

Retries, reconnects, settle delays and restarts are all spawned here so that
nothing is a bare fire-and-forget asyncio.create_task() call.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Coroutine, TypeVar

from instrukt_ai_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TaskRegistry:
    """Registry for tracking background asyncio tasks.

    Example:
        registry = TaskRegistry()
        registry.call_later(2.0, reconnect, name="reconnect")
        await registry.shutdown(timeout=5.0)
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[object]] = set()

    def _on_task_done(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)

    def spawn(self, coro: Coroutine[object, object, T], name: str | None = None) -> asyncio.Task[T]:
        """Spawn a tracked background task.

        Completed tasks remove themselves from the registry; failures are logged.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)  # type: ignore[arg-type]
        task.add_done_callback(self._on_task_done)  # type: ignore[arg-type]
        logger.debug("Spawned tracked task: %s (total: %d)", name or f"<unnamed-{id(task)}>", len(self._tasks))
        return task

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[object] | object],
        name: str | None = None,
    ) -> asyncio.Task[None]:
        """Run callback after delay seconds.

        The callback may be sync or async. There is no cancel handle by intent:
        callbacks guard themselves by checking the instance they captured.
        """

        async def _run() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            result = callback()
            if asyncio.iscoroutine(result):
                await result

        return self.spawn(_run(), name=name)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel all tracked tasks and wait up to timeout seconds for them."""
        if not self._tasks:
            logger.debug("No tasks to shutdown")
            return

        task_count = len(self._tasks)
        logger.info("Shutting down %d tracked tasks (timeout=%.1fs)", task_count, timeout)

        for task in self._tasks:
            if not task.done():
                task.cancel()

        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            logger.warning(
                "Shutdown timeout: %d/%d tasks still pending after %.1fs",
                len(pending),
                task_count,
                timeout,
            )

    def task_count(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)
