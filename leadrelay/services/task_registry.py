# leadrelay/services/task_registry.py
from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, Set

from leadrelay.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)


class BackgroundTaskRegistry:
    """
    Holds strong references to fire-and-forget tasks.

    The event loop only keeps weak references to tasks, so a task nobody
    holds can be collected mid-flight. Finished tasks remove themselves.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task.failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight tasks; cancel what is left after ``timeout``."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("background_tasks.cancelled", count=len(still_pending))
            await asyncio.gather(*still_pending, return_exceptions=True)
