from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from cardshop.core.logging import get_logger

logger = get_logger("tasks")


class BackgroundTaskGroup:
    """Detached tasks that outlive the request which scheduled them.

    Callers never await what they spawn. Failures are logged on completion
    and never reach the caller. ``drain()`` is called on shutdown.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
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
                "background task failed",
                extra={"task": task.get_name(), "error": repr(exc)},
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = 10.0) -> None:
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
