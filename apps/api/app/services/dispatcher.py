"""Fire-and-forget job runner for work that must not delay a response."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

Job = Callable[[], Awaitable[Any]]

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Run coroutine jobs on the event loop, logging instead of raising."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, name: str, job: Job) -> asyncio.Task[None]:
        """Schedule ``job`` and return its task; the caller need not await it."""

        task = asyncio.get_running_loop().create_task(self._run(name, job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Dispatched background job %s", name)
        return task

    async def _run(self, name: str, job: Job) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            logger.info("Background job %s cancelled", name)
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Background job %s failed", name)

    async def drain(self) -> None:
        """Wait until every job, including ones dispatched meanwhile, has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding jobs."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


dispatcher = BackgroundDispatcher()
