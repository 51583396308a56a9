"""Detached background work.

Work started here belongs to the supervisor, not to the request that
scheduled it, so it keeps running after the response has been sent or the
client has gone away. The supervisor holds a strong reference to every task
until it finishes and can drain outstanding work at shutdown.
"""

import asyncio
import logging
from typing import Coroutine, Any, Dict, Optional

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Owns detached asyncio tasks keyed by a name (the upload attempt)."""

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        task = loop.create_task(coro, name=f"ingest:{name}")
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._finished(name, t))
        return task

    def _finished(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            logger.warning(f"Background task {name} was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {name} crashed: {exc!r}", exc_info=exc)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every task spawned so far has finished. False on timeout."""
        while self._tasks:
            pending = list(self._tasks.values())
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                return False
        return True

    async def shutdown(self, timeout: float) -> None:
        """Give in-flight work a grace period, then cancel whatever is left."""
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} background task(s) to finish")
        if await self.wait_idle(timeout):
            return
        remaining = list(self._tasks.values())
        logger.warning(f"Cancelling {len(remaining)} unfinished background task(s)")
        for task in remaining:
            task.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)
