import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from catalog_client.errors import ErrorKind, Result

logger = logging.getLogger(__name__)


class ViewLifetime:
    """Lifetime of one consuming view (a dashboard, a book details panel...).

    Coordinators check ``alive`` after every network round-trip and discard
    the response once the view has been disposed. Periodic work scheduled
    through ``schedule_every`` is cancelled on disposal.
    """

    def __init__(self, name: str = "view") -> None:
        self.name = name
        self._alive = True
        self._tasks: Set[asyncio.Task] = set()

    @property
    def alive(self) -> bool:
        return self._alive

    def stale_result(self) -> Result:
        """Result returned in place of a response that arrived after disposal."""
        logger.debug(f"Discarding result for disposed view '{self.name}'")
        return Result.failure(ErrorKind.CANCELLED, f"View '{self.name}' was closed")

    async def guard(self, awaitable: Awaitable[Result]) -> Result:
        """Await ``awaitable`` and drop its result if the view died meanwhile."""
        result = await awaitable
        if not self._alive:
            return self.stale_result()
        return result

    def schedule_every(self, interval: float, callback: Callable[[], Awaitable[object]],
                       name: Optional[str] = None) -> asyncio.Task:
        """Run ``callback`` every ``interval`` seconds until the view is disposed."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if not self._alive:
            raise RuntimeError(f"View '{self.name}' is already closed")

        async def _runner():
            while self._alive:
                await asyncio.sleep(interval)
                if not self._alive:
                    break
                try:
                    await callback()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # a failing tick does not end the schedule
                    logger.exception(f"Scheduled task failed for view '{self.name}'")

        task = asyncio.create_task(_runner(), name=name or f"{self.name}-every-{interval}s")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def scheduled(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def dispose(self) -> None:
        """Mark the view dead and cancel everything scheduled on it."""
        if not self._alive:
            return
        self._alive = False
        for task in list(self._tasks):
            task.cancel()
        logger.debug(f"View '{self.name}' disposed")

    async def aclose(self) -> None:
        """Dispose and wait for cancelled tasks to finish unwinding."""
        tasks = list(self._tasks)
        self.dispose()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
