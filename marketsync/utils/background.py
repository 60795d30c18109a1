"""Fire-and-forget task tracking for persistence writes."""

import asyncio
from collections.abc import Awaitable, Callable

from marketsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class BackgroundWriter:
    """
    Schedules persistence coroutines without blocking the caller.

    Writes are full snapshots, so at most one runs at a time. Scheduling while
    a write is in flight marks the writer dirty and the running task writes
    once more when it finishes; the newest snapshot always lands last.

    The coroutine factory is only invoked when an event loop is running, so
    synchronous callers (and tests without a loop) never leak un-awaited
    coroutines; they flush explicitly instead.
    """

    def __init__(self, name: str):
        self.name = name
        self._task: asyncio.Task | None = None
        self._dirty = False

    def schedule(self, factory: Callable[[], Awaitable[None]]) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False

        if self._task is not None and not self._task.done():
            self._dirty = True
            return True

        self._dirty = True
        self._task = loop.create_task(self._run(factory))
        return True

    async def _run(self, factory: Callable[[], Awaitable[None]]):
        while self._dirty:
            self._dirty = False
            try:
                await factory()
            except Exception as e:
                logger.warning("Background write failed", writer=self.name, error=str(e))

    @property
    def pending(self) -> int:
        return int(self._task is not None and not self._task.done())

    async def drain(self):
        """Wait for the scheduled write (used on shutdown and in tests)."""
        while self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)
