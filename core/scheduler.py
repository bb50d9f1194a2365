"""
TELECONSULT+ Periodic Tasks

Interval loops (session sweeps) that run on the event loop and are
started / stopped explicitly from the application lifespan.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs ``callback`` every ``interval`` seconds until stopped.

    The callback may be a plain function or a coroutine function. Errors
    raised by one run are logged and the loop keeps going. ``sleep`` is
    injectable so tests can drive the loop without waiting on the wall clock.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Any],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.run_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Schedule the loop on the running event loop (idempotent)."""
        if self.is_running:
            return

        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"⏱️ Periodic task '{self.name}' started (interval: {self.interval}s)")

    async def stop(self):
        """Cancel the loop and wait for it to unwind."""
        if not self._task:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"⏹️ Periodic task '{self.name}' stopped")

    async def run_once(self):
        result = self.callback()
        if asyncio.iscoroutine(result):
            result = await result
        self.run_count += 1
        return result

    async def _loop(self):
        while True:
            await self._sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Periodic task '{self.name}' failed: {e}")
