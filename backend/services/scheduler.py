"""
Timing seam for everything that waits: pacing delays before AI replies,
bot think-time, and fire-and-forget background work.

Production uses Scheduler (real asyncio sleeps). Tests swap in a subclass
whose sleep() returns immediately, so bot conversations and pacing delays
run without wall-clock time.
"""
import asyncio
import logging
import random
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        # Strong references so pending tasks are not garbage-collected mid-flight
        self._tasks: Set[asyncio.Task] = set()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def jitter(self, low: float, high: float) -> float:
        """Random delay in [low, high] seconds."""
        return self._rng.uniform(low, high)

    def choice(self, options):
        return self._rng.choice(options)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine in the background and keep a reference until it finishes."""
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
                "Background task %s failed", task.get_name(), exc_info=exc
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until no background tasks remain (including ones spawned while waiting)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
