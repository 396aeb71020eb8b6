"""Fixed-interval scheduler for background jobs."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


def seconds_until_next_tick(now: datetime, interval: timedelta) -> float:
    """
    Seconds until the next wall-clock multiple of ``interval``.

    A five minute interval fires at :00, :05, :10 ... like ``*/5 * * * *``.
    """
    period = interval.total_seconds()
    elapsed = now.timestamp() % period
    return period - elapsed


class IntervalScheduler:
    """Runs an async job every ``interval``, one invocation at a time."""

    def __init__(
        self,
        interval: timedelta,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_every(self, job: Job) -> asyncio.Task:
        """Start calling ``job`` on every tick."""
        if self.running:
            raise RuntimeError("scheduler is already running")
        self._task = asyncio.create_task(self._loop(job))
        return self._task

    async def tick(self, job: Job) -> None:
        """Invoke the job once, logging instead of raising on failure."""
        try:
            await job()
        except Exception:
            logger.exception("Scheduled job %s failed", getattr(job, "__name__", job))

    async def _loop(self, job: Job) -> None:
        while True:
            await self._sleep(seconds_until_next_tick(self._clock(), self.interval))
            await self.tick(job)

    async def stop(self) -> None:
        """Cancel the running loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
