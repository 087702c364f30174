"""Periodic background jobs."""
import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from config.logging import log_error

logger = structlog.get_logger()


class PeriodicJob:
    """
    Runs a coroutine function every ``interval`` seconds.

    A run never overlaps another run of the same job: the loop waits for
    each run to finish before sleeping, and ``run_once`` is a no-op while a
    run is in flight. A failing run is logged and the schedule continues.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[object]],
                 run_immediately: bool = True):
        self.name = name
        self.interval = interval
        self.func = func
        self.run_immediately = run_immediately
        self.running = False
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """
        Run the job now unless a run is already in flight.

        Returns:
            True if the job ran, False if it was skipped
        """
        if self.running:
            logger.debug("periodic_job_skipped", job=self.name)
            return False

        self.running = True
        try:
            await self.func()
            self.runs += 1
        except Exception as e:
            log_error(logger, e, {"job": self.name}, event="periodic_job_failed")
        finally:
            self.running = False
        return True

    async def _loop(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.started:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("periodic_job_started", job=self.name, interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("periodic_job_stopped", job=self.name)
