"""
Periodic job scheduling for in-session maintenance sweeps.

Jobs are registered explicitly, started together, and cancelled together on
shutdown. Sweeps only prune in-memory state; they never wait on I/O.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

from marketsync.infrastructure.observability.logging import get_logger, log_job_run

logger = get_logger(__name__)

SweepFunction = Callable[[], int]


class PeriodicJob:
    """Runs a synchronous sweep every `interval_seconds` until stopped."""

    def __init__(self, name: str, sweep: SweepFunction, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError(f"Job '{name}' needs a positive interval")
        self.name = name
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self.last_run_time: datetime | None = None
        self.last_removed = 0
        self.total_removed = 0
        self.runs = 0
        self.errors = 0
        self._task: asyncio.Task | None = None

    def run_once(self) -> int:
        """Run a single sweep iteration. Errors are logged and counted, not raised."""
        start = time.perf_counter()
        try:
            removed = self.sweep()
        except Exception as e:
            self.errors += 1
            logger.error(
                "Periodic job failed", job=self.name, error=str(e), error_type=type(e).__name__
            )
            return 0

        self.runs += 1
        self.last_removed = removed
        self.total_removed += removed
        self.last_run_time = datetime.now(UTC)
        log_job_run(self.name, removed, round((time.perf_counter() - start) * 1000, 2))
        return removed

    async def _loop(self):
        logger.info("Periodic job started", job=self.name, interval_seconds=self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.run_once()

    def start(self):
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"job:{self.name}")

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Periodic job stopped", job=self.name)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_status(self) -> dict:
        return {
            "job_name": self.name,
            "is_running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "runs": self.runs,
            "last_removed": self.last_removed,
            "total_removed": self.total_removed,
            "errors": self.errors,
        }


class JobScheduler:
    def __init__(self):
        self._jobs: dict[str, PeriodicJob] = {}
        self._started = False

    def register(self, name: str, sweep: SweepFunction, interval_seconds: float) -> PeriodicJob:
        if name in self._jobs:
            raise ValueError(f"Job '{name}' is already registered")
        job = PeriodicJob(name, sweep, interval_seconds)
        self._jobs[name] = job
        if self._started:
            job.start()
        return job

    def get(self, name: str) -> PeriodicJob:
        if name not in self._jobs:
            raise ValueError(
                f"Unknown job '{name}'. Available jobs: {', '.join(sorted(self._jobs))}"
            )
        return self._jobs[name]

    def run_now(self, name: str) -> int:
        return self.get(name).run_once()

    def start(self):
        """Start every registered job. Must be called from a running event loop."""
        for job in self._jobs.values():
            job.start()
        self._started = True
        logger.info("Job scheduler started", jobs=sorted(self._jobs))

    async def shutdown(self):
        self._started = False
        for job in self._jobs.values():
            await job.stop()
        logger.info("Job scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    def get_status(self) -> dict:
        return {
            "is_running": self._started,
            "jobs": {name: job.get_status() for name, job in self._jobs.items()},
        }
