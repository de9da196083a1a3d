"""
Periodic job scheduler.

Jobs are registered on a `schedule.Scheduler` and fire every interval after
an initial delay. One asyncio task started by the FastAPI lifespan drives
`run_pending()`; each firing launches the job coroutine as its own task so a
slow reconciliation never holds up the other jobs. A job still running when
it fires again is not started twice. A failing run is recorded on the job and
logged, and the schedule stays alive; the next firing retries naturally.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import schedule
import structlog

from lifecycle.cache.freshness import (
    CLOSURE_CACHE_PREFIX,
    LIFECYCLE_CACHE_PREFIX,
    FreshnessCache,
)
from lifecycle.engine.aggregation import AggregationEngine
from lifecycle.engine.business_calendar import iso_week_of, local_date, week_label
from lifecycle.engine.reconciler import SnapshotReconciler
from lifecycle.models.enums import Grouping
from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()


class ScheduledJob:
    """A named coroutine function run every interval_seconds."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.handle: Optional[schedule.Job] = None
        self.task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0
        self.skipped = 0
        self.last_started_at: Optional[datetime] = None
        self.last_finished_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()

    def describe(self) -> dict:
        next_run = self.handle.next_run if self.handle is not None else None
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "failures": self.failures,
            "skipped": self.skipped,
            "in_flight": self.in_flight,
            "next_run": next_run.isoformat() if next_run else None,
            "last_started_at": self.last_started_at.isoformat() if self.last_started_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "last_error": self.last_error,
        }


class JobScheduler:
    """
    Owns the schedule and the asyncio task that drives it.

    Attributes:
        tick_seconds: Longest sleep between two run_pending() calls
    """

    def __init__(self, tick_seconds: float = 1.0) -> None:
        self.tick_seconds = tick_seconds
        self._schedule = schedule.Scheduler()
        self._jobs: dict[str, ScheduledJob] = {}
        self._driver: Optional[asyncio.Task] = None

    def add_job(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
    ) -> ScheduledJob:
        job = ScheduledJob(name, func, interval_seconds, initial_delay_seconds)
        job.handle = self._schedule.every(interval_seconds).seconds.do(self._launch, job).tag(name)
        self._jobs[name] = job
        return job

    @property
    def running(self) -> bool:
        return self._driver is not None and not self._driver.done()

    def start(self) -> None:
        """Start driving the schedule. Must be called from a running event loop."""
        if self.running:
            return
        # schedule keeps naive local times
        now = datetime.now()
        for job in self._jobs.values():
            job.handle.next_run = now + timedelta(seconds=job.initial_delay_seconds)
        self._driver = asyncio.create_task(self._drive(), name="scheduler")
        logger.info("scheduler_started", jobs=list(self._jobs))

    async def stop(self) -> None:
        tasks = [job.task for job in self._jobs.values() if job.in_flight]
        if self._driver is not None:
            tasks.append(self._driver)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._driver = None
        logger.info("scheduler_stopped")

    async def run_once(self, name: str) -> Any:
        """Run a job immediately, outside its schedule."""
        return await self._run_job(self._jobs[name])

    async def _drive(self) -> None:
        while True:
            self._schedule.run_pending()
            idle = self._schedule.idle_seconds
            if idle is None:
                idle = self.tick_seconds
            await asyncio.sleep(max(0.0, min(idle, self.tick_seconds)))

    def _launch(self, job: ScheduledJob) -> None:
        if job.in_flight:
            job.skipped += 1
            logger.info("scheduled_job_still_running", job=job.name)
            return
        job.task = asyncio.get_running_loop().create_task(
            self._safe_run(job), name=f"job:{job.name}"
        )

    async def _safe_run(self, job: ScheduledJob) -> None:
        try:
            await self._run_job(job)
        except Exception:
            # Already recorded on the job; keep the schedule alive.
            pass

    async def _run_job(self, job: ScheduledJob) -> Any:
        job.last_started_at = utc_now()
        job.runs += 1
        try:
            with structlog.contextvars.bound_contextvars(job=job.name):
                result = await job.func()
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            logger.error("scheduled_job_failed", job=job.name, error=str(e), exc_info=True)
            raise
        finally:
            job.last_finished_at = utc_now()
        job.last_error = None
        logger.debug("scheduled_job_completed", job=job.name)
        return result

    def describe(self) -> list[dict]:
        return [job.describe() for job in self._jobs.values()]


async def aggregate_recent_buckets(
    engine: AggregationEngine,
    lookback_days: int,
    cache: Optional[FreshnessCache] = None,
    clock: Callable[[], datetime] = utc_now,
) -> dict:
    """
    Re-aggregate today, the previous lookback_days, and the current and
    previous ISO weeks. Clears cached lifecycle reads afterwards.
    """
    today = local_date(clock(), engine.calendar)
    start = today - timedelta(days=lookback_days)
    previous_week_day = today - timedelta(days=7)

    daily = await asyncio.to_thread(engine.aggregate_range, start, today, Grouping.DAY)
    weekly = await asyncio.to_thread(
        engine.aggregate_range, previous_week_day, today, Grouping.WEEK
    )

    if cache is not None:
        cache.clear(LIFECYCLE_CACHE_PREFIX)

    logger.info(
        "periodic_aggregation_completed",
        days=daily["buckets"],
        weeks=weekly["buckets"],
        current_week=week_label(*iso_week_of(today)),
        failed=len(daily["failed"]) + len(weekly["failed"]),
    )
    return {"daily": daily, "weekly": weekly}


def build_scheduler(
    settings,
    reconciler: SnapshotReconciler,
    engine: AggregationEngine,
    cache: Optional[FreshnessCache] = None,
) -> JobScheduler:
    """
    Wire the periodic jobs.

    The long cadence starts after a short delay so it does not collide with
    the first short run on the job lock.
    """
    scheduler = JobScheduler()

    async def reconcile_short() -> dict:
        result = await reconciler.reconcile_today()
        if cache is not None and result["rows_written"]:
            cache.clear(CLOSURE_CACHE_PREFIX)
        return result

    async def reconcile_long() -> dict:
        result = await reconciler.reconcile_trailing()
        if cache is not None and result["rows_written"]:
            cache.clear(CLOSURE_CACHE_PREFIX)
        return result

    async def aggregate() -> dict:
        return await aggregate_recent_buckets(engine, settings.aggregation_lookback_days, cache)

    scheduler.add_job("reconcile_short", reconcile_short, settings.reconcile_short_interval_seconds)
    scheduler.add_job(
        "reconcile_long",
        reconcile_long,
        settings.reconcile_long_interval_seconds,
        initial_delay_seconds=60,
    )
    scheduler.add_job("aggregate_recent", aggregate, settings.aggregation_interval_seconds)
    return scheduler
