"""
Snapshot Reconciler - sole writer of per-assignee closure counts.

Closure counts are never incremented from webhooks. Instead the reconciler
periodically asks the ticketing provider which tickets were closed, groups
them by (closed date in the business timezone, assignee) and makes the
stored counts equal to that observation:

- only rows whose count or assignee name changed are written
- an assignee present before but absent from the fresh observation is
  written with count 0 (tombstone by zero)
- a run that finds no differences writes nothing

Cadences:
- short: today only, every few minutes
- long: the trailing lookback window ending today, hourly
- manual: an operator-supplied range

Only one run executes at a time, guarded by a job lock in the database.
A trigger that finds the lock held is skipped, not queued. Because runs are
mutually exclusive, the most recently completed observation of a date is
what the table holds.

A window whose upstream fetch fails after retries is skipped and logged;
its dates keep their previous counts. Failing to load the user directory,
or every window failing, fails the run.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from lifecycle.connectors.ticketing_client import TicketingAPIError, TicketingClient
from lifecycle.engine.business_calendar import (
    BusinessCalendarConfig,
    day_bounds_utc,
    iter_days,
    local_date,
)
from lifecycle.models.closures import (
    UNASSIGNED_ID,
    UNASSIGNED_NAME,
    UNKNOWN_ASSIGNEE_NAME,
    Assignee,
    ClosedTicket,
    ClosureCount,
    ReconciliationRun,
)
from lifecycle.models.enums import ReconcileCadence, RunStatus
from lifecycle.storage.base import StorageBackend, StorageError
from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()

LOCK_NAME = "closure_reconciliation"


class ReconciliationError(Exception):
    """Raised when a reconciliation run fails as a whole."""

    pass


def partition_windows(from_date: date, to_date: date, window_days: int) -> list[tuple[date, date]]:
    """Split [from_date, to_date] into consecutive inclusive windows of window_days."""
    windows = []
    start = from_date
    while start <= to_date:
        end = min(start + timedelta(days=window_days - 1), to_date)
        windows.append((start, end))
        start = end + timedelta(days=1)
    return windows


def group_closures(
    tickets: list[ClosedTicket], calendar: BusinessCalendarConfig
) -> dict[date, dict[str, int]]:
    """Count closed tickets per (local closed date, assignee id)."""
    counts: dict[date, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for ticket in tickets:
        assignee_id = ticket.assignee_id or UNASSIGNED_ID
        counts[local_date(ticket.closed_at, calendar)][assignee_id] += 1
    return counts


def diff_closure_counts(
    dates: list[date],
    fresh: dict[date, dict[str, int]],
    current: dict[date, dict[str, ClosureCount]],
    directory: dict[str, str],
    run_id: str,
    observed_at: datetime,
) -> list[ClosureCount]:
    """
    Rows to write so stored counts for `dates` equal the fresh observation.

    Unchanged rows are omitted. Assignees missing from the observation get a
    count of 0 unless they are already at 0.
    """
    changes = []
    for day in dates:
        observed = fresh.get(day, {})
        stored = current.get(day, {})

        for assignee_id, count in sorted(observed.items()):
            if assignee_id == UNASSIGNED_ID:
                name = UNASSIGNED_NAME
            else:
                name = directory.get(assignee_id, UNKNOWN_ASSIGNEE_NAME)
            previous = stored.get(assignee_id)
            if previous is not None and previous.count == count and previous.assignee_name == name:
                continue
            logger.info(
                "closure_count_changed",
                bucket_date=day.isoformat(),
                assignee_id=assignee_id,
                assignee_name=name,
                before=previous.count if previous else None,
                after=count,
            )
            changes.append(
                ClosureCount(
                    bucket_date=day,
                    assignee_id=assignee_id,
                    assignee_name=name,
                    count=count,
                    observed_at=observed_at,
                    run_id=run_id,
                )
            )

        for assignee_id, previous in sorted(stored.items()):
            if assignee_id in observed or previous.count == 0:
                continue
            logger.info(
                "closure_count_zeroed",
                bucket_date=day.isoformat(),
                assignee_id=assignee_id,
                assignee_name=previous.assignee_name,
                before=previous.count,
                after=0,
            )
            changes.append(
                ClosureCount(
                    bucket_date=day,
                    assignee_id=assignee_id,
                    assignee_name=previous.assignee_name,
                    count=0,
                    observed_at=observed_at,
                    run_id=run_id,
                )
            )
    return changes


class SnapshotReconciler:
    """
    Reconciles closure counts against the ticketing provider.

    Attributes:
        storage: Storage backend holding closure counts and the job lock
        calendar: Business calendar used to bucket closed_at into local dates
        window_days: Days per upstream query window
        lookback_days: Trailing days covered by the long cadence
        lock_ttl_seconds: Expiry of the job lock (protects against crashed holders)
    """

    def __init__(
        self,
        storage: StorageBackend,
        client_factory: Callable[[], TicketingClient],
        calendar: BusinessCalendarConfig,
        window_days: int = 5,
        lookback_days: int = 30,
        lock_ttl_seconds: int = 900,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.client_factory = client_factory
        self.calendar = calendar
        self.window_days = window_days
        self.lookback_days = lookback_days
        self.lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock or utc_now
        self._current_run: Optional[ReconciliationRun] = None

    @property
    def is_running(self) -> bool:
        return self._current_run is not None

    def today(self) -> date:
        return local_date(self._clock(), self.calendar)

    async def reconcile_today(self) -> dict[str, Any]:
        """Short cadence: reconcile today's closures."""
        today = self.today()
        return await self.reconcile_range(today, today, ReconcileCadence.SHORT)

    async def reconcile_trailing(self) -> dict[str, Any]:
        """Long cadence: re-validate the trailing window ending today."""
        today = self.today()
        start = today - timedelta(days=self.lookback_days - 1)
        return await self.reconcile_range(start, today, ReconcileCadence.LONG)

    async def reconcile_range(
        self,
        from_date: date,
        to_date: date,
        cadence: ReconcileCadence = ReconcileCadence.MANUAL,
    ) -> dict[str, Any]:
        """
        Reconcile every local date in [from_date, to_date].

        Returns:
            Run summary ({"run_id", "cadence", "status", "from_date", "to_date",
            "windows_total", "windows_failed", "tickets_seen", "rows_written",
            "error"}); status "skipped" when another run holds the lock

        Raises:
            ReconciliationError: If the directory cannot be loaded, every window
                fails, or the datastore rejects a write
        """
        if from_date > to_date:
            raise ValueError("from_date must not be after to_date")

        run = ReconciliationRun(
            cadence=cadence,
            from_date=from_date,
            to_date=to_date,
            started_at=self._clock(),
        )

        try:
            acquired = self.storage.try_acquire_job_lock(
                LOCK_NAME, run.run_id, self.lock_ttl_seconds, run.started_at
            )
        except StorageError as e:
            logger.error("reconciliation_lock_failed", cadence=cadence.value, error=str(e))
            raise ReconciliationError(f"Could not take the reconciliation lock: {e}") from e

        if not acquired:
            logger.info(
                "reconciliation_skipped_lock_held",
                cadence=cadence.value,
                from_date=from_date.isoformat(),
                to_date=to_date.isoformat(),
            )
            run.status = RunStatus.SKIPPED
            return self._summary(run)

        self._current_run = run
        logger.info(
            "reconciliation_started",
            run_id=run.run_id,
            cadence=cadence.value,
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
        )
        try:
            self.storage.write_reconciliation_run(run)
            with structlog.contextvars.bound_contextvars(run_id=run.run_id):
                await self._execute(run)
        except (TicketingAPIError, StorageError, ReconciliationError) as e:
            run.status = RunStatus.FAILED
            run.error = str(e)
            run.completed_at = self._clock()
            logger.error(
                "reconciliation_failed",
                run_id=run.run_id,
                cadence=cadence.value,
                error=str(e),
            )
            self._record_final(run)
            raise ReconciliationError(f"Reconciliation run {run.run_id} failed: {e}") from e
        finally:
            self._current_run = None
            self.storage.release_job_lock(LOCK_NAME, run.run_id)

        self._record_final(run)
        logger.info("reconciliation_completed", **self._summary(run))
        return self._summary(run)

    async def _execute(self, run: ReconciliationRun) -> None:
        windows = partition_windows(run.from_date, run.to_date, self.window_days)
        run.windows_total = len(windows)

        async with self.client_factory() as client:
            users = await client.list_users()
            directory = {user.id: user.name for user in users}
            self.storage.upsert_assignees(
                [Assignee(assignee_id=user.id, name=user.name) for user in users]
            )

            for window_start, window_end in windows:
                start_utc, _ = day_bounds_utc(window_start, self.calendar)
                _, end_utc = day_bounds_utc(window_end, self.calendar)
                try:
                    tickets = await client.list_closed_tickets(start_utc, end_utc)
                except TicketingAPIError as e:
                    run.windows_failed += 1
                    logger.warning(
                        "reconciliation_window_failed",
                        run_id=run.run_id,
                        window_start=window_start.isoformat(),
                        window_end=window_end.isoformat(),
                        error=str(e),
                    )
                    continue

                run.tickets_seen += len(tickets)
                run.rows_written += self._apply_window(
                    run, window_start, window_end, tickets, directory
                )

        if run.windows_total and run.windows_failed == run.windows_total:
            raise ReconciliationError(f"All {run.windows_total} windows failed")

        run.status = RunStatus.PARTIAL if run.windows_failed else RunStatus.COMPLETED
        run.completed_at = self._clock()

    def _apply_window(
        self,
        run: ReconciliationRun,
        window_start: date,
        window_end: date,
        tickets: list[ClosedTicket],
        directory: dict[str, str],
    ) -> int:
        dates = list(iter_days(window_start, window_end))
        fresh = group_closures(tickets, self.calendar)

        current: dict[date, dict[str, ClosureCount]] = defaultdict(dict)
        for row in self.storage.read_closure_counts(window_start, window_end):
            current[row.bucket_date][row.assignee_id] = row

        changes = diff_closure_counts(
            dates, fresh, current, directory, run.run_id, self._clock()
        )
        written = self.storage.write_closure_counts(changes)
        logger.info(
            "reconciliation_window_applied",
            run_id=run.run_id,
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
            tickets=len(tickets),
            rows_written=written,
        )
        return written

    def _record_final(self, run: ReconciliationRun) -> None:
        try:
            self.storage.write_reconciliation_run(run)
        except StorageError as e:
            logger.error("reconciliation_run_record_failed", run_id=run.run_id, error=str(e))

    @staticmethod
    def _summary(run: ReconciliationRun) -> dict[str, Any]:
        return {
            "run_id": run.run_id,
            "cadence": run.cadence.value,
            "status": run.status.value,
            "from_date": run.from_date.isoformat(),
            "to_date": run.to_date.isoformat(),
            "windows_total": run.windows_total,
            "windows_failed": run.windows_failed,
            "tickets_seen": run.tickets_seen,
            "rows_written": run.rows_written,
            "error": run.error,
        }

    def status(self) -> dict[str, Any]:
        """Running flag, current run, and the latest run per cadence."""
        runs = self.storage.read_reconciliation_runs(limit=50)
        last_by_cadence: dict[str, Any] = {}
        last_success = None
        for run in runs:
            last_by_cadence.setdefault(run.cadence.value, run.model_dump(mode="json"))
            if last_success is None and run.status in (RunStatus.COMPLETED, RunStatus.PARTIAL):
                last_success = run.model_dump(mode="json")

        return {
            "is_running": self.is_running,
            "current_run_id": self._current_run.run_id if self._current_run else None,
            "lock": self.storage.read_job_lock(LOCK_NAME),
            "last_runs": last_by_cadence,
            "last_success": last_success,
        }
