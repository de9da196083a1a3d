"""
Abstract storage interface for the ticket lifecycle service.

The storage layer holds four groups of tables:
- Event store: append-only ticket status events keyed by idempotency token
- Derived data: status segments and daily/weekly aggregates (recomputable)
- Reconciled data: closure counts and the assignee directory
- Operational: aggregation ledger, reconciliation runs, job locks

Implementations must make every multi-row write atomic: a failure leaves the
previous state intact.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional

from lifecycle.models.aggregates import AggregationRun, DailyAggregate, WeeklyAggregate
from lifecycle.models.closures import Assignee, ClosureCount, ReconciliationRun
from lifecycle.models.enums import Grouping, ReconcileCadence
from lifecycle.models.events import StatusEvent, StatusSegment


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


class StorageBackend(ABC):
    """
    Abstract base class for all storage implementations.

    Storage implementations should ensure:
    - Thread safety for concurrent access
    - Atomic multi-row writes with rollback on failure
    - Timezone-aware UTC datetimes on every returned model
    """

    # =========================================================================
    # Event Store
    # =========================================================================

    @abstractmethod
    def append_status_event(self, event: StatusEvent) -> bool:
        """
        Append a status event unless its event_id is already stored.

        Args:
            event: Event to append (sequence is assigned by the store)

        Returns:
            True if the event was stored, False if it was a duplicate

        Raises:
            StorageError: If write operation fails
        """
        pass

    @abstractmethod
    def read_status_events(self, ticket_id: str) -> list[StatusEvent]:
        """
        Read all events of a ticket ordered by occurred_at, then arrival order.

        Raises:
            StorageError: If read operation fails
        """
        pass

    @abstractmethod
    def list_ticket_ids(self) -> list[str]:
        """Distinct ticket ids present in the event store."""
        pass

    # =========================================================================
    # Status Segments
    # =========================================================================

    @abstractmethod
    def read_segments(self, ticket_id: str) -> list[StatusSegment]:
        """Read a ticket's segments ordered by entered_at."""
        pass

    @abstractmethod
    def apply_segment_changes(
        self,
        ticket_id: str,
        inserts: list[StatusSegment],
        updates: list[StatusSegment],
        deletes: Optional[list[StatusSegment]] = None,
    ) -> int:
        """
        Insert, correct and delete a ticket's segments atomically.

        Args:
            ticket_id: Ticket whose segments change
            inserts: Segments that do not exist yet
            updates: Existing segments (matched by status and entered_at)
                carrying their new left_at
            deletes: Existing segments to remove (matched by status and entered_at)

        Returns:
            Number of rows written

        Raises:
            StorageError: If the transaction fails (nothing is written)
        """
        pass

    @abstractmethod
    def read_segments_left_between(
        self, start: datetime, end: datetime
    ) -> list[StatusSegment]:
        """Closed segments whose left_at lies in [start, end)."""
        pass

    @abstractmethod
    def read_statuses(self) -> list[str]:
        """Distinct statuses seen in segments, sorted."""
        pass

    # =========================================================================
    # Aggregates
    # =========================================================================

    @abstractmethod
    def replace_daily_aggregates(
        self,
        bucket_date: date,
        rows: list[DailyAggregate],
        run: AggregationRun,
    ) -> int:
        """
        Replace every aggregate row of a day and record the ledger entry.

        Returns:
            Number of aggregate rows written

        Raises:
            StorageError: If the transaction fails (old rows are kept)
        """
        pass

    @abstractmethod
    def replace_weekly_aggregates(
        self,
        iso_year: int,
        iso_week: int,
        rows: list[WeeklyAggregate],
        run: AggregationRun,
    ) -> int:
        """Replace every aggregate row of an ISO week and record the ledger entry."""
        pass

    @abstractmethod
    def read_daily_aggregates(
        self,
        from_date: date,
        to_date: date,
        statuses: Optional[list[str]] = None,
    ) -> list[DailyAggregate]:
        """Daily rows with bucket_date in [from_date, to_date]."""
        pass

    @abstractmethod
    def read_weekly_aggregates(
        self,
        weeks: list[tuple[int, int]],
        statuses: Optional[list[str]] = None,
    ) -> list[WeeklyAggregate]:
        """Weekly rows for the given (iso_year, iso_week) pairs."""
        pass

    @abstractmethod
    def read_aggregation_runs(
        self, grouping: Grouping, bucket_keys: list[str]
    ) -> dict[str, AggregationRun]:
        """Ledger entries for the given buckets, keyed by bucket_key."""
        pass

    @abstractmethod
    def read_aggregate_date_range(self) -> tuple[Optional[date], Optional[date]]:
        """Earliest and latest bucket_date holding daily aggregates."""
        pass

    # =========================================================================
    # Closure Counts and Assignees
    # =========================================================================

    @abstractmethod
    def read_closure_counts(self, from_date: date, to_date: date) -> list[ClosureCount]:
        """Closure counts with bucket_date in [from_date, to_date]."""
        pass

    @abstractmethod
    def write_closure_counts(self, rows: list[ClosureCount]) -> int:
        """
        Upsert closure counts (replace semantics, never additive).

        Raises:
            StorageError: If the transaction fails (nothing is written)
        """
        pass

    @abstractmethod
    def upsert_assignees(self, assignees: list[Assignee]) -> int:
        """Insert or rename directory entries."""
        pass

    @abstractmethod
    def read_assignees(self) -> list[Assignee]:
        """Full assignee directory ordered by name."""
        pass

    # =========================================================================
    # Operational
    # =========================================================================

    @abstractmethod
    def write_reconciliation_run(self, run: ReconciliationRun) -> str:
        """Insert or update a reconciliation run ledger entry."""
        pass

    @abstractmethod
    def read_reconciliation_runs(
        self,
        cadence: Optional[ReconcileCadence] = None,
        limit: int = 20,
    ) -> list[ReconciliationRun]:
        """Most recent runs first."""
        pass

    @abstractmethod
    def try_acquire_job_lock(
        self, name: str, holder: str, ttl_seconds: int, now: datetime
    ) -> bool:
        """
        Atomically take a named lock unless an unexpired holder owns it.

        Returns:
            True if the caller now holds the lock
        """
        pass

    @abstractmethod
    def release_job_lock(self, name: str, holder: str) -> bool:
        """Release a lock held by holder. Returns False if it was not held."""
        pass

    @abstractmethod
    def read_job_lock(self, name: str) -> Optional[dict]:
        """Current lock row ({name, holder, acquired_at, expires_at}) or None."""
        pass

    @abstractmethod
    def table_counts(self) -> dict[str, int]:
        """Row counts per table, for diagnostics."""
        pass
