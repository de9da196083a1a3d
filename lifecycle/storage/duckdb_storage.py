"""
DuckDB storage implementation for the ticket lifecycle service.

Key features:
- Thread-local connections to a single database file
- Idempotent schema creation on first use
- Explicit transactions for every multi-row write, rolled back on error
- A process-wide write lock serializing writers (DuckDB aborts conflicting
  concurrent transactions instead of waiting)
- TIMESTAMP columns hold naive UTC; conversion happens at this boundary

Aggregate and ledger tables carry no primary key because a bucket is replaced
by delete + insert inside one transaction, and DuckDB checks unique
constraints against rows deleted earlier in the same transaction.
"""

import json
import os
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional

import duckdb
import structlog

from lifecycle.models.aggregates import AggregationRun, DailyAggregate, WeeklyAggregate
from lifecycle.models.closures import Assignee, ClosureCount, ReconciliationRun
from lifecycle.models.enums import Grouping, ReconcileCadence
from lifecycle.models.events import StatusEvent, StatusSegment
from lifecycle.utils.timeutils import from_db_timestamp, to_db_timestamp, utc_now

from .base import StorageBackend, StorageError

logger = structlog.get_logger(__name__)

_TABLES = [
    "ticket_status_events",
    "ticket_status_segments",
    "ticket_status_agg_daily",
    "ticket_status_agg_weekly",
    "aggregation_runs",
    "closure_counts",
    "assignees",
    "reconciliation_runs",
    "job_locks",
]


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _write_lock: Re-entrant lock held for the duration of every write
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/lifecycle.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Get a thread-local DuckDB connection.

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except duckdb.Error as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Serialized write transaction; rolls back and re-raises on error."""
        with self._write_lock:
            with self._get_connection() as conn:
                conn.begin()
                try:
                    yield conn
                except Exception:
                    conn.rollback()
                    raise
                conn.commit()

    def _initialize_schema(self) -> None:
        """
        Create all tables and indexes. Idempotent.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    # =========================================================
                    # Event store
                    # =========================================================
                    conn.execute("CREATE SEQUENCE IF NOT EXISTS seq_status_events START 1")

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ticket_status_events (
                            event_id VARCHAR PRIMARY KEY,
                            arrival_seq BIGINT NOT NULL DEFAULT nextval('seq_status_events'),
                            ticket_id VARCHAR NOT NULL,
                            status VARCHAR NOT NULL,
                            event_type VARCHAR NOT NULL,
                            occurred_at TIMESTAMP NOT NULL,
                            received_at TIMESTAMP NOT NULL,
                            raw_payload JSON NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_status_events_ticket
                        ON ticket_status_events(ticket_id)
                    """)

                    # =========================================================
                    # Derived data
                    # =========================================================
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ticket_status_segments (
                            ticket_id VARCHAR NOT NULL,
                            status VARCHAR NOT NULL,
                            entered_at TIMESTAMP NOT NULL,
                            left_at TIMESTAMP,
                            updated_at TIMESTAMP NOT NULL,
                            PRIMARY KEY (ticket_id, status, entered_at)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ticket_status_agg_daily (
                            bucket_date DATE NOT NULL,
                            status VARCHAR NOT NULL,
                            avg_wall_seconds BIGINT NOT NULL,
                            avg_business_seconds BIGINT NOT NULL,
                            segment_count INTEGER NOT NULL,
                            computed_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ticket_status_agg_weekly (
                            iso_year INTEGER NOT NULL,
                            iso_week INTEGER NOT NULL,
                            status VARCHAR NOT NULL,
                            avg_wall_seconds BIGINT NOT NULL,
                            avg_business_seconds BIGINT NOT NULL,
                            segment_count INTEGER NOT NULL,
                            computed_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS aggregation_runs (
                            bucket_grouping VARCHAR NOT NULL,
                            bucket_key VARCHAR NOT NULL,
                            run_at TIMESTAMP NOT NULL,
                            segments_selected INTEGER NOT NULL,
                            segments_discarded INTEGER NOT NULL,
                            rows_written INTEGER NOT NULL
                        )
                    """)

                    # =========================================================
                    # Reconciled data
                    # =========================================================
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS closure_counts (
                            bucket_date DATE NOT NULL,
                            assignee_id VARCHAR NOT NULL,
                            assignee_name VARCHAR NOT NULL,
                            closed_count INTEGER NOT NULL,
                            observed_at TIMESTAMP NOT NULL,
                            run_id VARCHAR NOT NULL,
                            PRIMARY KEY (bucket_date, assignee_id)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS assignees (
                            assignee_id VARCHAR PRIMARY KEY,
                            name VARCHAR NOT NULL,
                            updated_at TIMESTAMP NOT NULL
                        )
                    """)

                    # =========================================================
                    # Operational
                    # =========================================================
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS reconciliation_runs (
                            run_id VARCHAR PRIMARY KEY,
                            cadence VARCHAR NOT NULL,
                            from_date DATE NOT NULL,
                            to_date DATE NOT NULL,
                            started_at TIMESTAMP NOT NULL,
                            completed_at TIMESTAMP,
                            status VARCHAR NOT NULL,
                            windows_total INTEGER NOT NULL,
                            windows_failed INTEGER NOT NULL,
                            tickets_seen INTEGER NOT NULL,
                            rows_written INTEGER NOT NULL,
                            error VARCHAR
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS job_locks (
                            lock_name VARCHAR PRIMARY KEY,
                            holder VARCHAR NOT NULL,
                            acquired_at TIMESTAMP NOT NULL,
                            expires_at TIMESTAMP NOT NULL
                        )
                    """)

                    logger.info("duckdb_schema_initialized", table_count=len(_TABLES))
                    self._initialized = True

            except duckdb.Error as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    def clear_for_testing(self) -> None:
        """
        Truncate all tables. For testing only (TESTING=true).
        Allows each test to start with a clean slate.
        """
        if not os.environ.get("TESTING"):
            return
        with self._transaction() as conn:
            for table in _TABLES:
                conn.execute(f"DELETE FROM {table}")

    # =========================================================================
    # Event Store
    # =========================================================================

    def append_status_event(self, event: StatusEvent) -> bool:
        """Append an event; a known event_id is a no-op."""
        try:
            with self._transaction() as conn:
                existing = conn.execute(
                    "SELECT 1 FROM ticket_status_events WHERE event_id = ?",
                    [event.event_id],
                ).fetchone()
                if existing is not None:
                    logger.debug("duplicate_status_event_skipped", event_id=event.event_id)
                    return False

                conn.execute(
                    """
                    INSERT INTO ticket_status_events (
                        event_id, ticket_id, status, event_type,
                        occurred_at, received_at, raw_payload
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        event.event_id,
                        event.ticket_id,
                        event.status,
                        event.event_type.value,
                        to_db_timestamp(event.occurred_at),
                        to_db_timestamp(event.received_at),
                        json.dumps(event.raw_payload),
                    ],
                )
                logger.debug(
                    "status_event_written",
                    event_id=event.event_id,
                    ticket_id=event.ticket_id,
                    status=event.status,
                )
                return True

        except duckdb.Error as e:
            logger.error(
                "append_status_event_failed",
                event_id=event.event_id,
                ticket_id=event.ticket_id,
                error=str(e),
            )
            raise StorageError(f"Failed to append status event: {e}") from e

    def read_status_events(self, ticket_id: str) -> list[StatusEvent]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT event_id, ticket_id, status, event_type, occurred_at,
                           received_at, raw_payload, arrival_seq
                    FROM ticket_status_events
                    WHERE ticket_id = ?
                    ORDER BY occurred_at ASC, arrival_seq ASC
                    """,
                    [ticket_id],
                ).fetchall()

            return [
                StatusEvent(
                    event_id=row[0],
                    ticket_id=row[1],
                    status=row[2],
                    event_type=row[3],
                    occurred_at=from_db_timestamp(row[4]),
                    received_at=from_db_timestamp(row[5]),
                    raw_payload=json.loads(row[6]) if row[6] else {},
                    sequence=row[7],
                )
                for row in rows
            ]

        except duckdb.Error as e:
            logger.error("read_status_events_failed", ticket_id=ticket_id, error=str(e))
            raise StorageError(f"Failed to read status events: {e}") from e

    def list_ticket_ids(self) -> list[str]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT DISTINCT ticket_id FROM ticket_status_events ORDER BY ticket_id"
                ).fetchall()
            return [row[0] for row in rows]
        except duckdb.Error as e:
            logger.error("list_ticket_ids_failed", error=str(e))
            raise StorageError(f"Failed to list ticket ids: {e}") from e

    # =========================================================================
    # Status Segments
    # =========================================================================

    def read_segments(self, ticket_id: str) -> list[StatusSegment]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT ticket_id, status, entered_at, left_at
                    FROM ticket_status_segments
                    WHERE ticket_id = ?
                    ORDER BY entered_at ASC, status ASC
                    """,
                    [ticket_id],
                ).fetchall()
            return [self._row_to_segment(row) for row in rows]
        except duckdb.Error as e:
            logger.error("read_segments_failed", ticket_id=ticket_id, error=str(e))
            raise StorageError(f"Failed to read segments: {e}") from e

    def apply_segment_changes(
        self,
        ticket_id: str,
        inserts: list[StatusSegment],
        updates: list[StatusSegment],
        deletes: Optional[list[StatusSegment]] = None,
    ) -> int:
        deletes = deletes or []
        if not inserts and not updates and not deletes:
            return 0

        now = to_db_timestamp(utc_now())
        try:
            with self._transaction() as conn:
                for segment in deletes:
                    conn.execute(
                        """
                        DELETE FROM ticket_status_segments
                        WHERE ticket_id = ? AND status = ? AND entered_at = ?
                        """,
                        [ticket_id, segment.status, to_db_timestamp(segment.entered_at)],
                    )
                for segment in updates:
                    conn.execute(
                        """
                        UPDATE ticket_status_segments
                        SET left_at = ?, updated_at = ?
                        WHERE ticket_id = ? AND status = ? AND entered_at = ?
                        """,
                        [
                            to_db_timestamp(segment.left_at),
                            now,
                            ticket_id,
                            segment.status,
                            to_db_timestamp(segment.entered_at),
                        ],
                    )
                for segment in inserts:
                    conn.execute(
                        """
                        INSERT INTO ticket_status_segments (
                            ticket_id, status, entered_at, left_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?)
                        """,
                        [
                            ticket_id,
                            segment.status,
                            to_db_timestamp(segment.entered_at),
                            to_db_timestamp(segment.left_at),
                            now,
                        ],
                    )

            written = len(inserts) + len(updates) + len(deletes)
            logger.debug(
                "segment_changes_applied",
                ticket_id=ticket_id,
                inserted=len(inserts),
                updated=len(updates),
                deleted=len(deletes),
            )
            return written

        except duckdb.Error as e:
            logger.error("apply_segment_changes_failed", ticket_id=ticket_id, error=str(e))
            raise StorageError(f"Failed to apply segment changes: {e}") from e

    def read_segments_left_between(
        self, start: datetime, end: datetime
    ) -> list[StatusSegment]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT ticket_id, status, entered_at, left_at
                    FROM ticket_status_segments
                    WHERE left_at IS NOT NULL AND left_at >= ? AND left_at < ?
                    ORDER BY left_at ASC
                    """,
                    [to_db_timestamp(start), to_db_timestamp(end)],
                ).fetchall()
            return [self._row_to_segment(row) for row in rows]
        except duckdb.Error as e:
            logger.error("read_segments_left_between_failed", error=str(e))
            raise StorageError(f"Failed to read segments by left_at: {e}") from e

    def read_statuses(self) -> list[str]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT DISTINCT status FROM ticket_status_segments ORDER BY status"
                ).fetchall()
            return [row[0] for row in rows]
        except duckdb.Error as e:
            logger.error("read_statuses_failed", error=str(e))
            raise StorageError(f"Failed to read statuses: {e}") from e

    @staticmethod
    def _row_to_segment(row: tuple) -> StatusSegment:
        return StatusSegment(
            ticket_id=row[0],
            status=row[1],
            entered_at=from_db_timestamp(row[2]),
            left_at=from_db_timestamp(row[3]),
        )

    # =========================================================================
    # Aggregates
    # =========================================================================

    def _write_ledger(self, conn: duckdb.DuckDBPyConnection, run: AggregationRun) -> None:
        conn.execute(
            "DELETE FROM aggregation_runs WHERE bucket_grouping = ? AND bucket_key = ?",
            [run.grouping.value, run.bucket_key],
        )
        conn.execute(
            """
            INSERT INTO aggregation_runs (
                bucket_grouping, bucket_key, run_at, segments_selected,
                segments_discarded, rows_written
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                run.grouping.value,
                run.bucket_key,
                to_db_timestamp(run.run_at),
                run.segments_selected,
                run.segments_discarded,
                run.rows_written,
            ],
        )

    def replace_daily_aggregates(
        self,
        bucket_date: date,
        rows: list[DailyAggregate],
        run: AggregationRun,
    ) -> int:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "DELETE FROM ticket_status_agg_daily WHERE bucket_date = ?",
                    [bucket_date],
                )
                for row in rows:
                    conn.execute(
                        """
                        INSERT INTO ticket_status_agg_daily (
                            bucket_date, status, avg_wall_seconds,
                            avg_business_seconds, segment_count, computed_at
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        [
                            bucket_date,
                            row.status,
                            row.avg_wall_seconds,
                            row.avg_business_seconds,
                            row.segment_count,
                            to_db_timestamp(row.computed_at or run.run_at),
                        ],
                    )
                self._write_ledger(conn, run)

            logger.debug("daily_aggregates_replaced", bucket_date=str(bucket_date), rows=len(rows))
            return len(rows)

        except duckdb.Error as e:
            logger.error(
                "replace_daily_aggregates_failed", bucket_date=str(bucket_date), error=str(e)
            )
            raise StorageError(f"Failed to replace daily aggregates: {e}") from e

    def replace_weekly_aggregates(
        self,
        iso_year: int,
        iso_week: int,
        rows: list[WeeklyAggregate],
        run: AggregationRun,
    ) -> int:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "DELETE FROM ticket_status_agg_weekly WHERE iso_year = ? AND iso_week = ?",
                    [iso_year, iso_week],
                )
                for row in rows:
                    conn.execute(
                        """
                        INSERT INTO ticket_status_agg_weekly (
                            iso_year, iso_week, status, avg_wall_seconds,
                            avg_business_seconds, segment_count, computed_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            iso_year,
                            iso_week,
                            row.status,
                            row.avg_wall_seconds,
                            row.avg_business_seconds,
                            row.segment_count,
                            to_db_timestamp(row.computed_at or run.run_at),
                        ],
                    )
                self._write_ledger(conn, run)

            logger.debug(
                "weekly_aggregates_replaced", iso_year=iso_year, iso_week=iso_week, rows=len(rows)
            )
            return len(rows)

        except duckdb.Error as e:
            logger.error(
                "replace_weekly_aggregates_failed",
                iso_year=iso_year,
                iso_week=iso_week,
                error=str(e),
            )
            raise StorageError(f"Failed to replace weekly aggregates: {e}") from e

    def read_daily_aggregates(
        self,
        from_date: date,
        to_date: date,
        statuses: Optional[list[str]] = None,
    ) -> list[DailyAggregate]:
        query = """
            SELECT bucket_date, status, avg_wall_seconds, avg_business_seconds,
                   segment_count, computed_at
            FROM ticket_status_agg_daily
            WHERE bucket_date >= ? AND bucket_date <= ?
        """
        params: list = [from_date, to_date]
        if statuses:
            query += f" AND status IN ({_placeholders(statuses)})"
            params.extend(statuses)
        query += " ORDER BY bucket_date ASC, status ASC"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
            return [
                DailyAggregate(
                    bucket_date=row[0],
                    status=row[1],
                    avg_wall_seconds=row[2],
                    avg_business_seconds=row[3],
                    segment_count=row[4],
                    computed_at=from_db_timestamp(row[5]),
                )
                for row in rows
            ]
        except duckdb.Error as e:
            logger.error("read_daily_aggregates_failed", error=str(e))
            raise StorageError(f"Failed to read daily aggregates: {e}") from e

    def read_weekly_aggregates(
        self,
        weeks: list[tuple[int, int]],
        statuses: Optional[list[str]] = None,
    ) -> list[WeeklyAggregate]:
        if not weeks:
            return []

        week_keys = [year * 100 + week for year, week in weeks]
        query = f"""
            SELECT iso_year, iso_week, status, avg_wall_seconds,
                   avg_business_seconds, segment_count, computed_at
            FROM ticket_status_agg_weekly
            WHERE (iso_year * 100 + iso_week) IN ({_placeholders(week_keys)})
        """
        params: list = list(week_keys)
        if statuses:
            query += f" AND status IN ({_placeholders(statuses)})"
            params.extend(statuses)
        query += " ORDER BY iso_year ASC, iso_week ASC, status ASC"

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
            return [
                WeeklyAggregate(
                    iso_year=row[0],
                    iso_week=row[1],
                    status=row[2],
                    avg_wall_seconds=row[3],
                    avg_business_seconds=row[4],
                    segment_count=row[5],
                    computed_at=from_db_timestamp(row[6]),
                )
                for row in rows
            ]
        except duckdb.Error as e:
            logger.error("read_weekly_aggregates_failed", error=str(e))
            raise StorageError(f"Failed to read weekly aggregates: {e}") from e

    def read_aggregation_runs(
        self, grouping: Grouping, bucket_keys: list[str]
    ) -> dict[str, AggregationRun]:
        if not bucket_keys:
            return {}
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    f"""
                    SELECT bucket_grouping, bucket_key, run_at, segments_selected,
                           segments_discarded, rows_written
                    FROM aggregation_runs
                    WHERE bucket_grouping = ? AND bucket_key IN ({_placeholders(bucket_keys)})
                    """,
                    [grouping.value, *bucket_keys],
                ).fetchall()
            return {
                row[1]: AggregationRun(
                    grouping=row[0],
                    bucket_key=row[1],
                    run_at=from_db_timestamp(row[2]),
                    segments_selected=row[3],
                    segments_discarded=row[4],
                    rows_written=row[5],
                )
                for row in rows
            }
        except duckdb.Error as e:
            logger.error("read_aggregation_runs_failed", error=str(e))
            raise StorageError(f"Failed to read aggregation runs: {e}") from e

    def read_aggregate_date_range(self) -> tuple[Optional[date], Optional[date]]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT MIN(bucket_date), MAX(bucket_date)
                    FROM ticket_status_agg_daily
                    WHERE segment_count > 0
                    """
                ).fetchone()
            return (row[0], row[1]) if row else (None, None)
        except duckdb.Error as e:
            logger.error("read_aggregate_date_range_failed", error=str(e))
            raise StorageError(f"Failed to read aggregate date range: {e}") from e

    # =========================================================================
    # Closure Counts and Assignees
    # =========================================================================

    def read_closure_counts(self, from_date: date, to_date: date) -> list[ClosureCount]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT bucket_date, assignee_id, assignee_name, closed_count, observed_at, run_id
                    FROM closure_counts
                    WHERE bucket_date >= ? AND bucket_date <= ?
                    ORDER BY bucket_date ASC, assignee_name ASC
                    """,
                    [from_date, to_date],
                ).fetchall()
            return [
                ClosureCount(
                    bucket_date=row[0],
                    assignee_id=row[1],
                    assignee_name=row[2],
                    count=row[3],
                    observed_at=from_db_timestamp(row[4]),
                    run_id=row[5],
                )
                for row in rows
            ]
        except duckdb.Error as e:
            logger.error("read_closure_counts_failed", error=str(e))
            raise StorageError(f"Failed to read closure counts: {e}") from e

    def write_closure_counts(self, rows: list[ClosureCount]) -> int:
        if not rows:
            return 0
        try:
            with self._transaction() as conn:
                for row in rows:
                    conn.execute(
                        """
                        INSERT INTO closure_counts (
                            bucket_date, assignee_id, assignee_name, closed_count, observed_at, run_id
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        ON CONFLICT (bucket_date, assignee_id) DO UPDATE SET
                            assignee_name = excluded.assignee_name,
                            closed_count = excluded.closed_count,
                            observed_at = excluded.observed_at,
                            run_id = excluded.run_id
                        """,
                        [
                            row.bucket_date,
                            row.assignee_id,
                            row.assignee_name,
                            row.count,
                            to_db_timestamp(row.observed_at),
                            row.run_id,
                        ],
                    )
            return len(rows)
        except duckdb.Error as e:
            logger.error("write_closure_counts_failed", rows=len(rows), error=str(e))
            raise StorageError(f"Failed to write closure counts: {e}") from e

    def upsert_assignees(self, assignees: list[Assignee]) -> int:
        if not assignees:
            return 0
        now = to_db_timestamp(utc_now())
        try:
            with self._transaction() as conn:
                for assignee in assignees:
                    conn.execute(
                        """
                        INSERT INTO assignees (assignee_id, name, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT (assignee_id) DO UPDATE SET
                            name = excluded.name,
                            updated_at = excluded.updated_at
                        """,
                        [assignee.assignee_id, assignee.name, now],
                    )
            return len(assignees)
        except duckdb.Error as e:
            logger.error("upsert_assignees_failed", error=str(e))
            raise StorageError(f"Failed to upsert assignees: {e}") from e

    def read_assignees(self) -> list[Assignee]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT assignee_id, name, updated_at FROM assignees ORDER BY name"
                ).fetchall()
            return [
                Assignee(assignee_id=row[0], name=row[1], updated_at=from_db_timestamp(row[2]))
                for row in rows
            ]
        except duckdb.Error as e:
            logger.error("read_assignees_failed", error=str(e))
            raise StorageError(f"Failed to read assignees: {e}") from e

    # =========================================================================
    # Operational
    # =========================================================================

    def write_reconciliation_run(self, run: ReconciliationRun) -> str:
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO reconciliation_runs (
                        run_id, cadence, from_date, to_date, started_at, completed_at,
                        status, windows_total, windows_failed, tickets_seen,
                        rows_written, error
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (run_id) DO UPDATE SET
                        completed_at = excluded.completed_at,
                        status = excluded.status,
                        windows_total = excluded.windows_total,
                        windows_failed = excluded.windows_failed,
                        tickets_seen = excluded.tickets_seen,
                        rows_written = excluded.rows_written,
                        error = excluded.error
                    """,
                    [
                        run.run_id,
                        run.cadence.value,
                        run.from_date,
                        run.to_date,
                        to_db_timestamp(run.started_at),
                        to_db_timestamp(run.completed_at),
                        run.status.value,
                        run.windows_total,
                        run.windows_failed,
                        run.tickets_seen,
                        run.rows_written,
                        run.error,
                    ],
                )
            return run.run_id
        except duckdb.Error as e:
            logger.error("write_reconciliation_run_failed", run_id=run.run_id, error=str(e))
            raise StorageError(f"Failed to write reconciliation run: {e}") from e

    def read_reconciliation_runs(
        self,
        cadence: Optional[ReconcileCadence] = None,
        limit: int = 20,
    ) -> list[ReconciliationRun]:
        query = """
            SELECT run_id, cadence, from_date, to_date, started_at, completed_at,
                   status, windows_total, windows_failed, tickets_seen, rows_written, error
            FROM reconciliation_runs
        """
        params: list = []
        if cadence:
            query += " WHERE cadence = ?"
            params.append(cadence.value)
        query += " ORDER BY started_at DESC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
            return [
                ReconciliationRun(
                    run_id=row[0],
                    cadence=row[1],
                    from_date=row[2],
                    to_date=row[3],
                    started_at=from_db_timestamp(row[4]),
                    completed_at=from_db_timestamp(row[5]),
                    status=row[6],
                    windows_total=row[7],
                    windows_failed=row[8],
                    tickets_seen=row[9],
                    rows_written=row[10],
                    error=row[11],
                )
                for row in rows
            ]
        except duckdb.Error as e:
            logger.error("read_reconciliation_runs_failed", error=str(e))
            raise StorageError(f"Failed to read reconciliation runs: {e}") from e

    def try_acquire_job_lock(
        self, name: str, holder: str, ttl_seconds: int, now: datetime
    ) -> bool:
        acquired_at = to_db_timestamp(now)
        expires_at = to_db_timestamp(now + timedelta(seconds=ttl_seconds))
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT holder, expires_at FROM job_locks WHERE lock_name = ?", [name]
                ).fetchone()
                if row is None:
                    conn.execute(
                        """
                        INSERT INTO job_locks (lock_name, holder, acquired_at, expires_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        [name, holder, acquired_at, expires_at],
                    )
                    return True

                current_holder, current_expiry = row
                if current_holder != holder and current_expiry > acquired_at:
                    return False

                conn.execute(
                    """
                    UPDATE job_locks
                    SET holder = ?, acquired_at = ?, expires_at = ?
                    WHERE lock_name = ?
                    """,
                    [holder, acquired_at, expires_at, name],
                )
                if current_holder != holder:
                    logger.warning(
                        "job_lock_taken_over",
                        name=name,
                        previous_holder=current_holder,
                        expired_at=str(current_expiry),
                    )
                return True
        except duckdb.Error as e:
            logger.error("try_acquire_job_lock_failed", name=name, error=str(e))
            raise StorageError(f"Failed to acquire job lock: {e}") from e

    def release_job_lock(self, name: str, holder: str) -> bool:
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT holder FROM job_locks WHERE lock_name = ?", [name]
                ).fetchone()
                if row is None or row[0] != holder:
                    return False
                conn.execute("DELETE FROM job_locks WHERE lock_name = ?", [name])
                return True
        except duckdb.Error as e:
            logger.error("release_job_lock_failed", name=name, error=str(e))
            raise StorageError(f"Failed to release job lock: {e}") from e

    def read_job_lock(self, name: str) -> Optional[dict]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT lock_name, holder, acquired_at, expires_at FROM job_locks WHERE lock_name = ?",
                    [name],
                ).fetchone()
            if row is None:
                return None
            return {
                "name": row[0],
                "holder": row[1],
                "acquired_at": from_db_timestamp(row[2]),
                "expires_at": from_db_timestamp(row[3]),
            }
        except duckdb.Error as e:
            logger.error("read_job_lock_failed", name=name, error=str(e))
            raise StorageError(f"Failed to read job lock: {e}") from e

    def table_counts(self) -> dict[str, int]:
        try:
            with self._get_connection() as conn:
                counts = {
                    table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                    for table in _TABLES
                }
                counts["open_segments"] = conn.execute(
                    "SELECT COUNT(*) FROM ticket_status_segments WHERE left_at IS NULL"
                ).fetchone()[0]
            return counts
        except duckdb.Error as e:
            logger.error("table_counts_failed", error=str(e))
            raise StorageError(f"Failed to count table rows: {e}") from e
