"""
Aggregation Engine - daily and ISO-weekly time-in-status statistics.

A segment belongs to the bucket in which it ended: its left_at falls inside
the bucket's boundaries in the business timezone. Per status the engine
computes the mean wall-clock and mean business-hours duration, rounded to
whole seconds, and the number of segments averaged.

Segments with a non-positive wall duration, or one longer than
max_segment_duration_days, are data errors: they are counted as discarded
and excluded from every average.

Writes are full overwrites of a bucket (delete + insert in one transaction),
so re-running any bucket is safe. Each run also records a ledger entry, which
lets readers tell a bucket without activity from one never aggregated.
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from lifecycle.engine.business_calendar import (
    BusinessCalendarConfig,
    business_seconds,
    day_bounds_utc,
    format_duration,
    iso_week_bounds_utc,
    iso_weeks_between,
    iter_days,
    wall_seconds,
    week_label,
)
from lifecycle.engine.locks import KeyedLock
from lifecycle.models.aggregates import AggregationRun, DailyAggregate, WeeklyAggregate
from lifecycle.models.enums import Grouping, HoursMode
from lifecycle.models.events import StatusSegment
from lifecycle.storage.base import StorageBackend, StorageError
from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()


class AggregationError(Exception):
    """Raised when a bucket could not be aggregated."""

    pass


def _rounded_mean(total: int, count: int) -> int:
    """Mean of non-negative integers rounded half up."""
    return (2 * total + count) // (2 * count)


def compute_status_averages(
    segments: list[StatusSegment],
    calendar: BusinessCalendarConfig,
    max_duration_seconds: int,
) -> tuple[list[dict], int]:
    """
    Group closed segments by status and average their durations.

    Args:
        segments: Closed segments of one bucket
        calendar: Business calendar for business-hours durations
        max_duration_seconds: Longest plausible segment

    Returns:
        (rows, discarded) where each row is
        {"status", "avg_wall_seconds", "avg_business_seconds", "segment_count"}
        sorted by status, and discarded counts rejected segments
    """
    groups: dict[str, list[tuple[int, int]]] = defaultdict(list)
    discarded = 0

    for segment in segments:
        if segment.left_at is None:
            discarded += 1
            continue
        wall = wall_seconds(segment.entered_at, segment.left_at)
        if wall <= 0 or wall > max_duration_seconds:
            discarded += 1
            continue
        business = business_seconds(segment.entered_at, segment.left_at, calendar)
        groups[segment.status].append((wall, business))

    rows = []
    for status in sorted(groups):
        durations = groups[status]
        count = len(durations)
        rows.append(
            {
                "status": status,
                "avg_wall_seconds": _rounded_mean(sum(w for w, _ in durations), count),
                "avg_business_seconds": _rounded_mean(sum(b for _, b in durations), count),
                "segment_count": count,
            }
        )
    return rows, discarded


class AggregationEngine:
    """
    Computes and stores per-bucket, per-status duration averages.

    Aggregations of the same bucket are serialized; the result of a run is a
    pure function of the segment data of its bucket.

    Example:
        >>> engine = AggregationEngine(storage, BusinessCalendarConfig())
        >>> engine.aggregate_daily(date(2026, 3, 2))
        {"grouping": "day", "bucket": "2026-03-02", "rows_written": 4, ...}
    """

    def __init__(
        self,
        storage: StorageBackend,
        calendar: BusinessCalendarConfig,
        max_segment_duration_days: int = 365,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.calendar = calendar
        self.max_duration_seconds = max_segment_duration_days * 86400
        self._clock = clock or utc_now
        self._locks = KeyedLock()

    def aggregate_daily(self, bucket_date: date) -> dict:
        """
        Recompute one local day.

        Raises:
            AggregationError: If segments cannot be read or rows written
        """
        bucket = bucket_date.isoformat()
        with self._locks.hold((Grouping.DAY, bucket)):
            start, end = day_bounds_utc(bucket_date, self.calendar)
            try:
                segments = self.storage.read_segments_left_between(start, end)
                rows, discarded = compute_status_averages(
                    segments, self.calendar, self.max_duration_seconds
                )
                run_at = self._clock()
                aggregates = [
                    DailyAggregate(bucket_date=bucket_date, computed_at=run_at, **row)
                    for row in rows
                ]
                run = AggregationRun(
                    grouping=Grouping.DAY,
                    bucket_key=bucket,
                    run_at=run_at,
                    segments_selected=len(segments),
                    segments_discarded=discarded,
                    rows_written=len(aggregates),
                )
                written = self.storage.replace_daily_aggregates(bucket_date, aggregates, run)
            except StorageError as e:
                logger.error("daily_aggregation_failed", bucket=bucket, error=str(e))
                raise AggregationError(f"Failed to aggregate day {bucket}: {e}") from e

        return self._log_result(Grouping.DAY, bucket, len(segments), discarded, written)

    def aggregate_weekly(self, iso_year: int, iso_week: int) -> dict:
        """
        Recompute one ISO week (Monday to Sunday, business timezone).

        Raises:
            AggregationError: If segments cannot be read or rows written
        """
        bucket = week_label(iso_year, iso_week)
        with self._locks.hold((Grouping.WEEK, bucket)):
            start, end = iso_week_bounds_utc(iso_year, iso_week, self.calendar)
            try:
                segments = self.storage.read_segments_left_between(start, end)
                rows, discarded = compute_status_averages(
                    segments, self.calendar, self.max_duration_seconds
                )
                run_at = self._clock()
                aggregates = [
                    WeeklyAggregate(iso_year=iso_year, iso_week=iso_week, computed_at=run_at, **row)
                    for row in rows
                ]
                run = AggregationRun(
                    grouping=Grouping.WEEK,
                    bucket_key=bucket,
                    run_at=run_at,
                    segments_selected=len(segments),
                    segments_discarded=discarded,
                    rows_written=len(aggregates),
                )
                written = self.storage.replace_weekly_aggregates(iso_year, iso_week, aggregates, run)
            except StorageError as e:
                logger.error("weekly_aggregation_failed", bucket=bucket, error=str(e))
                raise AggregationError(f"Failed to aggregate week {bucket}: {e}") from e

        return self._log_result(Grouping.WEEK, bucket, len(segments), discarded, written)

    def _log_result(
        self, grouping: Grouping, bucket: str, selected: int, discarded: int, written: int
    ) -> dict:
        result = {
            "grouping": grouping.value,
            "bucket": bucket,
            "segments_selected": selected,
            "segments_discarded": discarded,
            "rows_written": written,
        }
        if discarded:
            logger.warning("aggregation_segments_discarded", bucket=bucket, discarded=discarded)
        logger.info("aggregation_bucket_computed", **result)
        return result

    def aggregate_range(self, from_date: date, to_date: date, grouping: Grouping) -> dict:
        """
        Re-run every day, or every ISO week touched, in [from_date, to_date].

        A failing bucket is logged and reported; the remaining buckets still run.

        Returns:
            {
                "grouping": str,
                "from": str,
                "to": str,
                "buckets": int,
                "succeeded": int,
                "rows_written": int,
                "failed": [bucket],
                "errors": [str],
            }
        """
        if grouping == Grouping.DAY:
            jobs = [
                (d.isoformat(), lambda d=d: self.aggregate_daily(d))
                for d in iter_days(from_date, to_date)
            ]
        else:
            jobs = [
                (week_label(y, w), lambda y=y, w=w: self.aggregate_weekly(y, w))
                for y, w in iso_weeks_between(from_date, to_date)
            ]

        summary = {
            "grouping": grouping.value,
            "from": from_date.isoformat(),
            "to": to_date.isoformat(),
            "buckets": len(jobs),
            "succeeded": 0,
            "rows_written": 0,
            "failed": [],
            "errors": [],
        }
        for bucket, job in jobs:
            try:
                result = job()
            except AggregationError as e:
                summary["failed"].append(bucket)
                summary["errors"].append(str(e))
                continue
            summary["succeeded"] += 1
            summary["rows_written"] += result["rows_written"]

        logger.info(
            "aggregation_range_completed",
            grouping=grouping.value,
            buckets=summary["buckets"],
            succeeded=summary["succeeded"],
            failed=len(summary["failed"]),
        )
        return summary

    def read_lifecycle_data(
        self,
        from_date: date,
        to_date: date,
        grouping: Grouping = Grouping.DAY,
        hours_mode: HoursMode = HoursMode.WALL,
        statuses: Optional[list[str]] = None,
    ) -> dict:
        """
        Read stored aggregates for a date range.

        Returns:
            {
                "rows": [{"bucket", "status", "avg_duration_seconds",
                          "avg_duration_formatted", "count"}],
                "empty_buckets": [bucket],      # aggregated, no rows for the requested statuses
                "pending_buckets": [bucket],    # never aggregated
            }
        """
        if grouping == Grouping.DAY:
            bucket_keys = [d.isoformat() for d in iter_days(from_date, to_date)]
            records = [
                (agg.bucket_date.isoformat(), agg)
                for agg in self.storage.read_daily_aggregates(from_date, to_date, statuses)
            ]
        else:
            weeks = iso_weeks_between(from_date, to_date)
            bucket_keys = [week_label(y, w) for y, w in weeks]
            records = [
                (agg.bucket_label, agg)
                for agg in self.storage.read_weekly_aggregates(weeks, statuses)
            ]

        rows = []
        for bucket, agg in records:
            seconds = (
                agg.avg_business_seconds if hours_mode == HoursMode.BUSINESS else agg.avg_wall_seconds
            )
            rows.append(
                {
                    "bucket": bucket,
                    "status": agg.status,
                    "avg_duration_seconds": seconds,
                    "avg_duration_formatted": format_duration(seconds),
                    "count": agg.segment_count,
                }
            )

        ledger = self.storage.read_aggregation_runs(grouping, bucket_keys)
        with_rows = {row["bucket"] for row in rows}
        return {
            "rows": rows,
            "empty_buckets": [
                key for key in bucket_keys if key in ledger and key not in with_rows
            ],
            "pending_buckets": [key for key in bucket_keys if key not in ledger],
        }
