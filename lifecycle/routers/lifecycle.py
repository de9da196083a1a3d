"""
Ticket lifecycle router - average time in status per day / ISO week.

Wired to:
- AggregationEngine for aggregate reads and manual re-runs
- SegmentBuilder for retrying a failed per-ticket rebuild
- FreshnessCache for stale-while-revalidate reads
"""

from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from lifecycle.cache.freshness import LIFECYCLE_CACHE_PREFIX, FreshnessCache
from lifecycle.cache.refresh import read_through
from lifecycle.config import get_settings
from lifecycle.engine.aggregation import AggregationEngine
from lifecycle.engine.business_calendar import local_date
from lifecycle.engine.segment_builder import SegmentBuilder, SegmentRebuildError
from lifecycle.models.enums import Grouping, HoursMode
from lifecycle.services import get_aggregation_engine, get_freshness_cache, get_segment_builder
from lifecycle.storage import get_storage
from lifecycle.storage.base import StorageError
from lifecycle.utils.logging import get_logger
from lifecycle.utils.timeutils import utc_now

logger = get_logger(__name__)
router = APIRouter()

MAX_RANGE_DAYS = 731
RECENT_WINDOW_DAYS = 7


class AggregateRequest(BaseModel):
    """Manual aggregation re-run."""

    from_date: date = Field(alias="from", description="First local date (inclusive)")
    to_date: date = Field(alias="to", description="Last local date (inclusive)")
    grouping: Grouping = Field(default=Grouping.DAY, description="Bucket size")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        json_schema_extra = {
            "example": {"from": "2026-03-02", "to": "2026-03-08", "grouping": "day"}
        }


def _validate_range(from_date: date, to_date: date) -> None:
    if from_date > to_date:
        raise HTTPException(status_code=400, detail="'from' must not be after 'to'")
    if (to_date - from_date).days + 1 > MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=400, detail=f"Date range must not exceed {MAX_RANGE_DAYS} days"
        )


def _parse_statuses(status: Optional[str]) -> Optional[list[str]]:
    if status is None:
        return None
    statuses = sorted({s.strip() for s in status.split(",") if s.strip()})
    return statuses or None


@router.get("/data")
async def get_lifecycle_data(
    from_date: date = Query(..., alias="from", description="First local date (inclusive)"),
    to_date: date = Query(..., alias="to", description="Last local date (inclusive)"),
    grouping: Grouping = Grouping.DAY,
    hours_mode: HoursMode = HoursMode.WALL,
    status: Optional[str] = Query(None, description="Comma-separated status filter"),
    engine: AggregationEngine = Depends(get_aggregation_engine),
    cache: FreshnessCache = Depends(get_freshness_cache),
):
    """
    Average time in status per bucket.

    Ranges touching the last week are cached briefly; older ranges change only
    on manual re-aggregation and are cached longer. Buckets that were
    aggregated but have no rows for the requested statuses are listed in
    empty_buckets; buckets never aggregated are listed in pending_buckets.
    """
    _validate_range(from_date, to_date)
    statuses = _parse_statuses(status)
    settings = get_settings()

    today = local_date(utc_now(), engine.calendar)
    if to_date >= today - timedelta(days=RECENT_WINDOW_DAYS):
        ttl = settings.lifecycle_cache_recent_ttl_seconds
    else:
        ttl = settings.lifecycle_cache_historical_ttl_seconds

    key = "{}{}:{}:{}:{}:{}".format(
        LIFECYCLE_CACHE_PREFIX,
        from_date.isoformat(),
        to_date.isoformat(),
        grouping.value,
        hours_mode.value,
        ",".join(statuses or []),
    )

    def load() -> dict:
        return engine.read_lifecycle_data(from_date, to_date, grouping, hours_mode, statuses)

    try:
        data, cache_meta = await read_through(cache, key, load, ttl, ttl)
    except StorageError as e:
        logger.error("lifecycle_data_unavailable", error=str(e))
        raise HTTPException(status_code=503, detail="Lifecycle data temporarily unavailable")

    return {
        "success": True,
        "data": data,
        "meta": {
            "from": from_date.isoformat(),
            "to": to_date.isoformat(),
            "grouping": grouping.value,
            "hours_mode": hours_mode.value,
            "statuses": statuses,
            "timezone": engine.calendar.timezone,
        },
        "cache": cache_meta,
    }


@router.get("/statuses")
def list_statuses():
    """Distinct statuses seen in status segments."""
    try:
        statuses = get_storage().read_statuses()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"success": True, "data": statuses}


@router.post("/aggregate")
def trigger_aggregation(
    request: AggregateRequest,
    engine: AggregationEngine = Depends(get_aggregation_engine),
    cache: FreshnessCache = Depends(get_freshness_cache),
):
    """
    Re-run aggregation for every bucket in the range.

    Failing buckets are reported and do not stop the rest. Cached lifecycle
    reads are dropped afterwards.
    """
    _validate_range(request.from_date, request.to_date)

    logger.info(
        "manual_aggregation_requested",
        from_date=request.from_date.isoformat(),
        to_date=request.to_date.isoformat(),
        grouping=request.grouping.value,
    )
    summary = engine.aggregate_range(request.from_date, request.to_date, request.grouping)
    cache.clear(LIFECYCLE_CACHE_PREFIX)

    return {"success": True, "data": summary}


@router.post("/rebuild/{ticket_id}")
def rebuild_ticket(
    ticket_id: str,
    builder: SegmentBuilder = Depends(get_segment_builder),
):
    """Rebuild one ticket's segments from its stored events."""
    try:
        result = builder.rebuild(ticket_id)
    except SegmentRebuildError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if result["events"] == 0 and result["writes"] == 0:
        raise HTTPException(status_code=404, detail=f"No events stored for ticket {ticket_id}")

    return {"success": True, "data": result}


@router.get("/stats")
def get_stats(cache: FreshnessCache = Depends(get_freshness_cache)):
    """Row counts of the lifecycle tables and cache occupancy."""
    try:
        counts = get_storage().table_counts()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "success": True,
        "data": {
            "events": counts.get("ticket_status_events", 0),
            "segments": counts.get("ticket_status_segments", 0),
            "open_segments": counts.get("open_segments", 0),
            "daily_aggregates": counts.get("ticket_status_agg_daily", 0),
            "weekly_aggregates": counts.get("ticket_status_agg_weekly", 0),
            "aggregation_runs": counts.get("aggregation_runs", 0),
            "cache_entries": len(cache),
        },
    }


@router.get("/date-range")
def get_date_range():
    """First and last local dates with daily aggregate data."""
    try:
        first, last = get_storage().read_aggregate_date_range()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "success": True,
        "data": {
            "min_date": first.isoformat() if first else None,
            "max_date": last.isoformat() if last else None,
        },
    }


@router.post("/clear-cache")
def clear_cache(cache: FreshnessCache = Depends(get_freshness_cache)):
    """Drop cached lifecycle reads."""
    removed = cache.clear(LIFECYCLE_CACHE_PREFIX)
    return {"success": True, "data": {"cleared": removed}}
