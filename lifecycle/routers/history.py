"""
History router - per-assignee closure counts and their reconciliation.

Wired to:
- StorageBackend for closure counts and the assignee directory
- SnapshotReconciler for manual runs and run status
- FreshnessCache for stale-while-revalidate reads

Closure counts are written only by the reconciler; this router never
increments them.
"""

from collections import defaultdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from lifecycle.cache.freshness import CLOSURE_CACHE_PREFIX, FreshnessCache
from lifecycle.cache.refresh import read_through
from lifecycle.config import get_settings
from lifecycle.engine.business_calendar import iso_week_of, week_label
from lifecycle.engine.reconciler import ReconciliationError, SnapshotReconciler
from lifecycle.models.closures import ClosureCount
from lifecycle.models.enums import Grouping, ReconcileCadence, RunStatus
from lifecycle.services import get_freshness_cache, get_reconciler
from lifecycle.storage import get_storage
from lifecycle.storage.base import StorageError
from lifecycle.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

MAX_RANGE_DAYS = 366


class ReconcileRequest(BaseModel):
    """Manual reconciliation trigger: a cadence, or an explicit date range."""

    cadence: Optional[ReconcileCadence] = Field(
        default=None, description="short (today) or long (trailing window)"
    )
    from_date: Optional[date] = Field(default=None, alias="from", description="First local date")
    to_date: Optional[date] = Field(default=None, alias="to", description="Last local date")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        json_schema_extra = {"example": {"from": "2026-03-01", "to": "2026-03-05"}}


def bucket_closure_counts(rows: list[ClosureCount], bucket: Grouping) -> list[dict]:
    """
    Shape stored rows for consumers.

    Zero rows (assignees whose closures moved away) are omitted. For weekly
    buckets, counts are summed per ISO week and assignee.
    """
    totals: dict[tuple[str, str], int] = defaultdict(int)
    names: dict[str, str] = {}
    for row in sorted(rows, key=lambda r: r.bucket_date):
        if row.count == 0:
            continue
        if bucket == Grouping.WEEK:
            key = week_label(*iso_week_of(row.bucket_date))
        else:
            key = row.bucket_date.isoformat()
        totals[(key, row.assignee_id)] += row.count
        names[row.assignee_id] = row.assignee_name

    result = [
        {
            "bucket": key,
            "assignee_id": assignee_id,
            "assignee_name": names[assignee_id],
            "count": count,
        }
        for (key, assignee_id), count in totals.items()
    ]
    result.sort(key=lambda r: (r["bucket"], -r["count"], r["assignee_name"]))
    return result


@router.get("/closure-counts")
async def get_closure_counts(
    from_date: date = Query(..., alias="from", description="First local date (inclusive)"),
    to_date: date = Query(..., alias="to", description="Last local date (inclusive)"),
    bucket: Grouping = Grouping.DAY,
    cache: FreshnessCache = Depends(get_freshness_cache),
):
    """
    Closed tickets per assignee and bucket.

    Every response carries cache metadata. A stale response is served
    immediately while a refresh runs in the background; when the datastore is
    unavailable the last known value is served marked stale.
    """
    if from_date > to_date:
        raise HTTPException(status_code=400, detail="'from' must not be after 'to'")
    if (to_date - from_date).days + 1 > MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=400, detail=f"Date range must not exceed {MAX_RANGE_DAYS} days"
        )

    settings = get_settings()
    key = f"{CLOSURE_CACHE_PREFIX}{from_date.isoformat()}:{to_date.isoformat()}:{bucket.value}"

    def load() -> list[dict]:
        rows = get_storage().read_closure_counts(from_date, to_date)
        return bucket_closure_counts(rows, bucket)

    try:
        data, cache_meta = await read_through(
            cache,
            key,
            load,
            settings.closure_cache_ttl_seconds,
            settings.closure_cache_stale_seconds,
        )
    except StorageError as e:
        logger.error("closure_counts_unavailable", error=str(e))
        raise HTTPException(status_code=503, detail="Closure counts temporarily unavailable")

    return {
        "success": True,
        "data": data,
        "meta": {
            "from": from_date.isoformat(),
            "to": to_date.isoformat(),
            "bucket": bucket.value,
        },
        "cache": cache_meta,
    }


@router.post("/reconcile")
async def trigger_reconciliation(
    request: ReconcileRequest,
    reconciler: SnapshotReconciler = Depends(get_reconciler),
    cache: FreshnessCache = Depends(get_freshness_cache),
):
    """
    Run one reconciliation pass now.

    Responses:
        200: run summary
        400: neither a cadence nor a complete date range was given
        409: another run is in flight
        503: the run failed (upstream or datastore)
    """
    if reconciler.is_running:
        raise HTTPException(status_code=409, detail="A reconciliation run is already in progress")

    try:
        if request.cadence == ReconcileCadence.SHORT:
            summary = await reconciler.reconcile_today()
        elif request.cadence == ReconcileCadence.LONG:
            summary = await reconciler.reconcile_trailing()
        else:
            if request.from_date is None or request.to_date is None:
                raise HTTPException(
                    status_code=400,
                    detail="Provide a cadence (short, long) or both 'from' and 'to'",
                )
            if (request.to_date - request.from_date).days + 1 > MAX_RANGE_DAYS:
                raise HTTPException(
                    status_code=400, detail=f"Date range must not exceed {MAX_RANGE_DAYS} days"
                )
            summary = await reconciler.reconcile_range(
                request.from_date, request.to_date, ReconcileCadence.MANUAL
            )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReconciliationError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if summary["status"] == RunStatus.SKIPPED.value:
        raise HTTPException(status_code=409, detail="A reconciliation run is already in progress")

    if summary["rows_written"]:
        cache.clear(CLOSURE_CACHE_PREFIX)

    return {"success": True, "data": summary}


@router.get("/reconcile/status")
def get_reconciliation_status(reconciler: SnapshotReconciler = Depends(get_reconciler)):
    """Whether a run is in flight, plus the latest run per cadence."""
    try:
        status = reconciler.status()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"success": True, "data": status}


@router.get("/assignees")
def list_assignees():
    """Assignee directory as last loaded from the ticketing provider."""
    try:
        assignees = get_storage().read_assignees()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {
        "success": True,
        "data": [a.model_dump(mode="json") for a in assignees],
    }
