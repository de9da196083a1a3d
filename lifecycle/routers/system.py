"""
System health and diagnostics router.

Wired to:
- StorageBackend for database diagnostics
- JobScheduler for periodic job state
- Settings and the business calendar for configuration
"""

import os
import time

from fastapi import APIRouter, Depends

from lifecycle import __version__
from lifecycle.cache.freshness import FreshnessCache
from lifecycle.config import get_settings
from lifecycle.engine.business_calendar import BusinessCalendarConfig
from lifecycle.engine.scheduler import JobScheduler
from lifecycle.services import get_calendar, get_freshness_cache, get_scheduler
from lifecycle.storage import get_storage
from lifecycle.storage.base import StorageError
from lifecycle.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

# Track startup time for uptime calculation
_startup_time = time.time()


@router.get("/health")
def system_health():
    """
    Get system health status.
    Checks database connectivity with a cheap count query.
    """
    uptime = time.time() - _startup_time

    db_status = "healthy"
    try:
        get_storage().table_counts()
    except StorageError as e:
        db_status = f"unhealthy: {e}"

    return {
        "success": True,
        "data": {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "version": __version__,
            "uptime_seconds": round(uptime, 1),
            "database": db_status,
        },
    }


@router.get("/diagnostics")
def system_diagnostics(
    scheduler: JobScheduler = Depends(get_scheduler),
    cache: FreshnessCache = Depends(get_freshness_cache),
):
    """
    Get detailed system diagnostics.
    Reports database size, table counts, cache occupancy and job state.
    """
    settings = get_settings()

    logger.info("diagnostics_request")

    diagnostics = {
        "database_path": settings.db_path,
        "database_size_mb": 0.0,
        "tables": {},
        "cache_entries": len(cache),
        "scheduler": {
            "enabled": settings.scheduler_enabled and not settings.testing,
            "running": scheduler.running,
            "jobs": scheduler.describe(),
        },
    }

    if os.path.exists(settings.db_path):
        size_bytes = os.path.getsize(settings.db_path)
        diagnostics["database_size_mb"] = round(size_bytes / (1024 * 1024), 2)

    try:
        diagnostics["tables"] = get_storage().table_counts()
    except StorageError as e:
        diagnostics["tables"] = {"error": str(e)}

    return {"success": True, "data": diagnostics}


@router.get("/config")
def get_system_config(calendar: BusinessCalendarConfig = Depends(get_calendar)):
    """
    Get system configuration (non-sensitive values only).
    """
    settings = get_settings()

    return {
        "success": True,
        "data": {
            "log_level": settings.log_level,
            "business_calendar": calendar.describe(),
            "ticketing_api_url": settings.ticketing_api_url,
            "ticketing_page_size": settings.ticketing_page_size,
            "event_dedup_window_seconds": settings.event_dedup_window_seconds,
            "max_segment_duration_days": settings.max_segment_duration_days,
            "aggregation_interval_seconds": settings.aggregation_interval_seconds,
            "reconcile_window_days": settings.reconcile_window_days,
            "reconcile_lookback_days": settings.reconcile_lookback_days,
            "reconcile_short_interval_seconds": settings.reconcile_short_interval_seconds,
            "reconcile_long_interval_seconds": settings.reconcile_long_interval_seconds,
            "closure_cache_ttl_seconds": settings.closure_cache_ttl_seconds,
            "closure_cache_stale_seconds": settings.closure_cache_stale_seconds,
            "scheduler_enabled": settings.scheduler_enabled,
            "dev_mode": settings.dev_mode,
        },
    }
