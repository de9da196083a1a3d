"""
Service wiring.

Process-wide singletons built from settings. Routers receive them through
FastAPI Depends so tests can swap any of them with
app.dependency_overrides.
"""

from functools import lru_cache
from typing import Callable

from lifecycle.cache.freshness import FreshnessCache
from lifecycle.config import get_settings
from lifecycle.connectors.ingestion_service import IngestionService
from lifecycle.connectors.ticketing_client import TicketingClient
from lifecycle.connectors.webhook_handler import WebhookHandler
from lifecycle.engine.aggregation import AggregationEngine
from lifecycle.engine.business_calendar import BusinessCalendarConfig
from lifecycle.engine.reconciler import SnapshotReconciler
from lifecycle.engine.scheduler import JobScheduler, build_scheduler
from lifecycle.engine.segment_builder import SegmentBuilder
from lifecycle.storage import get_storage


@lru_cache()
def get_calendar() -> BusinessCalendarConfig:
    return BusinessCalendarConfig.from_settings(get_settings())


@lru_cache()
def get_segment_builder() -> SegmentBuilder:
    return SegmentBuilder(get_storage())


@lru_cache()
def get_aggregation_engine() -> AggregationEngine:
    settings = get_settings()
    return AggregationEngine(
        get_storage(),
        get_calendar(),
        max_segment_duration_days=settings.max_segment_duration_days,
    )


@lru_cache()
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(dedup_window_seconds=get_settings().event_dedup_window_seconds)


@lru_cache()
def get_ingestion_service() -> IngestionService:
    return IngestionService(get_storage(), get_segment_builder(), get_webhook_handler())


@lru_cache()
def get_freshness_cache() -> FreshnessCache:
    return FreshnessCache(max_entries=get_settings().cache_max_entries)


def get_ticketing_client_factory() -> Callable[[], TicketingClient]:
    """Each reconciliation run opens its own client session."""
    settings = get_settings()
    return lambda: TicketingClient.from_settings(settings)


@lru_cache()
def get_reconciler() -> SnapshotReconciler:
    settings = get_settings()
    return SnapshotReconciler(
        get_storage(),
        get_ticketing_client_factory(),
        get_calendar(),
        window_days=settings.reconcile_window_days,
        lookback_days=settings.reconcile_lookback_days,
        lock_ttl_seconds=settings.reconcile_lock_ttl_seconds,
    )


@lru_cache()
def get_scheduler() -> JobScheduler:
    return build_scheduler(
        get_settings(),
        get_reconciler(),
        get_aggregation_engine(),
        get_freshness_cache(),
    )


__all__ = [
    "get_calendar",
    "get_segment_builder",
    "get_aggregation_engine",
    "get_webhook_handler",
    "get_ingestion_service",
    "get_freshness_cache",
    "get_ticketing_client_factory",
    "get_reconciler",
    "get_scheduler",
]
