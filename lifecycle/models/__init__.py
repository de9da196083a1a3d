"""
Domain models for the ticket lifecycle service.

- events: StatusEvent (append-only source of truth) and StatusSegment (derived)
- aggregates: daily/weekly time-in-status rows and the aggregation ledger
- closures: reconciled closure counts, assignee directory, upstream shapes
"""

from lifecycle.models.aggregates import AggregationRun, DailyAggregate, WeeklyAggregate
from lifecycle.models.closures import (
    UNASSIGNED_ID,
    UNASSIGNED_NAME,
    Assignee,
    ClosedTicket,
    ClosureCount,
    ReconciliationRun,
    UpstreamUser,
)
from lifecycle.models.enums import (
    Grouping,
    HoursMode,
    ReconcileCadence,
    RunStatus,
    WebhookEventType,
)
from lifecycle.models.events import StatusEvent, StatusSegment

__all__ = [
    "AggregationRun",
    "Assignee",
    "ClosedTicket",
    "ClosureCount",
    "DailyAggregate",
    "Grouping",
    "HoursMode",
    "ReconcileCadence",
    "ReconciliationRun",
    "RunStatus",
    "StatusEvent",
    "StatusSegment",
    "UNASSIGNED_ID",
    "UNASSIGNED_NAME",
    "UpstreamUser",
    "WebhookEventType",
    "WeeklyAggregate",
]
