"""
Enumeration types for the ticket lifecycle service.

All enums inherit from str so they serialize to JSON and bind to DuckDB
parameters without conversion.
"""

from enum import Enum


class WebhookEventType(str, Enum):
    """Webhook event types that carry a ticket status."""

    TICKET_CREATED = "ticket.created"
    TICKET_STATUS_CHANGED = "ticket.status_changed"


class Grouping(str, Enum):
    """Aggregation bucket granularity."""

    DAY = "day"
    WEEK = "week"


class HoursMode(str, Enum):
    """Which duration an aggregate read reports."""

    WALL = "wall"
    BUSINESS = "business"


class ReconcileCadence(str, Enum):
    """
    Reconciliation trigger.

    SHORT reconciles today only, LONG re-validates the trailing lookback
    window, MANUAL covers an operator-supplied date range.
    """

    SHORT = "short"
    LONG = "long"
    MANUAL = "manual"


class RunStatus(str, Enum):
    """Outcome of a reconciliation run."""

    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"
