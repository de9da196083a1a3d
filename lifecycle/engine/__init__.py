"""
Ticket lifecycle engine core components.

- Business calendar: wall-clock and business-hours durations, local buckets
- Segment building: event log -> contiguous status segments per ticket
- Aggregation: per-day / per-ISO-week average time in status
- Reconciliation: closure counts made equal to upstream snapshots
- Scheduling: periodic reconciliation and aggregation jobs

Engines take their storage backend and clock through the constructor so they
can be exercised against a temporary database with a fixed time.
"""

__version__ = "0.1.0"

__all__ = [
    "BusinessCalendarConfig",
    "SegmentBuilder",
    "SegmentRebuildError",
    "AggregationEngine",
    "AggregationError",
    "SnapshotReconciler",
    "ReconciliationError",
    "JobScheduler",
]

from lifecycle.engine.business_calendar import BusinessCalendarConfig
from lifecycle.engine.segment_builder import SegmentBuilder, SegmentRebuildError
from lifecycle.engine.aggregation import AggregationEngine, AggregationError
from lifecycle.engine.reconciler import ReconciliationError, SnapshotReconciler
from lifecycle.engine.scheduler import JobScheduler
