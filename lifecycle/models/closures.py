"""
Closure-count models.

ClosureCount rows are written only by the snapshot reconciler and always hold
the most recent upstream observation for their (bucket_date, assignee_id).
"""

from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from lifecycle.models.enums import ReconcileCadence, RunStatus
from lifecycle.utils.timeutils import ensure_utc, utc_now

UNASSIGNED_ID = "unassigned"
UNASSIGNED_NAME = "Unassigned"
UNKNOWN_ASSIGNEE_NAME = "Unknown"


class ClosureCount(BaseModel):
    """Tickets closed by one assignee on one business-local day."""

    bucket_date: date = Field(description="Local calendar day the tickets were closed")
    assignee_id: str = Field(description="Upstream user id or 'unassigned'")
    assignee_name: str = Field(description="Display name at observation time")
    count: int = Field(ge=0, description="Closed tickets; 0 marks an assignee that disappeared")
    observed_at: datetime = Field(description="When the upstream snapshot was taken")
    run_id: str = Field(description="Reconciliation run that wrote the row")

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "bucket_date": "2026-03-02",
                "assignee_id": "usr_7f3a",
                "assignee_name": "Mara Novak",
                "count": 12,
                "observed_at": "2026-03-02T16:05:00Z",
                "run_id": "b0c5f5a2-6a77-4f0c-9d0e-2f7c1c9a6e41",
            }
        }


class Assignee(BaseModel):
    """Directory entry derived from the upstream user list."""

    assignee_id: str = Field(description="Upstream user id")
    name: str = Field(description="Display name")
    updated_at: Optional[datetime] = Field(default=None, description="Last directory refresh")


class UpstreamUser(BaseModel):
    """User as returned by the ticketing provider."""

    id: str = Field(description="Provider user id")
    name: str = Field(default=UNKNOWN_ASSIGNEE_NAME, description="Display name")


class ClosedTicket(BaseModel):
    """Ticket in a closed state as returned by the provider search."""

    ticket_id: str = Field(description="Provider ticket id")
    assignee_id: Optional[str] = Field(default=None, description="Assigned user id, if any")
    closed_at: datetime = Field(description="When the ticket was closed")
    state: str = Field(default="closed", description="Provider state")

    @field_validator("closed_at")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ReconciliationRun(BaseModel):
    """
    Ledger of one reconciliation pass.

    Attributes:
        run_id: Unique identifier stamped on every row the run writes
        cadence: What triggered the run
        from_date: First local date reconciled
        to_date: Last local date reconciled (inclusive)
        status: Outcome
        windows_total: Query windows planned
        windows_failed: Windows skipped after exhausting retries
        tickets_seen: Closed tickets returned by the provider
        rows_written: Closure-count rows inserted or changed
        error: Failure reason for failed or partial runs
    """

    run_id: str = Field(default_factory=lambda: str(uuid4()), description="Run identifier")
    cadence: ReconcileCadence = Field(description="Trigger")
    from_date: date = Field(description="First date reconciled")
    to_date: date = Field(description="Last date reconciled (inclusive)")
    started_at: datetime = Field(default_factory=utc_now, description="Run start")
    completed_at: Optional[datetime] = Field(default=None, description="Run end")
    status: RunStatus = Field(default=RunStatus.RUNNING, description="Outcome")
    windows_total: int = Field(default=0, ge=0)
    windows_failed: int = Field(default=0, ge=0)
    tickets_seen: int = Field(default=0, ge=0)
    rows_written: int = Field(default=0, ge=0)
    error: Optional[str] = Field(default=None, description="Failure reason")
