"""
Event-sourced ticket status models.

StatusEvent is the append-only source of truth. StatusSegment is derived
from a ticket's events by the segment builder and can always be recomputed.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from lifecycle.models.enums import WebhookEventType
from lifecycle.utils.timeutils import ensure_utc


class StatusEvent(BaseModel):
    """
    One observed status of a ticket.

    Attributes:
        event_id: Idempotency token, unique across the event store
        ticket_id: Upstream ticket identifier
        status: Status the ticket entered
        event_type: Webhook event type that carried the status
        occurred_at: When the status was entered (server receipt time)
        received_at: When the webhook reached the service
        raw_payload: Verbatim webhook body
        sequence: Store-assigned arrival number, tie-breaker for equal occurred_at
    """

    event_id: str = Field(description="Idempotency token")
    ticket_id: str = Field(min_length=1, description="Upstream ticket identifier")
    status: str = Field(min_length=1, description="Status the ticket entered")
    event_type: WebhookEventType = Field(description="Webhook event type")
    occurred_at: datetime = Field(description="When the status was entered")
    received_at: datetime = Field(description="When the webhook was received")
    raw_payload: dict[str, Any] = Field(default_factory=dict, description="Verbatim payload")
    sequence: Optional[int] = Field(default=None, description="Arrival order")

    @field_validator("occurred_at", "received_at")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "event_id": "5f1c0c0e3b6f4b1d9c3e2a7d8b9f0a11",
                "ticket_id": "T-1042",
                "status": "waiting_on_customer",
                "event_type": "ticket.status_changed",
                "occurred_at": "2026-03-02T10:15:00Z",
                "received_at": "2026-03-02T10:15:00Z",
                "raw_payload": {
                    "type": "ticket.status_changed",
                    "ticket_id": "T-1042",
                    "status": "waiting_on_customer",
                },
                "sequence": 118,
            }
        }


class StatusSegment(BaseModel):
    """
    A contiguous interval a ticket spent in one status.

    Keyed by (ticket_id, status, entered_at). A segment with left_at None is
    open; a ticket has at most one open segment.
    """

    ticket_id: str = Field(description="Upstream ticket identifier")
    status: str = Field(description="Status held during the interval")
    entered_at: datetime = Field(description="Interval start")
    left_at: Optional[datetime] = Field(default=None, description="Interval end (None while open)")

    @field_validator("entered_at", "left_at")
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def key(self) -> tuple[str, datetime]:
        """Identity of the segment within its ticket."""
        return (self.status, self.entered_at)

    @property
    def is_open(self) -> bool:
        return self.left_at is None
