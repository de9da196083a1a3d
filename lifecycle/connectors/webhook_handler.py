"""
Webhook handler for ticketing provider status notifications.

Payloads reaching this handler are already authenticated. The handler only
validates shape and turns a relevant notification into a StatusEvent:

    {"type": "ticket.created" | "ticket.status_changed",
     "ticket_id": "T-1042",
     "status": "in_progress"}

The event id and timestamps are generated here; ids or timestamps supplied
by the sender are ignored. The id hashes (ticket_id, type, status, receipt
window), so a redelivery inside the same window maps to the same event and
is stored once.
"""

import hashlib
from datetime import datetime
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from lifecycle.models.enums import WebhookEventType
from lifecycle.models.events import StatusEvent
from lifecycle.utils.timeutils import ensure_utc

logger = structlog.get_logger()


class WebhookPayloadError(Exception):
    """Raised when a webhook payload is malformed. Nothing is stored."""

    pass


class TicketWebhookPayload(BaseModel):
    """Validated body of a status notification."""

    type: str = Field(min_length=1, description="Event type")
    ticket_id: str = Field(min_length=1, description="Ticket identifier")
    status: str = Field(min_length=1, description="Status the ticket entered")

    @field_validator("ticket_id", mode="before")
    @classmethod
    def coerce_ticket_id(cls, v: Union[str, int]) -> str:
        if isinstance(v, bool):
            raise ValueError("ticket_id must be a string or integer")
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("ticket_id", "status")
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "type": "ticket.status_changed",
                "ticket_id": "T-1042",
                "status": "in_progress",
            }
        }


def derive_event_id(
    ticket_id: str,
    event_type: str,
    status: str,
    received_at: datetime,
    window_seconds: int,
) -> str:
    """Idempotency token: identical notifications in one window share it."""
    window = int(ensure_utc(received_at).timestamp()) // window_seconds
    material = f"{ticket_id}\x1f{event_type}\x1f{status}\x1f{window}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]


class WebhookHandler:
    """
    Validates webhook bodies and converts them into StatusEvents.

    Attributes:
        dedup_window_seconds: Length of the receipt window folded into event ids
    """

    RELEVANT_TYPES = {t.value for t in WebhookEventType}

    def __init__(self, dedup_window_seconds: int = 5):
        self.dedup_window_seconds = dedup_window_seconds

    def parse_payload(self, body: Any, received_at: datetime) -> Optional[StatusEvent]:
        """
        Turn a webhook body into a StatusEvent.

        Args:
            body: Decoded JSON body
            received_at: Server receipt time

        Returns:
            The event, or None for event types that carry no status change

        Raises:
            WebhookPayloadError: If the body is not an object, has no type, or a
                relevant event lacks a valid ticket_id or status
        """
        if not isinstance(body, dict):
            raise WebhookPayloadError("Payload must be a JSON object")

        event_type = body.get("type")
        if not isinstance(event_type, str) or not event_type.strip():
            raise WebhookPayloadError("Missing required field: type")

        if event_type not in self.RELEVANT_TYPES:
            logger.info("webhook_event_ignored", event_type=event_type)
            return None

        try:
            payload = TicketWebhookPayload.model_validate(
                {"type": event_type, "ticket_id": body.get("ticket_id"), "status": body.get("status")}
            )
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            logger.warning("webhook_payload_invalid", event_type=event_type, fields=fields)
            raise WebhookPayloadError(
                f"Missing or invalid required fields: {', '.join(fields)}"
            ) from e

        received_at = ensure_utc(received_at)
        event = StatusEvent(
            event_id=derive_event_id(
                payload.ticket_id,
                payload.type,
                payload.status,
                received_at,
                self.dedup_window_seconds,
            ),
            ticket_id=payload.ticket_id,
            status=payload.status,
            event_type=WebhookEventType(payload.type),
            occurred_at=received_at,
            received_at=received_at,
            raw_payload=body,
        )

        logger.debug(
            "webhook_payload_parsed",
            event_id=event.event_id,
            ticket_id=event.ticket_id,
            status=event.status,
        )
        return event
