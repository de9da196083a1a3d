"""
Ingestion service: webhook body -> event store -> segment rebuild.

The event is durably stored before any derived data is touched. A failed
rebuild does not fail the ingestion; it is logged and can be retried through
the rebuild endpoint because the event is already in the store.
"""

from datetime import datetime
from typing import Any, Callable, Optional

import structlog

from lifecycle.connectors.webhook_handler import WebhookHandler
from lifecycle.engine.segment_builder import SegmentBuilder, SegmentRebuildError
from lifecycle.storage.base import StorageBackend, StorageError
from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()


class IngestionError(Exception):
    """Raised when an event could not be stored."""

    pass


class IngestionService:
    """
    Orchestrates webhook ingestion.

    Attributes:
        storage: Event store
        segment_builder: Rebuilds a ticket's segments after each new event
        handler: Payload validation and event construction
    """

    def __init__(
        self,
        storage: StorageBackend,
        segment_builder: SegmentBuilder,
        handler: WebhookHandler,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.segment_builder = segment_builder
        self.handler = handler
        self._clock = clock or utc_now

    def ingest_webhook(self, body: Any) -> dict[str, Any]:
        """
        Store a webhook notification and rebuild its ticket.

        Returns:
            {
                "status": "stored" | "duplicate" | "ignored",
                "event_id": str | None,
                "ticket_id": str | None,
                "rebuild_status": "ok" | "failed" | "skipped",
                "rebuild": dict | None,
            }

        Raises:
            WebhookPayloadError: If the payload is malformed
            IngestionError: If the event store rejects the write
        """
        event = self.handler.parse_payload(body, self._clock())
        if event is None:
            return {
                "status": "ignored",
                "event_id": None,
                "ticket_id": None,
                "rebuild_status": "skipped",
                "rebuild": None,
            }

        try:
            stored = self.storage.append_status_event(event)
        except StorageError as e:
            logger.error(
                "status_event_store_failed",
                event_id=event.event_id,
                ticket_id=event.ticket_id,
                error=str(e),
            )
            raise IngestionError(f"Failed to store event {event.event_id}: {e}") from e

        if not stored:
            logger.info(
                "status_event_duplicate", event_id=event.event_id, ticket_id=event.ticket_id
            )
            return {
                "status": "duplicate",
                "event_id": event.event_id,
                "ticket_id": event.ticket_id,
                "rebuild_status": "skipped",
                "rebuild": None,
            }

        logger.info(
            "status_event_stored",
            event_id=event.event_id,
            ticket_id=event.ticket_id,
            status=event.status,
            event_type=event.event_type.value,
        )

        try:
            rebuild = self.segment_builder.rebuild(event.ticket_id)
            rebuild_status = "ok"
        except SegmentRebuildError as e:
            logger.error(
                "post_ingest_rebuild_failed", ticket_id=event.ticket_id, error=str(e)
            )
            rebuild = None
            rebuild_status = "failed"

        return {
            "status": "stored",
            "event_id": event.event_id,
            "ticket_id": event.ticket_id,
            "rebuild_status": rebuild_status,
            "rebuild": rebuild,
        }
