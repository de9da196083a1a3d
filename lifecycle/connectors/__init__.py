"""
Ticketing provider connector.

Main Components:
    TicketingClient: Async REST client (closed-ticket search, user directory)
    WebhookHandler: Validates status notifications into StatusEvents
    IngestionService: Stores events and triggers segment rebuilds

Usage:
    >>> from lifecycle.connectors import TicketingClient
    >>>
    >>> async with TicketingClient(base_url="https://api.usepylon.com", api_token="...") as client:
    ...     users = await client.list_users()
    ...     closed = await client.list_closed_tickets(start_utc, end_utc)
"""

from lifecycle.connectors.ticketing_client import TicketingAPIError, TicketingClient
from lifecycle.connectors.webhook_handler import (
    TicketWebhookPayload,
    WebhookHandler,
    WebhookPayloadError,
)
from lifecycle.connectors.ingestion_service import IngestionError, IngestionService

__all__ = [
    # Upstream client
    "TicketingClient",
    "TicketingAPIError",
    # Webhook handling
    "WebhookHandler",
    "TicketWebhookPayload",
    "WebhookPayloadError",
    # Ingestion orchestration
    "IngestionService",
    "IngestionError",
]
