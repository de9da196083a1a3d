"""
Inbound webhook router.

Wired to:
- IngestionService for event storage and the per-ticket segment rebuild

Requests reaching this router are already authenticated upstream.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from lifecycle.connectors.ingestion_service import IngestionError, IngestionService
from lifecycle.connectors.webhook_handler import WebhookPayloadError
from lifecycle.services import get_ingestion_service
from lifecycle.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/tickets")
async def receive_ticket_webhook(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """
    Receive a ticket status notification.

    Responses:
        200: stored, duplicate (no-op) or ignored event type
        400: body is not JSON or a required field is missing/invalid
        503: the event store is unavailable; the sender should redeliver
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning("webhook_body_not_json")
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")

    try:
        result = await run_in_threadpool(service.ingest_webhook, body)
    except WebhookPayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except IngestionError as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(
        "webhook_processed",
        status=result["status"],
        ticket_id=result["ticket_id"],
        rebuild_status=result["rebuild_status"],
    )
    return {"success": True, "data": result}
