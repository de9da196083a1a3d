"""
End-to-end pipeline test.

Webhook events -> status segments -> daily/weekly aggregates -> lifecycle read,
and upstream snapshot -> reconciled closure counts -> cached history read.
"""

import pytest

from lifecycle.connectors.ingestion_service import IngestionService
from lifecycle.connectors.webhook_handler import WebhookHandler
from lifecycle.engine.business_calendar import BusinessCalendarConfig
from lifecycle.engine.reconciler import SnapshotReconciler
from lifecycle.engine.segment_builder import SegmentBuilder
from lifecycle.main import app
from lifecycle.services import get_ingestion_service, get_reconciler
from lifecycle.storage import get_storage
from tests.conftest import FIXED_NOW, FakeTicketingClient, FixedClock, make_closed_ticket


@pytest.fixture
def ingestion_clock():
    clock = FixedClock()
    storage = get_storage()
    service = IngestionService(
        storage, SegmentBuilder(storage, clock=clock), WebhookHandler(), clock=clock
    )
    app.dependency_overrides[get_ingestion_service] = lambda: service
    return clock


def send(client, ticket_id, status, event_type="ticket.status_changed"):
    response = client.post(
        "/api/v1/webhooks/tickets",
        json={"type": event_type, "ticket_id": ticket_id, "status": status},
    )
    assert response.status_code == 200
    return response.json()["data"]


def test_webhooks_to_lifecycle_report(client, ingestion_clock):
    # Wednesday 2026-03-04, 13:00 local
    send(client, "T-1", "open", event_type="ticket.created")
    ingestion_clock.advance(hours=2)
    send(client, "T-1", "pending")
    ingestion_clock.advance(hours=1)
    send(client, "T-1", "closed")
    # Redelivery of the last notification changes nothing
    assert send(client, "T-1", "closed")["status"] == "duplicate"

    segments = get_storage().read_segments("T-1")
    assert [(s.status, s.left_at is None) for s in segments] == [
        ("open", False),
        ("pending", False),
        ("closed", True),
    ]

    for grouping in ("day", "week"):
        response = client.post(
            "/api/v1/ticket-lifecycle/aggregate",
            json={"from": "2026-03-04", "to": "2026-03-04", "grouping": grouping},
        )
        assert response.json()["data"]["failed"] == []

    wall = client.get(
        "/api/v1/ticket-lifecycle/data", params={"from": "2026-03-04", "to": "2026-03-04"}
    ).json()["data"]["rows"]
    assert [(r["status"], r["avg_duration_seconds"]) for r in wall] == [
        ("open", 7200),
        ("pending", 3600),
    ]

    # 15:00-16:00 local, inside business hours
    business = client.get(
        "/api/v1/ticket-lifecycle/data",
        params={"from": "2026-03-04", "to": "2026-03-04", "hours_mode": "business", "status": "pending"},
    ).json()["data"]["rows"]
    assert business[0]["avg_duration_seconds"] == 3600

    weekly = client.get(
        "/api/v1/ticket-lifecycle/data",
        params={"from": "2026-03-02", "to": "2026-03-08", "grouping": "week"},
    ).json()["data"]["rows"]
    assert {(r["bucket"], r["status"]) for r in weekly} == {
        ("2026-W10", "open"),
        ("2026-W10", "pending"),
    }


def test_snapshot_to_closure_history(client):
    fake = FakeTicketingClient(tickets=[
        make_closed_ticket(assignee_id="u1"),
        make_closed_ticket(assignee_id="u2"),
    ])
    reconciler = SnapshotReconciler(
        get_storage(), lambda: fake, BusinessCalendarConfig(), clock=FixedClock(FIXED_NOW)
    )
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    params = {"from": "2026-03-04", "to": "2026-03-04"}

    assert client.post("/api/v1/history/reconcile", json={"cadence": "short"}).status_code == 200
    first = client.get("/api/v1/history/closure-counts", params=params).json()
    assert {(c["assignee_id"], c["count"]) for c in first["data"]} == {("u1", 1), ("u2", 1)}

    # u2's ticket is reopened upstream; the next run zeroes it and drops cached reads
    fake.tickets = fake.tickets[:1]
    result = client.post("/api/v1/history/reconcile", json={"cadence": "short"}).json()["data"]
    assert result["rows_written"] == 1

    second = client.get("/api/v1/history/closure-counts", params=params).json()
    assert [(c["assignee_id"], c["count"]) for c in second["data"]] == [("u1", 1)]
    assert second["cache"]["is_stale"] is False
