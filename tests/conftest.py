"""
Pytest configuration and shared fixtures for the ticket lifecycle test suite.

Factories build valid models with overridable defaults; fixtures provide a
temporary DuckDB per test, a fixed clock, and a fake ticketing client.
"""

import os
import tempfile
import uuid as _uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

# Set testing environment BEFORE importing the app. Use a temp path that does
# not exist yet (DuckDB creates the file); :memory: would give every thread
# its own database.
_test_db_path = os.path.join(
    tempfile.gettempdir(), f"lifecycle_test_{_uuid.uuid4().hex[:8]}.duckdb"
)
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from lifecycle.connectors.ticketing_client import TicketingAPIError
from lifecycle.engine.business_calendar import BusinessCalendarConfig
from lifecycle.models.closures import ClosedTicket, UpstreamUser
from lifecycle.models.enums import WebhookEventType
from lifecycle.models.events import StatusEvent, StatusSegment
from lifecycle.storage.duckdb_storage import DuckDBStorage

UTC = timezone.utc

# Wednesday 2026-03-04 12:00 UTC (13:00 in Vienna)
FIXED_NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


def make_event(
    ticket_id: str = "T-1",
    status: str = "open",
    occurred_at: Optional[datetime] = None,
    event_type: WebhookEventType = WebhookEventType.TICKET_STATUS_CHANGED,
    **overrides,
) -> StatusEvent:
    """Factory function for creating test StatusEvent objects."""
    occurred_at = occurred_at or FIXED_NOW
    defaults = dict(
        event_id=_uuid.uuid4().hex,
        ticket_id=ticket_id,
        status=status,
        event_type=event_type,
        occurred_at=occurred_at,
        received_at=occurred_at,
        raw_payload={"type": event_type.value, "ticket_id": ticket_id, "status": status},
    )
    defaults.update(overrides)
    return StatusEvent(**defaults)


def make_segment(
    ticket_id: str = "T-1",
    status: str = "open",
    entered_at: Optional[datetime] = None,
    left_at: Optional[datetime] = None,
) -> StatusSegment:
    """Factory function for creating test StatusSegment objects."""
    return StatusSegment(
        ticket_id=ticket_id,
        status=status,
        entered_at=entered_at or FIXED_NOW - timedelta(hours=1),
        left_at=left_at,
    )


def make_closed_ticket(
    ticket_id: Optional[str] = None,
    assignee_id: Optional[str] = "u1",
    closed_at: Optional[datetime] = None,
) -> ClosedTicket:
    """Factory function for creating test ClosedTicket objects."""
    return ClosedTicket(
        ticket_id=ticket_id or f"T-{_uuid.uuid4().hex[:6]}",
        assignee_id=assignee_id,
        closed_at=closed_at or FIXED_NOW,
    )


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTicketingClient:
    """
    In-memory stand-in for TicketingClient.

    Returns the configured tickets whose closed_at falls inside the requested
    range. Calls listed in fail_calls (0-based index of list_closed_tickets
    calls) raise TicketingAPIError, as after exhausted retries.
    """

    def __init__(
        self,
        tickets: Optional[list[ClosedTicket]] = None,
        users: Optional[list[UpstreamUser]] = None,
        fail_calls: Optional[set[int]] = None,
        fail_users: bool = False,
    ):
        self.tickets = list(tickets or [])
        self.users = list(users if users is not None else [
            UpstreamUser(id="u1", name="Ada"),
            UpstreamUser(id="u2", name="Grace"),
        ])
        self.fail_calls = set(fail_calls or set())
        self.fail_users = fail_users
        self.calls: list[tuple[datetime, datetime]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def list_users(self) -> list[UpstreamUser]:
        if self.fail_users:
            raise TicketingAPIError("users unavailable", status_code=503)
        return list(self.users)

    async def list_closed_tickets(self, from_utc: datetime, to_utc: datetime) -> list[ClosedTicket]:
        index = len(self.calls)
        self.calls.append((from_utc, to_utc))
        if index in self.fail_calls:
            raise TicketingAPIError("upstream unavailable", status_code=503)
        return [t for t in self.tickets if from_utc <= t.closed_at < to_utc]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def calendar():
    """Vienna, Monday to Friday, 09:00-17:00."""
    return BusinessCalendarConfig()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def storage(tmp_path):
    """A fresh DuckDB database per test."""
    return DuckDBStorage(db_path=str(tmp_path / "lifecycle.duckdb"))


@pytest.fixture
def client():
    """FastAPI test client against the shared test database, emptied per test."""
    from lifecycle.main import app
    from lifecycle.services import get_freshness_cache
    from lifecycle.storage import get_storage

    get_storage().clear_for_testing()
    get_freshness_cache().clear()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def today_local(calendar):
    """Today's date in the business timezone."""
    from lifecycle.engine.business_calendar import local_date
    from lifecycle.utils.timeutils import utc_now

    return local_date(utc_now(), calendar)


