"""
Unit tests for the ticketing API client, using httpx's mock transport.
"""

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from lifecycle.connectors.ticketing_client import TicketingAPIError, TicketingClient

UTC = timezone.utc
FROM = datetime(2026, 3, 1, 23, tzinfo=UTC)
TO = datetime(2026, 3, 4, 23, tzinfo=UTC)


def make_client(handler, **kwargs) -> TicketingClient:
    params = dict(
        base_url="https://tickets.example.test/api/",
        api_token="secret",
        max_retries=3,
        request_delay_seconds=0,
        backoff_base_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    params.update(kwargs)
    return TicketingClient(**params)


def run(client: TicketingClient, method: str, *args):
    async def scenario():
        async with client:
            return await getattr(client, method)(*args)

    return asyncio.run(scenario())


# ============================================================================
# Closed-ticket search
# ============================================================================


class TestListClosedTickets:
    """Search request shape, pagination and parsing."""

    def test_request_body_and_headers(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [], "pagination": {}})

        assert run(make_client(handler, page_size=50), "list_closed_tickets", FROM, TO) == []

        request = seen[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert request.url.path == "/api/issues/search"
        assert request.headers["Authorization"] == "Bearer secret"
        assert body["limit"] == 50
        assert body["filter"]["subfilters"][1]["values"] == [
            "2026-03-01T23:00:00Z",
            "2026-03-04T23:00:00Z",
        ]
        assert "cursor" not in body

    def test_follows_cursor_pagination(self):
        pages = {
            None: {
                "data": [{"id": 1, "closed_at": "2026-03-02T10:00:00Z", "assignee": {"id": "u1"}}],
                "pagination": {"has_next_page": True, "cursor": "c2"},
            },
            "c2": {
                "data": [{"id": 2, "closed_at": "2026-03-03T10:00:00Z", "assignee": None}],
                "pagination": {"has_next_page": False, "cursor": None},
            },
        }

        def handler(request: httpx.Request) -> httpx.Response:
            cursor = json.loads(request.content).get("cursor")
            return httpx.Response(200, json=pages[cursor])

        tickets = run(make_client(handler), "list_closed_tickets", FROM, TO)

        assert [(t.ticket_id, t.assignee_id) for t in tickets] == [("1", "u1"), ("2", None)]
        assert tickets[0].closed_at == datetime(2026, 3, 2, 10, tzinfo=UTC)

    def test_closed_at_from_custom_fields(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [
                {"id": "T-7", "custom_fields": {"closed_at": {"value": "2026-03-02T08:15:00+01:00"}}},
                {"id": "T-8"},
            ]})

        tickets = run(make_client(handler), "list_closed_tickets", FROM, TO)

        assert [t.ticket_id for t in tickets] == ["T-7"]
        assert tickets[0].closed_at == datetime(2026, 3, 2, 7, 15, tzinfo=UTC)


# ============================================================================
# Retry behaviour
# ============================================================================


class TestRetries:
    """Transient failures are retried, client errors are not."""

    def test_retries_server_error_then_succeeds(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"data": [{"id": "u1", "name": "Ada"}]})

        users = run(make_client(handler), "list_users")
        assert [(u.id, u.name) for u in users] == [("u1", "Ada")]
        assert len(attempts) == 2

    def test_client_error_is_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(401, text="bad token")

        with pytest.raises(TicketingAPIError) as exc_info:
            run(make_client(handler), "list_users")

        assert exc_info.value.status_code == 401
        assert len(attempts) == 1

    def test_exhausted_retries_raise(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(429, headers={"Retry-After": "0"})

        with pytest.raises(TicketingAPIError) as exc_info:
            run(make_client(handler, max_retries=2), "list_closed_tickets", FROM, TO)

        assert exc_info.value.status_code == 429
        assert len(attempts) == 2

    def test_transport_error_is_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"data": []})

        assert run(make_client(handler), "list_users") == []
        assert len(attempts) == 3

    def test_backoff_honours_retry_after(self):
        client = make_client(lambda request: httpx.Response(200), backoff_base_seconds=1)
        response = httpx.Response(429, headers={"Retry-After": "30"})

        assert client._backoff(0) == 1
        assert client._backoff(2) == 4
        assert client._backoff(0, response) == 30


class TestListUsers:
    """User directory parsing."""

    def test_users_without_id_skipped_and_names_defaulted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/users"
            return httpx.Response(200, json={"data": [
                {"id": 7, "name": "Grace"},
                {"id": "u8", "name": None},
                {"name": "ghost"},
            ]})

        users = run(make_client(handler), "list_users")
        assert [(u.id, u.name) for u in users] == [("7", "Grace"), ("u8", "Unknown")]
