"""
Ticketing provider API client.

Thin async wrapper over the provider's HTTP surface used by the snapshot
reconciler:
- Closed-ticket search with cursor pagination
- User directory listing
- Fixed pacing delay before every request
- Retry with exponential backoff on timeouts, 429 and 5xx
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from lifecycle.models.closures import UNKNOWN_ASSIGNEE_NAME, ClosedTicket, UpstreamUser
from lifecycle.utils.timeutils import ensure_utc, parse_timestamp

logger = structlog.get_logger()


class TicketingAPIError(Exception):
    """Raised when a ticketing API request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _isoformat_z(ts: datetime) -> str:
    return ensure_utc(ts).strftime("%Y-%m-%dT%H:%M:%SZ")


class TicketingClient:
    """
    Ticketing provider API client.

    Use as an async context manager so the connection pool is closed:

        >>> async with TicketingClient(base_url, token) as client:
        ...     users = await client.list_users()

    Attributes:
        base_url: Provider API base URL
        max_retries: Attempts per request (first try included)
        request_delay_seconds: Pause before every request
        backoff_base_seconds: Wait before retry n is backoff_base_seconds * 2**n
        page_size: Tickets requested per search page
    """

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        request_delay_seconds: float = 0.5,
        backoff_base_seconds: float = 1.0,
        page_size: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.request_delay_seconds = request_delay_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self.page_size = page_size
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

        logger.info(
            "ticketing_client_initialized",
            base_url=self.base_url,
            has_token=bool(api_token),
            max_retries=self.max_retries,
        )

    @classmethod
    def from_settings(cls, settings, **overrides) -> "TicketingClient":
        params = dict(
            base_url=settings.ticketing_api_url,
            api_token=settings.ticketing_api_token,
            timeout_seconds=settings.ticketing_timeout_seconds,
            max_retries=settings.ticketing_max_retries,
            request_delay_seconds=settings.ticketing_request_delay_seconds,
            page_size=settings.ticketing_page_size,
        )
        params.update(overrides)
        return cls(**params)

    async def __aenter__(self):
        """Async context manager entry."""
        self._http_client = self._build_http_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _build_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[dict] = None,
    ) -> dict[str, Any]:
        """
        Make an API request with pacing and retry logic.

        Raises:
            TicketingAPIError: On a non-retryable 4xx, or once retries are exhausted
        """
        if not self._http_client:
            self._http_client = self._build_http_client()

        for attempt in range(self.max_retries):
            if self.request_delay_seconds:
                await asyncio.sleep(self.request_delay_seconds)

            try:
                response = await self._http_client.request(method, endpoint, json=json_body)
                response.raise_for_status()

                logger.debug(
                    "ticketing_api_request_success",
                    method=method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )
                return response.json()

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.warning(
                    "ticketing_api_request_failed",
                    method=method,
                    endpoint=endpoint,
                    status_code=status_code,
                    attempt=attempt + 1,
                )

                if status_code not in self.RETRYABLE_STATUS_CODES:
                    raise TicketingAPIError(
                        f"API request failed ({status_code}): {e.response.text}",
                        status_code=status_code,
                    ) from e

                if attempt == self.max_retries - 1:
                    raise TicketingAPIError(
                        f"API request failed after {self.max_retries} attempts ({status_code})",
                        status_code=status_code,
                    ) from e

                wait_time = self._backoff(attempt, e.response)

            except (httpx.TimeoutException, httpx.TransportError) as e:
                logger.warning(
                    "ticketing_api_request_error",
                    method=method,
                    endpoint=endpoint,
                    error=str(e) or type(e).__name__,
                    attempt=attempt + 1,
                )
                if attempt == self.max_retries - 1:
                    raise TicketingAPIError(
                        f"API request failed after {self.max_retries} attempts: {e!r}"
                    ) from e
                wait_time = self._backoff(attempt)

            logger.info("retrying_request", endpoint=endpoint, wait_seconds=wait_time)
            await asyncio.sleep(wait_time)

        raise TicketingAPIError(f"API request to {endpoint} was not attempted")

    def _backoff(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        wait_time = self.backoff_base_seconds * (2 ** attempt)
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "")
            if retry_after.isdigit():
                wait_time = max(wait_time, float(retry_after))
        return wait_time

    async def list_users(self) -> list[UpstreamUser]:
        """
        Fetch the provider's user directory.

        Raises:
            TicketingAPIError: If the request fails
        """
        response = await self._make_request("GET", "/users")
        users = []
        for item in response.get("data") or []:
            if not item.get("id"):
                continue
            users.append(
                UpstreamUser(id=str(item["id"]), name=item.get("name") or UNKNOWN_ASSIGNEE_NAME)
            )

        logger.info("ticketing_users_fetched", count=len(users))
        return users

    async def list_closed_tickets(
        self, from_utc: datetime, to_utc: datetime
    ) -> list[ClosedTicket]:
        """
        Fetch every ticket closed within [from_utc, to_utc], following cursors.

        An empty result is a valid answer, not an error. Tickets without a
        parseable closed_at are skipped and logged.

        Raises:
            TicketingAPIError: If any page fails after retries
        """
        tickets: list[ClosedTicket] = []
        cursor: Optional[str] = None
        pages = 0

        while True:
            body: dict[str, Any] = {
                "limit": self.page_size,
                "include": ["custom_fields"],
                "filter": {
                    "operator": "and",
                    "subfilters": [
                        {"field": "state", "operator": "equals", "value": "closed"},
                        {
                            "field": "closed_at",
                            "operator": "time_range",
                            "values": [_isoformat_z(from_utc), _isoformat_z(to_utc)],
                        },
                    ],
                },
            }
            if cursor:
                body["cursor"] = cursor

            response = await self._make_request("POST", "/issues/search", json_body=body)
            pages += 1

            for item in response.get("data") or []:
                ticket = self._parse_closed_ticket(item)
                if ticket is not None:
                    tickets.append(ticket)

            pagination = response.get("pagination") or {}
            cursor = pagination.get("cursor")
            if not pagination.get("has_next_page") or not cursor:
                break

        logger.info(
            "closed_tickets_fetched",
            from_utc=from_utc.isoformat(),
            to_utc=to_utc.isoformat(),
            pages=pages,
            count=len(tickets),
        )
        return tickets

    @staticmethod
    def _parse_closed_ticket(item: dict) -> Optional[ClosedTicket]:
        """Map a search result to ClosedTicket; closed_at may live in custom_fields."""
        raw_closed_at = item.get("closed_at")
        if not raw_closed_at:
            raw_closed_at = ((item.get("custom_fields") or {}).get("closed_at") or {}).get("value")

        try:
            closed_at = parse_timestamp(str(raw_closed_at)) if raw_closed_at else None
        except ValueError:
            closed_at = None

        if closed_at is None or not item.get("id"):
            logger.warning(
                "closed_ticket_unparseable", ticket_id=item.get("id"), closed_at=raw_closed_at
            )
            return None

        assignee = item.get("assignee") or {}
        return ClosedTicket(
            ticket_id=str(item["id"]),
            assignee_id=str(assignee["id"]) if assignee.get("id") else None,
            closed_at=closed_at,
            state=item.get("state") or "closed",
        )
