"""API routers for all endpoints."""

from lifecycle.routers import history, lifecycle, system, webhooks

__all__ = [
    "webhooks",
    "lifecycle",
    "history",
    "system",
]
