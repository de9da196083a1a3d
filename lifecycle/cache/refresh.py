"""
Read-through helper for consumer endpoints.

    fresh hit   -> served as is
    stale hit   -> served immediately, refresh started in the background
    miss        -> loaded, stored, served
    load fails  -> last known value served marked stale, else the error propagates

Refreshes are fire-and-forget; at most one runs per key, and a later
set_with_meta simply replaces whatever an earlier refresh stored.
"""

import asyncio
from typing import Any, Callable

import structlog

from lifecycle.cache.freshness import FreshnessCache
from lifecycle.storage.base import StorageError
from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()

_refreshing: set[str] = set()
_background_tasks: set[asyncio.Task] = set()


async def read_through(
    cache: FreshnessCache,
    key: str,
    loader: Callable[[], Any],
    ttl_seconds: float,
    stale_after_seconds: float,
) -> tuple[Any, dict]:
    """
    Serve `key` from the cache, loading it with the blocking `loader` when absent.

    Returns:
        (value, cache metadata)

    Raises:
        StorageError: If the load fails and nothing was ever cached for the key
    """
    hit = cache.get_with_meta(key)
    if hit is not None:
        if hit.is_stale:
            schedule_refresh(cache, key, loader, ttl_seconds, stale_after_seconds)
        return hit.value, hit.metadata()

    try:
        value = await asyncio.to_thread(loader)
    except StorageError as e:
        fallback = cache.peek_last_known(key)
        if fallback is None:
            raise
        logger.warning("cached_read_fallback", key=key, error=str(e))
        return fallback.value, fallback.metadata()

    cache.set_with_meta(key, value, ttl_seconds, stale_after_seconds)
    stored = cache.get_with_meta(key)
    if stored is not None:
        return value, stored.metadata()
    return value, {
        "cached_at": utc_now().isoformat(),
        "is_stale": False,
        "serving_cached": False,
        "age_seconds": 0.0,
    }


def schedule_refresh(
    cache: FreshnessCache,
    key: str,
    loader: Callable[[], Any],
    ttl_seconds: float,
    stale_after_seconds: float,
) -> bool:
    """Start a background refresh of `key` unless one is already running."""
    if key in _refreshing:
        return False
    _refreshing.add(key)
    task = asyncio.create_task(_refresh(cache, key, loader, ttl_seconds, stale_after_seconds))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return True


async def _refresh(
    cache: FreshnessCache,
    key: str,
    loader: Callable[[], Any],
    ttl_seconds: float,
    stale_after_seconds: float,
) -> None:
    try:
        value = await asyncio.to_thread(loader)
    except StorageError as e:
        logger.warning("cache_refresh_failed", key=key, error=str(e))
    else:
        cache.set_with_meta(key, value, ttl_seconds, stale_after_seconds)
        logger.debug("cache_refreshed", key=key)
    finally:
        _refreshing.discard(key)
