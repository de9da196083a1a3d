"""
Freshness Cache - cached values with staleness metadata.

The cache is never a system of record and never refreshes itself. A consumer
that receives a stale entry serves it immediately, labels the response as
stale, and triggers a refresh on its own.

Lifetime of an entry written with set_with_meta(key, value, ttl, stale_after):

    0 ........ stale_after ............ stale_after + ttl ......
    |  fresh  |   served, is_stale=True   |   absent (None)

With the common (ttl=300, stale_after=300) a read at 301 s returns the value
marked stale, and a read at 601 s returns nothing.
"""

import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field

from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()

# Key namespaces, so writers can invalidate a whole family of reads.
LIFECYCLE_CACHE_PREFIX = "ticket-lifecycle:"
CLOSURE_CACHE_PREFIX = "closure-counts:"


class CachedValue(BaseModel):
    """A cache hit together with its freshness metadata."""

    value: Any = Field(description="Cached payload")
    cached_at: datetime = Field(description="When the value was stored")
    is_stale: bool = Field(description="Older than stale_after_seconds")
    age_seconds: float = Field(ge=0, description="Seconds since cached_at")

    def metadata(self) -> dict:
        """Response labelling for consumers."""
        return {
            "cached_at": self.cached_at.isoformat(),
            "is_stale": self.is_stale,
            "serving_cached": self.is_stale,
            "age_seconds": round(self.age_seconds, 1),
        }


class _Entry:
    __slots__ = ("value", "cached_at", "ttl_seconds", "stale_after_seconds")

    def __init__(self, value: Any, cached_at: datetime, ttl_seconds: float, stale_after_seconds: float):
        self.value = value
        self.cached_at = cached_at
        self.ttl_seconds = ttl_seconds
        self.stale_after_seconds = stale_after_seconds


class FreshnessCache:
    """
    In-process, bounded cache with stale-while-revalidate metadata.

    Attributes:
        max_entries: Capacity; the oldest entry is evicted first
    """

    def __init__(self, max_entries: int = 1024, clock: Optional[Callable[[], datetime]] = None):
        self.max_entries = max_entries
        self._clock = clock or utc_now
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    def set_with_meta(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        stale_after_seconds: float,
    ) -> None:
        """Store a value, replacing any previous entry for the key."""
        entry = _Entry(value, self._clock(), ttl_seconds, stale_after_seconds)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("cache_entry_evicted", key=evicted)

    def get_with_meta(self, key: str) -> Optional[CachedValue]:
        """
        Read a value with its freshness.

        Returns:
            CachedValue (possibly stale), or None when absent or past its
            stale-serving period
        """
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None

        age = self._age(entry)
        if age > entry.stale_after_seconds + entry.ttl_seconds:
            return None
        return CachedValue(
            value=entry.value,
            cached_at=entry.cached_at,
            is_stale=age > entry.stale_after_seconds,
            age_seconds=age,
        )

    def peek_last_known(self, key: str) -> Optional[CachedValue]:
        """
        Return the entry even past its stale-serving period, marked stale.

        Used as a fallback when the backing read fails.
        """
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        age = self._age(entry)
        return CachedValue(
            value=entry.value,
            cached_at=entry.cached_at,
            is_stale=True,
            age_seconds=age,
        )

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self, prefix: Optional[str] = None) -> int:
        """Remove every entry, or only keys starting with prefix. Returns the count."""
        with self._lock:
            if prefix is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                keys = [k for k in self._entries if k.startswith(prefix)]
                for k in keys:
                    del self._entries[k]
                removed = len(keys)
        logger.info("cache_cleared", prefix=prefix, removed=removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _age(self, entry: _Entry) -> float:
        return max(0.0, (self._clock() - entry.cached_at).total_seconds())
