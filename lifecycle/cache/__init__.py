"""Stale-while-revalidate cache for consumer-facing reads."""

from lifecycle.cache.freshness import (
    CLOSURE_CACHE_PREFIX,
    LIFECYCLE_CACHE_PREFIX,
    CachedValue,
    FreshnessCache,
)

__all__ = ["CachedValue", "FreshnessCache", "LIFECYCLE_CACHE_PREFIX", "CLOSURE_CACHE_PREFIX"]
