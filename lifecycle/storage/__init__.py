"""
Data storage layer.

Event store: append-only ticket status events (system of record)
Derived: status segments and daily/weekly aggregates (recomputable)
Reconciled: closure counts and assignee directory
Operational: aggregation ledger, reconciliation runs, job locks

All storage uses DuckDB.
"""

from functools import lru_cache

from lifecycle.config import get_settings

from .base import StorageBackend, StorageError
from .duckdb_storage import DuckDBStorage


@lru_cache
def get_storage() -> StorageBackend:
    """
    Get cached storage backend instance (singleton).

    Returns:
        StorageBackend implementation instance
    """
    settings = get_settings()
    return DuckDBStorage(db_path=settings.db_path)


__all__ = [
    "StorageBackend",
    "StorageError",
    "DuckDBStorage",
    "get_storage",
]
