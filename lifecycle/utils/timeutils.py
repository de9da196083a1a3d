"""
UTC time helpers.

Every instant inside the service is a timezone-aware UTC datetime. DuckDB
columns are plain TIMESTAMP holding UTC wall time, so values are converted
at the storage boundary with to_db_timestamp / from_db_timestamp.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are interpreted as UTC.
    """
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    return ensure_utc(ts).replace(tzinfo=None)


def from_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    return ensure_utc(ts)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp (a trailing 'Z' is accepted) into aware UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def parse_date(value: str) -> date:
    """Parse a YYYY-MM-DD string."""
    return date.fromisoformat(value.strip())
