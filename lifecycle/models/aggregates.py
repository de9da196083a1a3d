"""
Aggregate models for time-in-status statistics.

One row exists per (bucket, status). Rows are fully recomputed from segment
data on every aggregation run; averages are whole seconds.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from lifecycle.models.enums import Grouping


class DailyAggregate(BaseModel):
    """Average time spent in a status by segments that ended on a business-local day."""

    bucket_date: date = Field(description="Local calendar day of the business timezone")
    status: str = Field(description="Ticket status")
    avg_wall_seconds: int = Field(ge=0, description="Mean wall-clock duration")
    avg_business_seconds: int = Field(ge=0, description="Mean business-hours duration")
    segment_count: int = Field(ge=1, description="Segments averaged")
    computed_at: Optional[datetime] = Field(default=None, description="When the row was written")


class WeeklyAggregate(BaseModel):
    """Same statistics bucketed by ISO week of the business timezone."""

    iso_year: int = Field(description="ISO-8601 year")
    iso_week: int = Field(ge=1, le=53, description="ISO-8601 week number")
    status: str = Field(description="Ticket status")
    avg_wall_seconds: int = Field(ge=0, description="Mean wall-clock duration")
    avg_business_seconds: int = Field(ge=0, description="Mean business-hours duration")
    segment_count: int = Field(ge=1, description="Segments averaged")
    computed_at: Optional[datetime] = Field(default=None, description="When the row was written")

    @property
    def bucket_label(self) -> str:
        return f"{self.iso_year}-W{self.iso_week:02d}"


class AggregationRun(BaseModel):
    """
    Ledger entry proving a bucket was aggregated.

    Distinguishes a bucket that had no qualifying segments (ledger entry,
    zero rows) from one that was never aggregated (no ledger entry).
    """

    grouping: Grouping = Field(description="Bucket granularity")
    bucket_key: str = Field(description="YYYY-MM-DD for days, YYYY-Www for weeks")
    run_at: datetime = Field(description="When the bucket was last computed")
    segments_selected: int = Field(ge=0, description="Segments whose left_at fell in the bucket")
    segments_discarded: int = Field(ge=0, description="Segments rejected as data errors")
    rows_written: int = Field(ge=0, description="Aggregate rows written")
