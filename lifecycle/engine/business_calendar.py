"""
Business calendar arithmetic.

All timezone reasoning in the service lives here: business-hours durations,
the local calendar day of an instant, and the UTC boundaries of daily and
ISO-week buckets.

Durations are computed by walking every local calendar day between the two
instants and intersecting the interval with that day's business window.
Window edges are converted to UTC before subtraction, so a day with a DST
transition contributes its real elapsed seconds.

Example:
    >>> cfg = BusinessCalendarConfig(timezone="Europe/Vienna")
    >>> start = datetime(2026, 3, 6, 15, 0, tzinfo=timezone.utc)   # Fri 16:00 local
    >>> end = datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)      # Mon 10:00 local
    >>> business_seconds(start, end, cfg)
    7200
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from lifecycle.utils.timeutils import ensure_utc

_WEEK_LABEL = re.compile(r"^(\d{4})-W(\d{1,2})$")


class BusinessCalendarConfig(BaseModel):
    """
    Business timezone, working days and working hours.

    Attributes:
        timezone: IANA timezone name
        business_days: ISO weekday numbers (Monday=1 .. Sunday=7)
        start_hour: First business hour of the day (inclusive)
        end_hour: End of the business day (exclusive, 24 allowed)
    """

    model_config = {"frozen": True}

    timezone: str = Field(default="Europe/Vienna", description="IANA timezone name")
    business_days: frozenset[int] = Field(
        default=frozenset({1, 2, 3, 4, 5}), description="ISO weekday numbers"
    )
    start_hour: int = Field(default=9, ge=0, le=23, description="Business day start hour")
    end_hour: int = Field(default=17, ge=1, le=24, description="Business day end hour")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("business_days")
    @classmethod
    def validate_days(cls, v: frozenset[int]) -> frozenset[int]:
        if any(d < 1 or d > 7 for d in v):
            raise ValueError("business_days must be ISO weekday numbers 1..7")
        return v

    @model_validator(mode="after")
    def validate_hours(self) -> "BusinessCalendarConfig":
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_settings(cls, settings) -> "BusinessCalendarConfig":
        """Build the calendar from application settings."""
        return cls(
            timezone=settings.business_timezone,
            business_days=settings.business_weekdays,
            start_hour=settings.business_start_hour,
            end_hour=settings.business_end_hour,
        )

    def describe(self) -> dict:
        return {
            "timezone": self.timezone,
            "business_days": sorted(self.business_days),
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
        }


def _local_midnight_utc(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def _local_hour_utc(day: date, hour: int, tz: ZoneInfo) -> datetime:
    if hour == 24:
        return _local_midnight_utc(day + timedelta(days=1), tz)
    return datetime.combine(day, time(hour=hour), tzinfo=tz).astimezone(timezone.utc)


def business_window_utc(day: date, cfg: BusinessCalendarConfig) -> tuple[datetime, datetime]:
    """UTC instants at which business hours open and close on a local day."""
    tz = cfg.tz
    return _local_hour_utc(day, cfg.start_hour, tz), _local_hour_utc(day, cfg.end_hour, tz)


def business_seconds(start: datetime, end: datetime, cfg: BusinessCalendarConfig) -> int:
    """
    Seconds of [start, end] that fall inside business hours.

    Returns 0 when end is not after start. Non-business days contribute
    nothing; each business day contributes the overlap of the interval with
    [day + start_hour, day + end_hour] in the business timezone.

    Args:
        start: Interval start (naive values are read as UTC)
        end: Interval end
        cfg: Business calendar

    Returns:
        Whole seconds, never negative
    """
    start = ensure_utc(start)
    end = ensure_utc(end)
    if end <= start:
        return 0

    tz = cfg.tz
    day = start.astimezone(tz).date()
    last_day = end.astimezone(tz).date()

    total = timedelta(0)
    while day <= last_day:
        if day.isoweekday() in cfg.business_days:
            opens, closes = business_window_utc(day, cfg)
            lo = max(start, opens)
            hi = min(end, closes)
            if hi > lo:
                total += hi - lo
        day += timedelta(days=1)

    return int(total.total_seconds())


def wall_seconds(start: datetime, end: datetime) -> int:
    """Elapsed seconds between two instants, clamped at zero."""
    return max(0, int((ensure_utc(end) - ensure_utc(start)).total_seconds()))


def is_business_time(ts: datetime, cfg: BusinessCalendarConfig) -> bool:
    """True when the instant falls inside business hours."""
    ts = ensure_utc(ts)
    day = ts.astimezone(cfg.tz).date()
    if day.isoweekday() not in cfg.business_days:
        return False
    opens, closes = business_window_utc(day, cfg)
    return opens <= ts < closes


def local_date(ts: datetime, cfg: BusinessCalendarConfig) -> date:
    """Calendar date of an instant in the business timezone."""
    return ensure_utc(ts).astimezone(cfg.tz).date()


def day_bounds_utc(day: date, cfg: BusinessCalendarConfig) -> tuple[datetime, datetime]:
    """Half-open [local midnight, next local midnight) of a day, in UTC."""
    tz = cfg.tz
    return _local_midnight_utc(day, tz), _local_midnight_utc(day + timedelta(days=1), tz)


def iso_week_of(day: date) -> tuple[int, int]:
    iso = day.isocalendar()
    return iso[0], iso[1]


def iso_week_bounds_utc(
    iso_year: int, iso_week: int, cfg: BusinessCalendarConfig
) -> tuple[datetime, datetime]:
    """Half-open [Monday 00:00, next Monday 00:00) local of an ISO week, in UTC."""
    monday = date.fromisocalendar(iso_year, iso_week, 1)
    tz = cfg.tz
    return _local_midnight_utc(monday, tz), _local_midnight_utc(monday + timedelta(days=7), tz)


def iter_days(from_date: date, to_date: date) -> Iterator[date]:
    """Every date from from_date to to_date inclusive."""
    day = from_date
    while day <= to_date:
        yield day
        day += timedelta(days=1)


def iso_weeks_between(from_date: date, to_date: date) -> list[tuple[int, int]]:
    """Distinct ISO weeks touched by a date range, in order."""
    weeks: list[tuple[int, int]] = []
    for day in iter_days(from_date, to_date):
        week = iso_week_of(day)
        if not weeks or weeks[-1] != week:
            weeks.append(week)
    return weeks


def week_label(iso_year: int, iso_week: int) -> str:
    return f"{iso_year}-W{iso_week:02d}"


def parse_week_label(label: str) -> tuple[int, int]:
    """
    Parse a 'YYYY-Www' label.

    Raises:
        ValueError: If the label is malformed or names a week the year lacks
    """
    match = _WEEK_LABEL.match(label.strip())
    if not match:
        raise ValueError(f"Invalid ISO week label: {label}")
    iso_year, iso_week = int(match.group(1)), int(match.group(2))
    date.fromisocalendar(iso_year, iso_week, 1)
    return iso_year, iso_week


def format_duration(seconds: int) -> str:
    """Render seconds as HH:MM (hours may exceed 24)."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    return f"{hours:02d}:{remainder // 60:02d}"


def format_duration_long(seconds: int) -> str:
    """Render seconds as HH:MM:SS."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
