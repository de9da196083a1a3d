"""
Unit tests for business calendar arithmetic.

Default calendar: Europe/Vienna, Monday to Friday, 09:00-17:00.
Vienna is UTC+1 until 2026-03-29 and UTC+2 from then until 2026-10-25.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from lifecycle.engine.business_calendar import (
    BusinessCalendarConfig,
    business_seconds,
    day_bounds_utc,
    format_duration,
    format_duration_long,
    is_business_time,
    iso_week_bounds_utc,
    iso_weeks_between,
    local_date,
    parse_week_label,
    wall_seconds,
    week_label,
)

UTC = timezone.utc


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


# ============================================================================
# Configuration
# ============================================================================


class TestBusinessCalendarConfig:
    """Validation of calendar settings."""

    def test_defaults(self):
        cfg = BusinessCalendarConfig()
        assert cfg.timezone == "Europe/Vienna"
        assert cfg.business_days == frozenset({1, 2, 3, 4, 5})
        assert (cfg.start_hour, cfg.end_hour) == (9, 17)

    def test_start_must_precede_end(self):
        with pytest.raises(ValidationError):
            BusinessCalendarConfig(start_hour=17, end_hour=9)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            BusinessCalendarConfig(timezone="Mars/Olympus_Mons")

    def test_weekday_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            BusinessCalendarConfig(business_days=frozenset({0, 1}))

    def test_describe_is_serializable(self):
        assert BusinessCalendarConfig().describe() == {
            "timezone": "Europe/Vienna",
            "business_days": [1, 2, 3, 4, 5],
            "start_hour": 9,
            "end_hour": 17,
        }


# ============================================================================
# business_seconds
# ============================================================================


class TestBusinessSeconds:
    """Apportioning elapsed time into business hours."""

    def test_weekend_interval_is_zero(self, calendar):
        # Sat 10:00 local -> Sun 18:00 local
        assert business_seconds(utc(2026, 3, 7, 9), utc(2026, 3, 8, 17), calendar) == 0

    def test_same_day_inside_hours(self, calendar):
        # Wed 10:00 -> 12:30 local
        assert business_seconds(utc(2026, 3, 4, 9), utc(2026, 3, 4, 11, 30), calendar) == 9000

    def test_clipped_to_business_window(self, calendar):
        # Wed 07:00 -> 19:00 local counts 09:00-17:00 only
        assert business_seconds(utc(2026, 3, 4, 6), utc(2026, 3, 4, 18), calendar) == 8 * 3600

    def test_friday_afternoon_to_monday_morning(self, calendar):
        # Fri 16:00 -> Mon 10:00 local: one hour each side of the weekend
        assert business_seconds(utc(2026, 3, 6, 15), utc(2026, 3, 9, 9), calendar) == 7200

    def test_end_before_start_is_zero(self, calendar):
        assert business_seconds(utc(2026, 3, 4, 12), utc(2026, 3, 4, 10), calendar) == 0

    def test_empty_interval_is_zero(self, calendar):
        assert business_seconds(utc(2026, 3, 4, 12), utc(2026, 3, 4, 12), calendar) == 0

    def test_naive_datetimes_read_as_utc(self, calendar):
        naive = business_seconds(datetime(2026, 3, 4, 9), datetime(2026, 3, 4, 10), calendar)
        assert naive == 3600

    def test_full_week_is_five_business_days(self, calendar):
        start, _ = iso_week_bounds_utc(2026, 10, calendar)
        end = start + timedelta(days=7)
        assert business_seconds(start, end, calendar) == 5 * 8 * 3600

    @pytest.mark.parametrize("start", [
        utc(2026, 3, 4, 9, 30),    # Wed 10:30 local
        utc(2026, 3, 7, 11),       # Sat noon
        utc(2026, 3, 26, 15, 45),  # Thu 16:45, week spans the spring change
        utc(2026, 10, 23, 7),      # Fri 09:00 summer time, spans the autumn change
    ])
    def test_full_week_from_any_weekday(self, calendar, start):
        end = start.astimezone(calendar.tz) + timedelta(days=7)
        assert business_seconds(start, end, calendar) == 5 * 8 * 3600

    def test_spring_forward_day_is_23_hours(self):
        cfg = BusinessCalendarConfig(
            business_days=frozenset(range(1, 8)), start_hour=0, end_hour=24
        )
        start, end = day_bounds_utc(date(2026, 3, 29), cfg)
        assert business_seconds(start, end, cfg) == 23 * 3600

    def test_fall_back_day_is_25_hours(self):
        cfg = BusinessCalendarConfig(
            business_days=frozenset(range(1, 8)), start_hour=0, end_hour=24
        )
        start, end = day_bounds_utc(date(2026, 10, 25), cfg)
        assert business_seconds(start, end, cfg) == 25 * 3600

    def test_summer_window_follows_local_time(self, calendar):
        # Wed 2026-06-03 09:00-17:00 local is 07:00-15:00 UTC
        assert business_seconds(utc(2026, 6, 3, 6), utc(2026, 6, 3, 8), calendar) == 3600
        assert business_seconds(utc(2026, 6, 3, 14), utc(2026, 6, 3, 16), calendar) == 3600

    def test_end_hour_24_counts_until_midnight(self):
        cfg = BusinessCalendarConfig(start_hour=20, end_hour=24)
        # Wed 22:00 local -> Thu 01:00 local
        assert business_seconds(utc(2026, 3, 4, 21), utc(2026, 3, 5, 0), cfg) == 7200


class TestCalendarHelpers:
    """Wall time, local dates and bucket boundaries."""

    def test_wall_seconds_clamped_at_zero(self):
        assert wall_seconds(utc(2026, 3, 4, 12), utc(2026, 3, 4, 11)) == 0
        assert wall_seconds(utc(2026, 3, 4, 11), utc(2026, 3, 4, 12)) == 3600

    def test_is_business_time(self, calendar):
        assert is_business_time(utc(2026, 3, 4, 8), calendar)  # 09:00 local
        assert not is_business_time(utc(2026, 3, 4, 16), calendar)  # 17:00 local
        assert not is_business_time(utc(2026, 3, 7, 10), calendar)  # Saturday

    def test_local_date_crosses_midnight(self, calendar):
        assert local_date(utc(2026, 3, 4, 23, 30), calendar) == date(2026, 3, 5)

    def test_day_bounds_are_local_midnights(self, calendar):
        assert day_bounds_utc(date(2026, 3, 4), calendar) == (
            utc(2026, 3, 3, 23),
            utc(2026, 3, 4, 23),
        )

    def test_iso_week_bounds(self, calendar):
        assert iso_week_bounds_utc(2026, 10, calendar) == (
            utc(2026, 3, 1, 23),
            utc(2026, 3, 8, 23),
        )

    def test_iso_weeks_between(self):
        assert iso_weeks_between(date(2026, 3, 1), date(2026, 3, 9)) == [
            (2026, 9),
            (2026, 10),
            (2026, 11),
        ]

    def test_week_label_round_trip(self):
        assert week_label(2026, 3) == "2026-W03"
        assert parse_week_label("2026-W03") == (2026, 3)

    @pytest.mark.parametrize("label", ["2026-10", "2026-W54", "W10-2026"])
    def test_parse_week_label_rejects_invalid(self, label):
        with pytest.raises(ValueError):
            parse_week_label(label)

    def test_format_duration(self):
        assert format_duration(3661) == "01:01"
        assert format_duration(90000) == "25:00"
        assert format_duration(-5) == "00:00"

    def test_format_duration_long(self):
        assert format_duration_long(3661) == "01:01:01"
