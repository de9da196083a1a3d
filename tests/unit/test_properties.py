"""
Property-based tests using Hypothesis.

These check the invariants the lifecycle pipeline relies on: business time
never exceeds wall time and is additive, folded segments are contiguous with
a single open tail, rebuild plans converge without overlapping segments, and
closure-count diffs converge after one application.
"""

from datetime import date, datetime, timedelta, timezone

import hypothesis.strategies as st
from hypothesis import given, settings

from lifecycle.engine.aggregation import _rounded_mean
from lifecycle.engine.business_calendar import (
    BusinessCalendarConfig,
    business_seconds,
    wall_seconds,
)
from lifecycle.engine.reconciler import diff_closure_counts
from lifecycle.engine.segment_builder import fold_events, plan_segment_changes
from tests.conftest import FIXED_NOW, make_event

UTC = timezone.utc
CALENDAR = BusinessCalendarConfig()
EPOCH = datetime(2026, 1, 1, tzinfo=UTC)
STATUSES = ["open", "in_progress", "pending", "closed"]

# Whole-second instants across 2026, covering both DST transitions
instants = st.integers(min_value=0, max_value=365 * 86400).map(
    lambda s: EPOCH + timedelta(seconds=s)
)
durations = st.integers(min_value=0, max_value=21 * 86400)

event_lists = st.lists(
    st.tuples(st.integers(min_value=0, max_value=600), st.sampled_from(STATUSES)),
    max_size=12,
).map(
    lambda pairs: [
        make_event(status=status, occurred_at=FIXED_NOW - timedelta(hours=12) + timedelta(minutes=m))
        for m, status in sorted(pairs, key=lambda p: p[0])
    ]
)


# =============================================================================
# Business calendar
# =============================================================================


@given(start=instants, length=durations)
@settings(max_examples=100)
def test_prop_business_seconds_bounded_by_wall(start: datetime, length: int):
    """Business seconds lie in [0, wall seconds]."""
    end = start + timedelta(seconds=length)
    business = business_seconds(start, end, CALENDAR)

    assert 0 <= business <= wall_seconds(start, end)


@given(start=instants, first=durations, second=durations)
@settings(max_examples=100)
def test_prop_business_seconds_additive(start: datetime, first: int, second: int):
    """Splitting an interval at any point preserves total business time."""
    middle = start + timedelta(seconds=first)
    end = middle + timedelta(seconds=second)

    whole = business_seconds(start, end, CALENDAR)
    parts = business_seconds(start, middle, CALENDAR) + business_seconds(middle, end, CALENDAR)
    assert whole == parts


@given(start=instants, length=durations)
@settings(max_examples=50)
def test_prop_business_seconds_reversed_is_zero(start: datetime, length: int):
    end = start + timedelta(seconds=length)
    assert business_seconds(end, start, CALENDAR) == 0


@given(start=instants)
@settings(max_examples=100)
def test_prop_full_week_is_forty_business_hours(start: datetime):
    """Seven local days hold five 8-hour business days, from any start, across DST."""
    local_start = start.astimezone(CALENDAR.tz)
    end = local_start + timedelta(days=7)

    assert business_seconds(local_start, end, CALENDAR) == 5 * 8 * 3600


@given(values=st.lists(st.integers(min_value=0, max_value=10**7), min_size=1, max_size=50))
@settings(max_examples=100)
def test_prop_rounded_mean_within_range(values: list[int]):
    mean = _rounded_mean(sum(values), len(values))
    assert min(values) <= mean <= max(values)
    assert abs(mean - sum(values) / len(values)) <= 0.5


# =============================================================================
# Segment folding
# =============================================================================


@given(events=event_lists)
@settings(max_examples=100)
def test_prop_fold_segments_contiguous_single_open(events):
    """Segments chain end-to-start and only the last one is open."""
    segments = fold_events(events)

    if not events:
        assert segments == []
        return

    assert segments[-1].left_at is None
    assert all(s.left_at is not None for s in segments[:-1])
    for current, following in zip(segments, segments[1:]):
        assert current.left_at == following.entered_at
        assert current.entered_at <= current.left_at
        assert current.status != following.status


def apply_plan(existing: dict, plan: dict) -> None:
    for segment in plan["deletes"]:
        del existing[segment.key]
    for segment in plan["updates"] + plan["inserts"]:
        existing[segment.key] = segment


def assert_no_overlap(segments) -> None:
    # Zero-length segments share entered_at with their successor
    ordered = sorted(segments, key=lambda s: (s.entered_at, s.left_at is None, s.left_at or s.entered_at))
    assert sum(1 for seg in ordered if seg.left_at is None) <= 1
    for current, following in zip(ordered, ordered[1:]):
        assert current.left_at is not None, "open segment followed by another"
        assert current.left_at <= following.entered_at, "overlap"


@given(events=event_lists, stored=event_lists)
@settings(max_examples=100)
def test_prop_plan_converges_after_one_application(events, stored):
    """Applying a plan and planning again yields no further writes."""
    now = FIXED_NOW
    existing = {seg.key: seg for seg in fold_events(stored)}

    plan = plan_segment_changes(events, list(existing.values()), now)
    apply_plan(existing, plan)

    again = plan_segment_changes(events, list(existing.values()), now)
    assert again["inserts"] == []
    assert again["updates"] == []
    assert again["deletes"] == []
    assert_no_overlap(existing.values())


arrivals = st.lists(
    st.tuples(st.integers(min_value=0, max_value=120), st.sampled_from(STATUSES)),
    max_size=10,
)


@given(pairs=arrivals)
@settings(max_examples=100)
def test_prop_rebuild_after_each_arrival_never_overlaps(pairs):
    """Events arriving in any order leave exactly the fold of all events stored."""
    base = FIXED_NOW - timedelta(hours=6)
    received = []
    existing: dict = {}

    for minutes, status in pairs:
        received.append(make_event(status=status, occurred_at=base + timedelta(minutes=minutes)))
        # Stable sort keeps arrival order for equal occurred_at, like the event store
        ordered = sorted(received, key=lambda e: e.occurred_at)
        apply_plan(existing, plan_segment_changes(ordered, list(existing.values()), FIXED_NOW))
        assert_no_overlap(existing.values())

    expected = fold_events(sorted(received, key=lambda e: e.occurred_at))
    assert sorted(existing) == sorted(seg.key for seg in expected)


# =============================================================================
# Closure-count reconciliation
# =============================================================================


observations = st.dictionaries(
    keys=st.sampled_from(["u1", "u2", "u3", "unassigned"]),
    values=st.integers(min_value=1, max_value=40),
    max_size=4,
)


@given(first=observations, second=observations)
@settings(max_examples=100)
def test_prop_closure_diff_converges(first, second):
    """After writing a diff, stored counts equal the observation and re-diffing is empty."""
    day = date(2026, 3, 4)
    directory = {"u1": "Ada", "u2": "Grace", "u3": "Linus"}
    stored: dict = {}

    for observation in (first, second):
        changes = diff_closure_counts(
            [day], {day: observation}, {day: dict(stored)}, directory, "run", FIXED_NOW
        )
        for row in changes:
            stored[row.assignee_id] = row

        assert {k: v.count for k, v in stored.items() if v.count} == observation
        assert diff_closure_counts(
            [day], {day: observation}, {day: dict(stored)}, directory, "run", FIXED_NOW
        ) == []
