"""
Segment Builder - deterministic fold of a ticket's status events into segments.

Every new event triggers a rebuild of its ticket:

1. Every currently open segment is closed at "now". This compensates for a
   missed closing event; the fold below reopens the segment that is still
   current.
2. The ticket's events, ordered by occurred_at then arrival order, are walked.
   Event i spans occurred_at[i] to occurred_at[i+1] (open when i is last).
   A segment with the same (status, entered_at) has only its left_at
   corrected; otherwise a new segment is inserted.
3. A stored segment whose (status, entered_at) the fold no longer produces
   is deleted. This happens when a late event with the same status lands
   before a stored one and absorbs it into the running segment.

Folding rules:
- An event repeating the status of the previous kept event is not a status
  change and extends the running segment.
- An event whose (status, occurred_at) was already produced is skipped.

The plan is computed in memory and only differing rows are persisted, in one
transaction. Replaying an unchanged event set therefore writes nothing, and
the stored segment set always equals the fold of the stored events.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from lifecycle.engine.locks import KeyedLock
from lifecycle.models.events import StatusEvent, StatusSegment
from lifecycle.storage.base import StorageBackend, StorageError
from lifecycle.utils.timeutils import utc_now

logger = structlog.get_logger()


class SegmentRebuildError(Exception):
    """Raised when a ticket's segments could not be rebuilt."""

    pass


def fold_events(events: list[StatusEvent]) -> list[StatusSegment]:
    """
    Derive the segments a ticket's ordered events describe.

    Args:
        events: Events of one ticket ordered by (occurred_at, arrival order)

    Returns:
        Contiguous segments; only the last is open
    """
    kept: list[StatusEvent] = []
    seen: set[tuple[str, datetime]] = set()
    for event in events:
        if kept and kept[-1].status == event.status:
            continue
        key = (event.status, event.occurred_at)
        if key in seen:
            continue
        seen.add(key)
        kept.append(event)

    segments = []
    for i, event in enumerate(kept):
        left_at = kept[i + 1].occurred_at if i + 1 < len(kept) else None
        segments.append(
            StatusSegment(
                ticket_id=event.ticket_id,
                status=event.status,
                entered_at=event.occurred_at,
                left_at=left_at,
            )
        )
    return segments


def plan_segment_changes(
    events: list[StatusEvent],
    existing: list[StatusSegment],
    now: datetime,
) -> dict:
    """
    Compute the writes that bring stored segments in line with the events.

    Returns:
        {
            "inserts": [StatusSegment],   # segments not stored yet
            "updates": [StatusSegment],   # stored segments with a new left_at
            "deletes": [StatusSegment],   # stored segments the fold no longer produces
            "closed_orphans": int,        # deleted segments that were still open
            "unchanged": int,
        }
    """
    stored = {seg.key: seg for seg in existing}
    # Open segments are provisionally closed at now; the fold restores or deletes each one
    working = {key: (now if seg.left_at is None else seg.left_at) for key, seg in stored.items()}

    inserts = []
    produced = set()
    for segment in fold_events(events):
        produced.add(segment.key)
        if segment.key in working:
            working[segment.key] = segment.left_at
        else:
            inserts.append(segment)

    updates = []
    deletes = []
    closed_orphans = 0
    for key, left_at in working.items():
        previous = stored[key]
        if key not in produced:
            deletes.append(previous)
            if previous.is_open:
                closed_orphans += 1
            continue
        if left_at == previous.left_at:
            continue
        updates.append(previous.model_copy(update={"left_at": left_at}))

    return {
        "inserts": inserts,
        "updates": updates,
        "deletes": deletes,
        "closed_orphans": closed_orphans,
        "unchanged": len(stored) - len(updates) - len(deletes),
    }


class SegmentBuilder:
    """
    Rebuilds status segments from the event store.

    Rebuilds of the same ticket are serialized; different tickets proceed
    independently.

    Attributes:
        storage: Storage backend holding events and segments
    """

    def __init__(
        self,
        storage: StorageBackend,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self._clock = clock or utc_now
        self._locks = KeyedLock()

    def rebuild(self, ticket_id: str) -> dict:
        """
        Rebuild one ticket's segments.

        Returns:
            {
                "ticket_id": str,
                "events": int,
                "inserted": int,
                "corrected": int,
                "deleted": int,
                "closed_orphans": int,
                "unchanged": int,
                "writes": int,
            }

        Raises:
            SegmentRebuildError: If events or segments cannot be read or written
        """
        with self._locks.hold(ticket_id):
            try:
                events = self.storage.read_status_events(ticket_id)
                existing = self.storage.read_segments(ticket_id)
                plan = plan_segment_changes(events, existing, self._clock())
                writes = self.storage.apply_segment_changes(
                    ticket_id, plan["inserts"], plan["updates"], deletes=plan["deletes"]
                )
            except StorageError as e:
                logger.error("segment_rebuild_failed", ticket_id=ticket_id, error=str(e))
                raise SegmentRebuildError(f"Failed to rebuild segments of {ticket_id}: {e}") from e

        result = {
            "ticket_id": ticket_id,
            "events": len(events),
            "inserted": len(plan["inserts"]),
            "corrected": len(plan["updates"]),
            "deleted": len(plan["deletes"]),
            "closed_orphans": plan["closed_orphans"],
            "unchanged": plan["unchanged"],
            "writes": writes,
        }
        if writes:
            logger.info("segment_rebuilt", **result)
        else:
            logger.debug("segment_rebuild_noop", ticket_id=ticket_id, events=len(events))
        return result

    def rebuild_many(self, ticket_ids: Optional[list[str]] = None) -> dict:
        """
        Rebuild several tickets (all known tickets when None), isolating failures.

        Returns:
            {"tickets": int, "rebuilt": int, "writes": int, "failed": [ticket_id], "errors": [str]}
        """
        if ticket_ids is None:
            ticket_ids = self.storage.list_ticket_ids()

        summary = {"tickets": len(ticket_ids), "rebuilt": 0, "writes": 0, "failed": [], "errors": []}
        for ticket_id in ticket_ids:
            try:
                result = self.rebuild(ticket_id)
            except SegmentRebuildError as e:
                summary["failed"].append(ticket_id)
                summary["errors"].append(str(e))
                continue
            summary["rebuilt"] += 1
            summary["writes"] += result["writes"]

        logger.info(
            "segment_rebuild_batch_completed",
            tickets=summary["tickets"],
            rebuilt=summary["rebuilt"],
            failed=len(summary["failed"]),
            writes=summary["writes"],
        )
        return summary
