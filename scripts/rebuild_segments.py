#!/usr/bin/env python3
"""
Rebuild status segments from the event store.

Rebuilding is idempotent: unchanged segments are not written. Use it after a
failed post-ingest rebuild, or to re-derive every ticket.

Usage:
    python scripts/rebuild_segments.py --ticket T-1042
    python scripts/rebuild_segments.py --all
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from lifecycle.services import get_segment_builder
from lifecycle.utils.logging import configure_logging


def main():
    """Main entry point for segment rebuilds."""
    parser = argparse.ArgumentParser(description="Rebuild ticket status segments")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--ticket", action="append", help="Ticket id (repeatable)")
    group.add_argument("--all", action="store_true", help="Rebuild every ticket with events")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else None)

    builder = get_segment_builder()
    summary = builder.rebuild_many(None if args.all else args.ticket)

    print(
        f"\n  Tickets: {summary['tickets']}  rebuilt: {summary['rebuilt']}  "
        f"writes: {summary['writes']}  failed: {len(summary['failed'])}"
    )
    for ticket_id, error in zip(summary["failed"], summary["errors"]):
        print(f"    - {ticket_id}: {error}")

    if summary["failed"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
