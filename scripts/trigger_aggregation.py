#!/usr/bin/env python3
"""
Re-run ticket lifecycle aggregation for a date range.

Recomputes every daily bucket, or every ISO week touched, between --from and
--to (business-timezone dates, inclusive). Re-running a bucket overwrites its
rows, so the script is safe to repeat.

Usage:
    python scripts/trigger_aggregation.py --from 2026-03-01 --to 2026-03-31
    python scripts/trigger_aggregation.py --from 2026-01-01 --to 2026-03-31 --grouping week
    python scripts/trigger_aggregation.py --days 7 --grouping both
"""

import argparse
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from lifecycle.engine.business_calendar import local_date
from lifecycle.models.enums import Grouping
from lifecycle.services import get_aggregation_engine, get_calendar
from lifecycle.utils.logging import configure_logging, get_logger
from lifecycle.utils.timeutils import parse_date, utc_now

logger = get_logger(__name__)


def main():
    """Main entry point for manual aggregation."""
    parser = argparse.ArgumentParser(description="Re-run ticket lifecycle aggregation")
    parser.add_argument("--from", dest="from_date", type=parse_date, help="First date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="to_date", type=parse_date, help="Last date (YYYY-MM-DD)")
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Aggregate the last N days up to today instead of --from/--to",
    )
    parser.add_argument(
        "--grouping",
        choices=["day", "week", "both"],
        default="day",
        help="Bucket size (default: day)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else None)

    if args.days is not None:
        to_date = local_date(utc_now(), get_calendar())
        from_date = to_date - timedelta(days=max(args.days, 1) - 1)
    elif args.from_date and args.to_date:
        from_date, to_date = args.from_date, args.to_date
    else:
        parser.error("provide --from and --to, or --days")
    if from_date > to_date:
        parser.error("--from must not be after --to")

    groupings = [Grouping.DAY, Grouping.WEEK] if args.grouping == "both" else [Grouping(args.grouping)]
    engine = get_aggregation_engine()

    failed = 0
    for grouping in groupings:
        summary = engine.aggregate_range(from_date, to_date, grouping)
        failed += len(summary["failed"])
        print(
            f"  {grouping.value:>4}: {summary['succeeded']}/{summary['buckets']} buckets, "
            f"{summary['rows_written']} rows written"
        )
        for bucket, error in zip(summary["failed"], summary["errors"]):
            print(f"    - {bucket}: {error}")

    if failed:
        logger.error("manual_aggregation_incomplete", failed=failed)
        sys.exit(1)


if __name__ == "__main__":
    main()
