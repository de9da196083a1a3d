#!/usr/bin/env python3
"""
Run one closure-count reconciliation pass against the ticketing provider.

Requires TICKETING_API_TOKEN. The pass takes the same job lock as the
scheduled runs, so it exits with status 2 when another run is in flight.

Usage:
    python scripts/sync_closure_counts.py --cadence short
    python scripts/sync_closure_counts.py --cadence long
    python scripts/sync_closure_counts.py --from 2026-02-01 --to 2026-02-28
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from lifecycle.engine.reconciler import ReconciliationError
from lifecycle.models.enums import ReconcileCadence, RunStatus
from lifecycle.services import get_reconciler
from lifecycle.utils.logging import configure_logging, get_logger
from lifecycle.utils.timeutils import parse_date

logger = get_logger(__name__)


async def run(args) -> dict:
    reconciler = get_reconciler()
    if args.from_date and args.to_date:
        return await reconciler.reconcile_range(args.from_date, args.to_date, ReconcileCadence.MANUAL)
    if args.cadence == "long":
        return await reconciler.reconcile_trailing()
    return await reconciler.reconcile_today()


def main():
    """Main entry point for a manual reconciliation pass."""
    parser = argparse.ArgumentParser(description="Reconcile closure counts with the ticketing provider")
    parser.add_argument(
        "--cadence",
        choices=["short", "long"],
        default="short",
        help="short: today only; long: trailing lookback window (default: short)",
    )
    parser.add_argument("--from", dest="from_date", type=parse_date, help="First date (YYYY-MM-DD)")
    parser.add_argument("--to", dest="to_date", type=parse_date, help="Last date (YYYY-MM-DD)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    if bool(args.from_date) != bool(args.to_date):
        parser.error("--from and --to must be given together")

    configure_logging("DEBUG" if args.verbose else None)

    try:
        summary = asyncio.run(run(args))
    except (ReconciliationError, ValueError) as e:
        logger.error("manual_reconciliation_failed", error=str(e))
        print(f"\nReconciliation failed: {e}\n")
        sys.exit(1)

    if summary["status"] == RunStatus.SKIPPED.value:
        print("\nAnother reconciliation run is in progress; nothing done.\n")
        sys.exit(2)

    print(
        f"\nRun {summary['run_id']} {summary['status']}: "
        f"{summary['from_date']}..{summary['to_date']}, "
        f"{summary['tickets_seen']} tickets, {summary['rows_written']} rows written, "
        f"{summary['windows_failed']}/{summary['windows_total']} windows failed\n"
    )


if __name__ == "__main__":
    main()
