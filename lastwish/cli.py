"""
Command-line scheduler trigger (console script: lastwish-check).

Runs one overdue scan + delivery pass against the local database, for
hosts that schedule with system cron instead of calling the HTTP trigger.

Usage:
    lastwish-check              # deliver to every overdue subscription
    lastwish-check --dry-run    # only report what is overdue
    lastwish-check --json       # print the run summary as JSON
"""

from __future__ import annotations

import argparse
import json
import sqlite3
import sys

from lastwish.delivery.detector import find_overdue
from lastwish.delivery.errors import ScanError
from lastwish.delivery.models import utc_now
from lastwish.delivery.repository import SubscriptionRepository
from lastwish.infrastructure.database import init_database, reset_pool
from lastwish.observability.logging import get_logger
from lastwish.utils.redaction import redact

logger = get_logger(__name__)


def _dry_run() -> int:
    now = utc_now()
    try:
        rows = SubscriptionRepository.list_candidate_rows()
    except (sqlite3.Error, RuntimeError, FileNotFoundError) as e:
        raise ScanError(f"Subscription store unavailable: {type(e).__name__}") from e
    detection = find_overdue(now, rows)

    print(f"Scanned {detection.scanned} subscription(s) at {now.isoformat()}")
    print(f"Overdue: {len(detection.overdue)}")
    for subscription in detection.overdue:
        print(
            f"  {redact(subscription.user_id)}  deadline={subscription.deadline.isoformat()}  "
            f"recipients={len(subscription.recipients)}"
        )
    if detection.warnings:
        print(f"Skipped (data quality): {len(detection.warnings)}")
        for warning in detection.warnings:
            print(f"  {redact(warning.user_id)}  {warning.reason}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one Last Wish overdue check")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List overdue subscriptions without claiming or sending",
    )
    parser.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    args = parser.parse_args(argv)

    init_database()

    try:
        if args.dry_run:
            return _dry_run()

        from lastwish.delivery.service import get_last_wish_service

        summary = get_last_wish_service().run_scheduled()
    except ScanError as e:
        logger.error("Last Wish check failed: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        reset_pool()

    if args.json:
        print(json.dumps(summary.to_response(), indent=2))
    else:
        print(summary.message)
        if summary.claim_conflicts or summary.claim_errors or summary.pipeline_errors:
            print(
                f"Claim conflicts: {summary.claim_conflicts}, claim errors: "
                f"{summary.claim_errors}, pipeline errors: {summary.pipeline_errors}"
            )
    return 0


if __name__ == "__main__":
    sys.exit(main())
