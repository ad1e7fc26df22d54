"""
Overdue detection.

Pure functions over subscription rows: no database access, no clock reads
(callers pass `now`). Malformed rows are reported as data-quality warnings,
never raised.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from lastwish.delivery.models import (
    DataQualityWarning,
    DetectionResult,
    Subscription,
    ensure_utc,
)
from lastwish.observability.logging import get_logger
from lastwish.utils.redaction import redact

logger = get_logger(__name__)


def deadline(subscription: Subscription) -> datetime | None:
    """last_check_in + interval, or None if the owner never checked in."""
    return subscription.deadline


def is_overdue(subscription: Subscription, now: datetime) -> bool:
    """
    True when the subscription is eligible and strictly past its deadline.

    A subscription exactly at its deadline is not overdue.
    """
    if not subscription.is_eligible():
        return False
    due = subscription.deadline
    if due is None:
        return False
    return ensure_utc(now) > due


def time_remaining(subscription: Subscription, now: datetime) -> timedelta | None:
    """Time left until the deadline (negative once passed)."""
    due = subscription.deadline
    if due is None:
        return None
    return due - ensure_utc(now)


def overdue_by(subscription: Subscription, now: datetime) -> timedelta:
    """How far past the deadline the subscription is (zero if not yet due)."""
    remaining = time_remaining(subscription, now)
    if remaining is None or remaining >= timedelta(0):
        return timedelta(0)
    return -remaining


def _parse(row: Mapping[str, Any] | Subscription) -> Subscription:
    if isinstance(row, Subscription):
        return row
    return Subscription.from_db_row(row)


def find_overdue(now: datetime, rows: Iterable[Mapping[str, Any] | Subscription]) -> DetectionResult:
    """
    Select overdue subscriptions from raw settings rows.

    Args:
        now: Reference time (naive values are treated as UTC)
        rows: Settings rows (dicts) or already-parsed Subscriptions

    Returns:
        DetectionResult with the overdue subscriptions in input order and one
        warning per skipped row
    """
    now = ensure_utc(now)
    result = DetectionResult()

    for row in rows:
        result.scanned += 1
        try:
            subscription = _parse(row)
        except (ValidationError, ValueError, KeyError, TypeError) as e:
            user_id = row.get("user_id") if isinstance(row, Mapping) else None
            reason = f"{type(e).__name__}: {str(e).splitlines()[0] if str(e) else 'malformed row'}"
            logger.warning("Skipping malformed subscription %s: %s", redact(user_id), reason)
            result.warnings.append(DataQualityWarning(user_id=user_id, reason=reason))
            continue

        if is_overdue(subscription, now):
            result.overdue.append(subscription)

    if result.overdue or result.warnings:
        logger.info(
            "Overdue scan: %d scanned, %d overdue, %d skipped",
            result.scanned,
            len(result.overdue),
            len(result.warnings),
        )
    return result
