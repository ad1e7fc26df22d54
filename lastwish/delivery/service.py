"""
Last Wish Service - orchestration of the delivery pipeline.

Orchestrates between:
- SubscriptionRepository (settings, check-ins, claims)
- Overdue detector (pure scan over settings rows)
- DataAggregator + filter_snapshot (what gets shared)
- DeliveryDispatcher (render, send, record per recipient)
- DeliveryLedger (history for the status view)
"""

from __future__ import annotations

import concurrent.futures
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from lastwish.config import PIPELINE_MAX_WORKERS, PIPELINE_USER_TIMEOUT_SECONDS
from lastwish.delivery.aggregator import DataAggregator
from lastwish.delivery.claims import ClaimManager
from lastwish.delivery.detector import find_overdue, is_overdue, overdue_by
from lastwish.delivery.dispatcher import DeliveryDispatcher
from lastwish.delivery.errors import (
    ClaimConflictError,
    ClaimUnavailableError,
    NoRecipientsError,
    ScanError,
    SubscriptionNotFoundError,
)
from lastwish.delivery.filters import filter_snapshot
from lastwish.delivery.ledger import DeliveryLedger
from lastwish.delivery.mailer import MailChannel, SMTPMailChannel
from lastwish.delivery.models import (
    Outcome,
    Owner,
    RunSummary,
    Subscription,
    ensure_utc,
    utc_now,
)
from lastwish.delivery.repository import FinancialDataSource, SubscriptionRepository
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter, log_event, time_block
from lastwish.utils.redaction import redact

logger = get_logger(__name__)


class CandidateStatus(str, Enum):
    DELIVERED = "delivered"
    CLAIM_CONFLICT = "claim_conflict"
    CLAIM_ERROR = "claim_error"
    NO_RECIPIENTS = "no_recipients"


@dataclass
class CandidateResult:
    """What happened to one overdue subscription within a run."""

    user_id: str
    status: CandidateStatus
    outcomes: list[Outcome] = field(default_factory=list)


class LastWishService:
    """
    Service layer for Last Wish delivery.

    Handles the scheduled overdue scan, manual deliveries, check-ins, and the
    status view. Collaborators are injectable for tests.
    """

    def __init__(
        self,
        repository: type[SubscriptionRepository] | SubscriptionRepository = SubscriptionRepository,
        data_source: type[FinancialDataSource] | FinancialDataSource = FinancialDataSource,
        channel: MailChannel | None = None,
        aggregator: DataAggregator | None = None,
        claims: ClaimManager | None = None,
        ledger: DeliveryLedger | None = None,
        dispatcher: DeliveryDispatcher | None = None,
        max_workers: int = PIPELINE_MAX_WORKERS,
        user_timeout: float = PIPELINE_USER_TIMEOUT_SECONDS,
    ):
        self.repository = repository
        self.data_source = data_source
        self.channel = channel or SMTPMailChannel()
        self.aggregator = aggregator or DataAggregator(data_source.fetch)
        self.claims = claims or ClaimManager(repository.claim_if_unclaimed)
        self.ledger = ledger or DeliveryLedger()
        self.dispatcher = dispatcher or DeliveryDispatcher(self.channel, ledger=self.ledger)
        self.max_workers = max_workers
        self.user_timeout = user_timeout

    # ------------------------------------------------------------------
    # Scheduled run
    # ------------------------------------------------------------------

    def run_scheduled(self, now: datetime | None = None) -> RunSummary:
        """
        One scheduler invocation: scan, then claim and deliver each overdue
        subscription on a bounded worker pool.

        Safe to run concurrently with itself; the claim decides which run
        delivers each subscription.

        Returns:
            RunSummary with per-run counts

        Raises:
            ScanError: If the subscription store cannot be read
        """
        now = ensure_utc(now) if now else utc_now()
        summary = RunSummary(timestamp=now)

        try:
            rows = self.repository.list_candidate_rows()
        except (sqlite3.Error, RuntimeError, FileNotFoundError) as e:
            logger.error("Overdue scan failed: %s", e)
            counter("last_wish.scan.failed")
            raise ScanError(f"Subscription store unavailable: {type(e).__name__}") from e

        detection = find_overdue(now, rows)
        summary.data_quality_warnings = len(detection.warnings)

        if not detection.overdue:
            log_event("last_wish.run.complete", scanned=detection.scanned, overdue=0)
            return summary

        with time_block("last_wish.run"):
            executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=max(1, min(self.max_workers, len(detection.overdue)))
            )
            try:
                future_to_user = {
                    executor.submit(self._process_candidate, subscription, now): subscription.user_id
                    for subscription in detection.overdue
                }

                for future, user_id in future_to_user.items():
                    try:
                        result = future.result(timeout=self.user_timeout)
                    except concurrent.futures.TimeoutError:
                        logger.error("Pipeline for user %s timed out", redact(user_id))
                        counter("last_wish.run.user_timeout")
                        summary.pipeline_errors += 1
                        continue
                    except Exception:
                        logger.exception("Pipeline for user %s failed", redact(user_id))
                        counter("last_wish.run.user_failed")
                        summary.pipeline_errors += 1
                        continue

                    self._tally(summary, result)
            finally:
                # A timed-out worker keeps running; don't block the response on it
                executor.shutdown(wait=False, cancel_futures=True)

        log_event(
            "last_wish.run.complete",
            scanned=detection.scanned,
            overdue=len(detection.overdue),
            processed=summary.processed_count,
            sent=summary.emails_sent,
            failed=summary.emails_failed,
            conflicts=summary.claim_conflicts,
        )
        return summary

    @staticmethod
    def _tally(summary: RunSummary, result: CandidateResult) -> None:
        if result.status == CandidateStatus.DELIVERED:
            summary.processed_count += 1
            summary.emails_sent += sum(1 for o in result.outcomes if o.success)
            summary.emails_failed += sum(1 for o in result.outcomes if not o.success)
        elif result.status == CandidateStatus.CLAIM_CONFLICT:
            summary.claim_conflicts += 1
        elif result.status == CandidateStatus.CLAIM_ERROR:
            summary.claim_errors += 1
        elif result.status == CandidateStatus.NO_RECIPIENTS:
            summary.skipped_no_recipients += 1

    def _process_candidate(self, subscription: Subscription, now: datetime) -> CandidateResult:
        user_id = subscription.user_id

        if not subscription.recipients:
            logger.warning("Overdue subscription %s has no recipients, skipping", redact(user_id))
            return CandidateResult(user_id, CandidateStatus.NO_RECIPIENTS)

        try:
            claimed = self.claims.claim(user_id, now, overdue_only=True)
        except ClaimUnavailableError:
            counter("last_wish.claim.unavailable")
            return CandidateResult(user_id, CandidateStatus.CLAIM_ERROR)

        if not claimed:
            return CandidateResult(user_id, CandidateStatus.CLAIM_CONFLICT)

        # Settings may have been edited since the scan; deliver what is stored now
        current = self.repository.get(user_id)
        if current is None or not current.recipients:
            logger.warning("Claimed subscription %s has no recipients left", redact(user_id))
            return CandidateResult(user_id, CandidateStatus.NO_RECIPIENTS)

        outcomes = self._deliver(current, test_mode=False)
        return CandidateResult(user_id, CandidateStatus.DELIVERED, outcomes)

    def _load_owner(self, user_id: str) -> Owner:
        try:
            return self.data_source.get_owner(user_id)
        except (sqlite3.Error, RuntimeError) as e:
            logger.warning("Owner profile unavailable for %s: %s", redact(user_id), e)
            return Owner(user_id=user_id)

    def _deliver(self, subscription: Subscription, test_mode: bool) -> list[Outcome]:
        """aggregate -> filter -> render/send/record per recipient"""
        owner = self._load_owner(subscription.user_id)
        snapshot = self.aggregator.gather(subscription.user_id)
        filtered = filter_snapshot(snapshot, subscription.include_data)
        return self.dispatcher.dispatch(subscription, owner, filtered, test_mode=test_mode)

    # ------------------------------------------------------------------
    # Manual trigger / check-in / status
    # ------------------------------------------------------------------

    def deliver_now(self, user_id: str, test_mode: bool = False) -> list[Outcome]:
        """
        Deliver immediately, skipping the overdue check.

        A real delivery takes the claim first, so it can't race a scheduled
        run. Test deliveries never claim and are marked in the ledger.

        Raises:
            SubscriptionNotFoundError: No settings for the user
            NoRecipientsError: Subscription has no recipients
            ClaimConflictError: Claim already taken (or subscription disabled)
            ClaimUnavailableError: Claim could not be attempted
        """
        subscription = self.repository.get(user_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"No Last Wish settings for user {user_id}")

        if not subscription.recipients:
            raise NoRecipientsError("No recipients configured")

        if not test_mode:
            if not self.claims.claim(user_id):
                raise ClaimConflictError("Delivery already claimed or Last Wish is not active")
            subscription = self.repository.get(user_id) or subscription

        logger.info(
            "Manual Last Wish delivery for user %s (test_mode=%s)", redact(user_id), test_mode
        )
        return self._deliver(subscription, test_mode=test_mode)

    def check_in(self, user_id: str, now: datetime | None = None) -> Subscription:
        """
        Record that the owner is alive and well; re-arms delivery.

        Raises:
            SubscriptionNotFoundError: No settings for the user
        """
        subscription = self.repository.check_in(user_id, now)
        if subscription is None:
            raise SubscriptionNotFoundError(f"No Last Wish settings for user {user_id}")
        counter("last_wish.check_in")
        return subscription

    def status(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        """
        Diagnostic view of one subscription.

        Raises:
            SubscriptionNotFoundError: No settings for the user
        """
        now = ensure_utc(now) if now else utc_now()
        subscription = self.repository.get(user_id)
        if subscription is None:
            raise SubscriptionNotFoundError(f"No Last Wish settings for user {user_id}")

        deadline = subscription.deadline
        hours_overdue = overdue_by(subscription, now).total_seconds() / 3600
        history = self.ledger.history(user_id)

        return {
            "userId": subscription.user_id,
            "isEnabled": subscription.is_enabled,
            "isActive": subscription.is_active,
            "checkInFrequency": subscription.check_in_interval.amount,
            "checkInUnit": subscription.check_in_interval.unit.value,
            "lastCheckIn": (
                subscription.last_check_in.isoformat() if subscription.last_check_in else None
            ),
            "deadline": deadline.isoformat() if deadline else None,
            "isOverdue": is_overdue(subscription, now),
            "hoursOverdue": round(hours_overdue, 2),
            "deliveryClaimed": subscription.delivery_claimed,
            "deliveryClaimedAt": (
                subscription.delivery_claimed_at.isoformat()
                if subscription.delivery_claimed_at
                else None
            ),
            "recipientCount": len(subscription.recipients),
            "includeData": sorted(c.value for c in subscription.include_data),
            "hasMessage": bool(subscription.message),
            "recentDeliveries": [
                {
                    "recipientEmail": entry.recipient_email,
                    "status": entry.status.value,
                    "error": entry.error_message,
                    "messageId": entry.message_id,
                    "testMode": entry.test_mode,
                    "sentAt": entry.sent_at.isoformat(),
                }
                for entry in history
            ],
            "smtp": self.channel.get_config_status(),
        }


_service: LastWishService | None = None


def get_last_wish_service() -> LastWishService:
    """Get or create singleton LastWishService instance."""
    global _service
    if _service is None:
        _service = LastWishService()
    return _service


def reset_last_wish_service() -> None:
    """Forget the singleton (tests swap in their own collaborators)."""
    global _service
    _service = None
