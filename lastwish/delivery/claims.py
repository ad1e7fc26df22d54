"""
Delivery claim - the single mutual-exclusion point between overlapping runs.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from lastwish.delivery.repository import SubscriptionRepository
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter, log_event
from lastwish.utils.redaction import redact

logger = get_logger(__name__)


class ClaimManager:
    """
    Takes the per-subscription delivery claim.

    claim() returns True for exactly one caller per armed subscription; every
    other caller (including one in an overlapping scheduler run) gets False.
    ClaimUnavailableError propagates so the caller can skip the candidate
    until the next run.
    """

    def __init__(self, claim_fn: Callable[[str, datetime | None, bool], bool] | None = None):
        self._claim_fn = claim_fn or SubscriptionRepository.claim_if_unclaimed

    def claim(self, user_id: str, now: datetime | None = None, overdue_only: bool = False) -> bool:
        """overdue_only: refuse unless the stored row is still past its deadline at now"""
        claimed = self._claim_fn(user_id, now, overdue_only)

        if claimed:
            counter("last_wish.claim.won")
            log_event("last_wish.claimed", user=redact(user_id))
        else:
            counter("last_wish.claim.lost")
            logger.debug("Claim already taken for user %s", redact(user_id))
        return claimed
