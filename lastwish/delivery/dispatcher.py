"""
Delivery dispatch - fan-out of one digest per recipient.

Each recipient is rendered and sent in its own task on a bounded thread pool;
a failure is confined to that recipient's Outcome. Outcomes come back in
recipient order regardless of completion order.
"""

from __future__ import annotations

import concurrent.futures
from datetime import datetime

from lastwish.config import DISPATCH_MAX_WORKERS
from lastwish.delivery.errors import MailSendError
from lastwish.delivery.ledger import DeliveryLedger
from lastwish.delivery.mailer import MailChannel
from lastwish.delivery.models import (
    FinancialSnapshot,
    Outcome,
    Owner,
    Recipient,
    Subscription,
    utc_now,
)
from lastwish.delivery.renderer import DigestRenderer
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter, log_event, time_block
from lastwish.utils.redaction import mask_email, redact

logger = get_logger(__name__)


class DeliveryDispatcher:
    """Renders, sends, and records one digest per recipient."""

    def __init__(
        self,
        channel: MailChannel,
        ledger: DeliveryLedger | None = None,
        renderer: DigestRenderer | None = None,
        max_workers: int = DISPATCH_MAX_WORKERS,
    ):
        self.channel = channel
        self.ledger = ledger or DeliveryLedger()
        self.renderer = renderer or DigestRenderer()
        self.max_workers = max_workers

    def _deliver_one(
        self,
        subscription: Subscription,
        owner: Owner,
        recipient: Recipient,
        snapshot: FinancialSnapshot,
        test_mode: bool,
        sent_at: datetime,
    ) -> Outcome:
        payload = None
        try:
            digest = self.renderer.render(
                owner, recipient, snapshot, subscription, test_mode=test_mode, sent_at=sent_at
            )
            payload = digest.payload
            message_id = self.channel.send(
                recipient.email,
                digest.subject,
                digest.html,
                digest.text,
                digest.attachments,
            )
            outcome = Outcome(
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                success=True,
                message_id=message_id,
            )
        except MailSendError as e:
            outcome = Outcome(
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                success=False,
                error=str(e),
            )
        except Exception as e:
            # Rendering bugs and unexpected transport errors stay with this recipient
            logger.exception("Unexpected error delivering to %s", mask_email(recipient.email))
            outcome = Outcome(
                recipient_email=recipient.email,
                recipient_name=recipient.name,
                success=False,
                error=f"{type(e).__name__}: {e}",
            )

        self.ledger.record(
            subscription.user_id,
            outcome,
            payload=payload if outcome.success else None,
            test_mode=test_mode,
        )
        counter("last_wish.dispatch.sent" if outcome.success else "last_wish.dispatch.failed")
        log_event(
            "last_wish.dispatch.outcome",
            user=redact(subscription.user_id),
            recipient=mask_email(recipient.email),
            success=outcome.success,
            test_mode=test_mode,
        )
        return outcome

    def dispatch(
        self,
        subscription: Subscription,
        owner: Owner,
        snapshot: FinancialSnapshot,
        test_mode: bool = False,
    ) -> list[Outcome]:
        """
        Deliver to every recipient independently.

        Args:
            subscription: Source of recipients and the personal message
            owner: Account owner named in the digest
            snapshot: Already filtered snapshot
            test_mode: Marks digests and ledger rows as test deliveries

        Returns:
            One Outcome per recipient, in recipient order
        """
        recipients = list(subscription.recipients)
        if not recipients:
            return []

        sent_at = utc_now()
        outcomes_with_idx: list[tuple[int, Outcome]] = []

        with time_block("last_wish.dispatch"):
            workers = max(1, min(self.max_workers, len(recipients)))
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
                future_to_idx = {
                    executor.submit(
                        self._deliver_one,
                        subscription,
                        owner,
                        recipient,
                        snapshot,
                        test_mode,
                        sent_at,
                    ): idx
                    for idx, recipient in enumerate(recipients)
                }

                for future in concurrent.futures.as_completed(future_to_idx):
                    idx = future_to_idx[future]
                    outcomes_with_idx.append((idx, future.result()))

        # Restore recipient order
        outcomes_with_idx.sort(key=lambda x: x[0])
        outcomes = [outcome for _, outcome in outcomes_with_idx]

        logger.info(
            "Dispatched Last Wish for user %s: %d sent, %d failed",
            redact(subscription.user_id),
            sum(1 for o in outcomes if o.success),
            sum(1 for o in outcomes if not o.success),
        )
        return outcomes
