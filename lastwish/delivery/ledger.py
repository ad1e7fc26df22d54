"""
Delivery ledger - append-only record of every send attempt.

One row per recipient per attempt in last_wish_deliveries. Rows are never
updated or deleted.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from lastwish.config import LEDGER_HISTORY_LIMIT
from lastwish.delivery.models import DeliveryLedgerEntry, DeliveryStatus, Outcome
from lastwish.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter
from lastwish.utils.redaction import mask_email, redact

logger = get_logger(__name__)


@retry_on_db_lock()
def _insert(entry: DeliveryLedgerEntry) -> None:
    with db_transaction() as conn:
        conn.execute(
            """
            INSERT INTO last_wish_deliveries (
                id, user_id, recipient_email, delivery_status, error_message,
                message_id, delivery_data, test_mode, sent_at
            ) VALUES (
                :id, :user_id, :recipient_email, :delivery_status, :error_message,
                :message_id, :delivery_data, :test_mode, :sent_at
            )
            """,
            entry.to_db_dict(),
        )


class DeliveryLedger:
    """Writes and reads delivery ledger rows."""

    def record(
        self,
        user_id: str,
        outcome: Outcome,
        payload: dict[str, Any] | None = None,
        test_mode: bool = False,
    ) -> DeliveryLedgerEntry | None:
        """
        Append one ledger row for an outcome.

        The payload is stored only for successful sends. Never raises: a
        failed insert is logged at CRITICAL and counted.

        Returns:
            The stored entry, or None if the insert failed
        """
        entry = DeliveryLedgerEntry(
            user_id=user_id,
            recipient_email=outcome.recipient_email,
            status=DeliveryStatus.SENT if outcome.success else DeliveryStatus.FAILED,
            error_message=None if outcome.success else outcome.error,
            message_id=outcome.message_id,
            delivery_data=payload if outcome.success else None,
            test_mode=test_mode,
        )

        try:
            _insert(entry)
        except (sqlite3.Error, RuntimeError, FileNotFoundError) as e:
            logger.critical(
                "Ledger write failed for user %s recipient %s (status=%s): %s",
                redact(user_id),
                mask_email(outcome.recipient_email),
                entry.status.value,
                e,
            )
            counter("last_wish.ledger.write_failed")
            return None

        counter(f"last_wish.ledger.{entry.status.value}")
        return entry

    def history(self, user_id: str, limit: int = LEDGER_HISTORY_LIMIT) -> list[DeliveryLedgerEntry]:
        """Most recent entries for a user, newest first."""
        with get_db_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM last_wish_deliveries
                WHERE user_id = ?
                ORDER BY sent_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            rows = cursor.fetchall()
        return [DeliveryLedgerEntry.from_db_row(dict(row)) for row in rows]
