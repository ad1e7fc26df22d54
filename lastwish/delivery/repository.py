"""
Last Wish repositories - settings CRUD, the delivery claim, and the read-only
financial data queries.

Follows the database patterns in lastwish/infrastructure/database.py.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any

from lastwish.config import MAX_RECIPIENTS
from lastwish.delivery.detector import is_overdue
from lastwish.delivery.errors import ClaimUnavailableError
from lastwish.delivery.models import DataCategory, Owner, Subscription, utc_now
from lastwish.infrastructure.database import (
    db_transaction,
    get_db_connection,
    is_lock_error,
    retry_on_db_lock,
)
from lastwish.observability.logging import get_logger
from lastwish.utils.redaction import redact
from lastwish.utils.validators import (
    ValidationError,
    validate_email_address,
    validate_personal_message,
)

logger = get_logger(__name__)


class SubscriptionRepository:
    """
    Repository for last_wish_settings rows.

    All methods use connection pooling and proper transaction handling.
    """

    @staticmethod
    def list_candidate_rows() -> list[dict[str, Any]]:
        """
        Raw rows that could be overdue (enabled, active, unclaimed).

        Rows are returned unparsed so the detector can skip malformed ones
        individually.

        Raises:
            sqlite3.Error / FileNotFoundError / RuntimeError if the store is unreachable
        """
        with get_db_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM last_wish_settings
                WHERE is_enabled = 1 AND is_active = 1 AND delivery_claimed = 0
                """
            )
            return [dict(row) for row in cursor.fetchall()]

    @staticmethod
    def get(user_id: str) -> Subscription | None:
        """
        Get a user's subscription.

        Returns:
            Subscription if found, None otherwise
        """
        with get_db_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM last_wish_settings WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()

        if not row:
            return None
        return Subscription.from_db_row(dict(row))

    @staticmethod
    @retry_on_db_lock()
    def save(subscription: Subscription) -> Subscription:
        """
        Create or update a user's settings.

        The claim columns are written on insert only; an update never touches
        them (only check_in resets a claim).

        Raises:
            ValidationError: too many recipients, bad address, or oversized message
        """
        if len(subscription.recipients) > MAX_RECIPIENTS:
            raise ValidationError(f"At most {MAX_RECIPIENTS} recipients are allowed")

        recipients = [
            r.model_copy(update={"email": validate_email_address(r.email)})
            for r in subscription.recipients
        ]
        subscription = subscription.model_copy(
            update={
                "recipients": recipients,
                "message": validate_personal_message(subscription.message),
                "updated_at": utc_now(),
            }
        )
        db_dict = subscription.to_db_dict()

        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO last_wish_settings (
                    user_id, is_enabled, is_active, check_in_frequency, check_in_unit,
                    last_check_in, recipients, include_data, message,
                    delivery_claimed, delivery_claimed_at, created_at, updated_at
                ) VALUES (
                    :user_id, :is_enabled, :is_active, :check_in_frequency, :check_in_unit,
                    :last_check_in, :recipients, :include_data, :message,
                    :delivery_claimed, :delivery_claimed_at, :created_at, :updated_at
                )
                ON CONFLICT(user_id) DO UPDATE SET
                    is_enabled = excluded.is_enabled,
                    is_active = excluded.is_active,
                    check_in_frequency = excluded.check_in_frequency,
                    check_in_unit = excluded.check_in_unit,
                    last_check_in = excluded.last_check_in,
                    recipients = excluded.recipients,
                    include_data = excluded.include_data,
                    message = excluded.message,
                    updated_at = excluded.updated_at
                """,
                db_dict,
            )

        logger.info("Saved Last Wish settings for user %s", redact(subscription.user_id))
        return SubscriptionRepository.get(subscription.user_id) or subscription

    @staticmethod
    @retry_on_db_lock()
    def check_in(user_id: str, now: datetime | None = None) -> Subscription | None:
        """
        Record a check-in: refresh last_check_in and re-arm delivery.

        Returns:
            Updated Subscription, or None if the user has no settings

        Side Effects:
            - Updates last_check_in and clears delivery_claimed
        """
        now = now or utc_now()

        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE last_wish_settings
                SET last_check_in = ?, delivery_claimed = 0, delivery_claimed_at = NULL,
                    updated_at = ?
                WHERE user_id = ?
                """,
                (now.isoformat(), now.isoformat(), user_id),
            )
            if cursor.rowcount == 0:
                return None

        logger.info("Check-in recorded for user %s", redact(user_id))
        return SubscriptionRepository.get(user_id)

    @staticmethod
    @retry_on_db_lock()
    def set_enabled(user_id: str, enabled: bool, now: datetime | None = None) -> Subscription | None:
        """
        Turn Last Wish on or off.

        Enabling starts the clock if the user never checked in. It does not
        clear an existing claim.
        """
        now = now or utc_now()

        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE last_wish_settings
                SET is_enabled = ?, is_active = ?,
                    last_check_in = CASE
                        WHEN ? = 1 AND last_check_in IS NULL THEN ? ELSE last_check_in
                    END,
                    updated_at = ?
                WHERE user_id = ?
                """,
                (int(enabled), int(enabled), int(enabled), now.isoformat(), now.isoformat(), user_id),
            )
            if cursor.rowcount == 0:
                return None

        return SubscriptionRepository.get(user_id)

    @staticmethod
    def claim_if_unclaimed(
        user_id: str, now: datetime | None = None, overdue_only: bool = False
    ) -> bool:
        """
        Atomically mark a subscription as claimed for delivery.

        Compare-and-swap on delivery_claimed; BEGIN IMMEDIATE serializes
        writers so exactly one concurrent caller sees rowcount == 1.

        With overdue_only, the row is re-read under the same write lock and
        the claim is refused unless it is still strictly past its deadline at
        `now`. A check-in that lands between a scan and its claim therefore
        wins over the stale scan result.

        Returns:
            True if this call took the claim, False if it was already taken,
            the subscription is no longer enabled/active, or (overdue_only)
            it is no longer overdue

        Raises:
            ClaimUnavailableError: store unreachable or lock retries exhausted
        """
        try:
            return _claim(user_id, now or utc_now(), overdue_only)
        except (sqlite3.Error, RuntimeError, FileNotFoundError) as e:
            reason = "lock retries exhausted" if is_lock_error(e) else type(e).__name__
            logger.warning("Claim unavailable for user %s: %s", redact(user_id), e)
            raise ClaimUnavailableError(f"Claim unavailable ({reason})") from e


@retry_on_db_lock()
def _claim(user_id: str, now: datetime, overdue_only: bool) -> bool:
    with db_transaction(immediate=True) as conn:
        if overdue_only:
            row = conn.execute(
                "SELECT * FROM last_wish_settings WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is None:
                return False
            try:
                current = Subscription.from_db_row(dict(row))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Refusing claim on malformed row for %s: %s", redact(user_id), e)
                return False
            if not is_overdue(current, now):
                logger.info("Claim refused for user %s: no longer overdue", redact(user_id))
                return False

        cursor = conn.execute(
            """
            UPDATE last_wish_settings
            SET delivery_claimed = 1, delivery_claimed_at = ?
            WHERE user_id = ? AND delivery_claimed = 0 AND is_enabled = 1 AND is_active = 1
            """,
            (now.isoformat(), user_id),
        )
        return cursor.rowcount == 1


# Source table and selected columns per category
_CATEGORY_QUERIES: dict[DataCategory, str] = {
    DataCategory.ACCOUNTS: """
        SELECT id, name, type, balance, currency, institution, is_active
        FROM accounts WHERE user_id = ? ORDER BY name
    """,
    DataCategory.TRANSACTIONS: """
        SELECT id, account_id, type, amount, currency, category, description, date
        FROM transactions WHERE user_id = ? ORDER BY date DESC
    """,
    DataCategory.PURCHASES: """
        SELECT id, item_name, category, price, currency, status, purchase_date
        FROM purchases WHERE user_id = ? ORDER BY purchase_date DESC
    """,
    DataCategory.LOANS: """
        SELECT id, type, person_name, amount, currency, status, due_date, notes
        FROM lend_borrow WHERE user_id = ? ORDER BY due_date
    """,
    DataCategory.SAVINGS: """
        SELECT id, type, amount, currency, note, created_at
        FROM donation_saving_records WHERE user_id = ? ORDER BY created_at DESC
    """,
}


class FinancialDataSource:
    """Read-only queries against the owner's financial tables."""

    @staticmethod
    def get_owner(user_id: str) -> Owner:
        """Owner profile; a missing profile falls back to the bare user id."""
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT id, email, full_name FROM profiles WHERE id = ?",
                (user_id,),
            ).fetchone()

        if not row:
            return Owner(user_id=user_id)
        return Owner(user_id=user_id, email=row["email"], full_name=row["full_name"])

    @staticmethod
    def fetch(category: DataCategory, user_id: str) -> list[dict[str, Any]]:
        """
        Raw rows for one category.

        Raises:
            sqlite3.Error / RuntimeError on query or pool failure
        """
        with get_db_connection() as conn:
            cursor = conn.execute(_CATEGORY_QUERIES[category], (user_id,))
            return [dict(row) for row in cursor.fetchall()]
