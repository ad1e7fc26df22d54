"""Test doubles and builders shared by the Last Wish tests."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from lastwish.delivery.aggregator import DataAggregator
from lastwish.delivery.errors import MailSendError
from lastwish.delivery.models import (
    Attachment,
    CheckInInterval,
    DataCategory,
    Recipient,
    Subscription,
)
from lastwish.infrastructure.database import db_transaction, get_db_connection
from lastwish.utils.validators import ValidationError, validate_email_address

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


class FakeMailChannel:
    """In-memory mail channel; rejects malformed addresses like the SMTP channel does."""

    def __init__(self, fail_for: Sequence[str] = ()):
        self.fail_for = set(fail_for)
        self.sent: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        try:
            validate_email_address(to)
        except ValidationError as e:
            raise MailSendError(str(e), recipient=to) from e

        if to in self.fail_for:
            raise MailSendError("550 mailbox unavailable", recipient=to)

        with self._lock:
            self.sent.append(
                {
                    "to": to,
                    "subject": subject,
                    "html": html,
                    "text": text,
                    "attachments": list(attachments),
                }
            )
            return f"<fake-{len(self.sent)}@lastwish.test>"

    def get_config_status(self) -> dict[str, Any]:
        return {"enabled": True, "smtp_host": "fake", "smtp_port": 0}


class CountingAggregator(DataAggregator):
    """DataAggregator that records which users it gathered for."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def gather(self, user_id, categories=None):
        with self._lock:
            self.calls.append(user_id)
        return super().gather(user_id, categories)


class RecordingLedger:
    """In-memory stand-in for DeliveryLedger.record."""

    def __init__(self):
        self.entries: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def record(self, user_id, outcome, payload=None, test_mode=False):
        with self._lock:
            self.entries.append(
                {"user_id": user_id, "outcome": outcome, "payload": payload, "test_mode": test_mode}
            )


def make_subscription(
    user_id: str = "user-1",
    *,
    last_check_in: datetime | None = NOW,
    interval: CheckInInterval | None = None,
    emails: Sequence[str] = ("alice@example.com",),
    include: Sequence[DataCategory] | None = None,
    message: str | None = None,
    enabled: bool = True,
    claimed: bool = False,
) -> Subscription:
    return Subscription(
        user_id=user_id,
        is_enabled=enabled,
        is_active=enabled,
        check_in_interval=interval or CheckInInterval.days(30),
        last_check_in=last_check_in,
        recipients=[
            Recipient(id=f"r{i}", email=email, name=email.split("@")[0].title())
            for i, email in enumerate(emails)
        ],
        include_data=set(include) if include is not None else set(DataCategory),
        message=message,
        delivery_claimed=claimed,
    )


def insert_subscription(subscription: Subscription) -> None:
    """Write a settings row as-is (no validation), like rows created by older clients."""
    row = subscription.to_db_dict()
    columns = ", ".join(row)
    placeholders = ", ".join(f":{name}" for name in row)
    with db_transaction() as conn:
        conn.execute(f"INSERT INTO last_wish_settings ({columns}) VALUES ({placeholders})", row)


def seed_financial_data(user_id: str) -> None:
    """Two accounts, one transaction, one purchase, one loan, one savings record."""
    with db_transaction() as conn:
        conn.execute(
            "INSERT INTO profiles (id, email, full_name) VALUES (?, ?, ?)",
            (user_id, f"{user_id}@example.com", "Sam Owner"),
        )
        conn.executemany(
            """
            INSERT INTO accounts (id, user_id, name, type, balance, currency, institution)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (f"{user_id}-a1", user_id, "Checking", "bank", 1234.5, "USD", "First Bank"),
                (f"{user_id}-a2", user_id, "Savings", "bank", 50, None, "First Bank"),
            ],
        )
        conn.execute(
            """
            INSERT INTO transactions (id, user_id, account_id, type, amount, currency,
                                      category, description, date)
            VALUES (?, ?, ?, 'expense', 42.1, 'USD', 'groceries', 'Market', '2025-05-01')
            """,
            (f"{user_id}-t1", user_id, f"{user_id}-a1"),
        )
        conn.execute(
            """
            INSERT INTO purchases (id, user_id, item_name, category, price, currency, status,
                                   purchase_date)
            VALUES (?, ?, 'Laptop', 'electronics', 999.99, 'USD', 'purchased', '2025-04-02')
            """,
            (f"{user_id}-p1", user_id),
        )
        conn.execute(
            """
            INSERT INTO lend_borrow (id, user_id, type, person_name, amount, currency, status)
            VALUES (?, ?, 'lend', 'Chris', 200, 'USD', 'active')
            """,
            (f"{user_id}-l1", user_id),
        )
        conn.execute(
            """
            INSERT INTO donation_saving_records (id, user_id, type, amount, currency, note)
            VALUES (?, ?, 'saving', 75, 'USD', 'Rainy day')
            """,
            (f"{user_id}-s1", user_id),
        )


def ledger_rows(user_id: str) -> list[sqlite3.Row]:
    with get_db_connection() as conn:
        return conn.execute(
            "SELECT * FROM last_wish_deliveries WHERE user_id = ? ORDER BY sent_at",
            (user_id,),
        ).fetchall()
