"""Unit tests for Last Wish models and the aggregator's degradation rules"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fakes import NOW, make_subscription

from lastwish.delivery.aggregator import DataAggregator
from lastwish.delivery.models import (
    AccountRecord,
    CheckInInterval,
    DataCategory,
    DeliveryLedgerEntry,
    DeliveryStatus,
    IntervalUnit,
    RunSummary,
    Subscription,
    TransactionRecord,
)


def test_subscription_db_round_trip_preserves_fields():
    sub = make_subscription(message="Hello", include=[DataCategory.ACCOUNTS, DataCategory.LOANS])

    restored = Subscription.from_db_row(sub.to_db_dict())

    assert restored.recipients == sub.recipients
    assert restored.include_data == {DataCategory.ACCOUNTS, DataCategory.LOANS}
    assert restored.last_check_in == NOW
    assert restored.check_in_interval == CheckInInterval.days(30)


def test_deadline_uses_interval_unit():
    sub = make_subscription(interval=CheckInInterval(amount=2, unit=IntervalUnit.HOURS))

    assert sub.deadline == NOW + timedelta(hours=2)


def test_zulu_timestamps_parse_as_utc():
    row = make_subscription().to_db_dict()
    row["last_check_in"] = "2025-06-01T12:00:00.000Z"

    assert Subscription.from_db_row(row).last_check_in == datetime(2025, 6, 1, 12, tzinfo=UTC)


def test_interval_must_be_positive():
    with pytest.raises(ValidationError):
        CheckInInterval(amount=0)


def test_record_defaults_currency_and_coerces_amounts():
    record = TransactionRecord.from_row({"id": 7, "amount": 19.999, "currency": None})

    assert record.id == "7"
    assert record.currency == "USD"
    assert record.export()["amount"] == "20.00"


def test_ledger_entry_db_round_trip():
    entry = DeliveryLedgerEntry(
        user_id="user-1",
        recipient_email="alice@example.com",
        status=DeliveryStatus.SENT,
        message_id="<m1@example.com>",
        delivery_data={"accounts": []},
        test_mode=True,
    )

    restored = DeliveryLedgerEntry.from_db_row(entry.to_db_dict())

    assert restored == entry


def test_run_summary_response_is_camel_case():
    summary = RunSummary(processed_count=1, emails_sent=2, emails_failed=1, timestamp=NOW)

    response = summary.to_response()

    assert response["success"] is True
    assert response["processedCount"] == 1
    assert response["emailsSent"] == 2
    assert response["emailsFailed"] == 1
    assert response["timestamp"] == NOW.isoformat()
    assert "2 email(s) sent, 1 failed" in response["message"]


def test_run_summary_message_distinguishes_idle_from_undelivered():
    assert RunSummary().message == "No overdue subscriptions"

    failed = RunSummary(claim_errors=1, pipeline_errors=2).message
    assert "none delivered" in failed
    assert "1 claim error(s)" in failed
    assert "2 pipeline error(s)" in failed

    skipped = RunSummary(skipped_no_recipients=1).message
    assert "1 skipped without recipients" in skipped

    assert "claimed by another run" in RunSummary(claim_conflicts=1).message

    partial = RunSummary(processed_count=1, emails_sent=1, pipeline_errors=1).message
    assert partial.startswith("Processed 1 overdue subscription(s)")
    assert "1 pipeline error(s)" in partial


@pytest.mark.parametrize("balance", [Decimal("1e27"), Decimal("-1e15"), Decimal("NaN")])
def test_record_rejects_unrepresentable_amounts(balance):
    with pytest.raises(ValidationError):
        AccountRecord(id="a1", name="Checking", balance=balance)


def test_record_accepts_large_but_valid_amount():
    record = AccountRecord(id="a1", name="Checking", balance=Decimal("999999999999.99"))

    assert record.export()["balance"] == "999999999999.99"


def test_aggregator_degrades_failed_category_to_empty():
    """One category query failing doesn't abort the gather"""

    def fetch(category, user_id):
        if category == DataCategory.TRANSACTIONS:
            raise sqlite3.OperationalError("disk I/O error")
        if category == DataCategory.ACCOUNTS:
            return [{"id": "a1", "name": "Checking", "balance": 10.0, "currency": "USD"}]
        return []

    snapshot = DataAggregator(fetch).gather("user-1")

    assert snapshot.counts() == {
        DataCategory.ACCOUNTS: 1,
        DataCategory.TRANSACTIONS: 0,
        DataCategory.PURCHASES: 0,
        DataCategory.LOANS: 0,
        DataCategory.SAVINGS: 0,
    }
    assert snapshot.records(DataCategory.ACCOUNTS)[0].balance == Decimal("10.0")


def test_aggregator_drops_invalid_rows():
    def fetch(category, user_id):
        if category == DataCategory.PURCHASES:
            return [
                {"id": "p1", "item_name": "Desk", "price": 120},
                {"id": "p2", "item_name": "Broken", "price": "not-a-number"},
            ]
        return []

    snapshot = DataAggregator(fetch).gather("user-1", [DataCategory.PURCHASES])

    assert [r.id for r in snapshot.records(DataCategory.PURCHASES)] == ["p1"]


def test_aggregator_drops_out_of_range_amount():
    def fetch(category, user_id):
        return [
            {"id": "a1", "name": "Checking", "balance": 25.5},
            {"id": "a2", "name": "Corrupt", "balance": "1e27"},
        ]

    snapshot = DataAggregator(fetch).gather("user-1", [DataCategory.ACCOUNTS])

    assert [r.id for r in snapshot.records(DataCategory.ACCOUNTS)] == ["a1"]
    assert snapshot.export()["accounts"][0]["balance"] == "25.50"
