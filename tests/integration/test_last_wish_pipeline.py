"""
End-to-end tests for LastWishService against a real SQLite database.

The mail channel is the only double; claims, aggregation, rendering and the
ledger all run for real.
"""

from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from fakes import (
    NOW,
    CountingAggregator,
    FakeMailChannel,
    insert_subscription,
    ledger_rows,
    make_subscription,
    seed_financial_data,
)

from lastwish.delivery.errors import (
    ClaimConflictError,
    NoRecipientsError,
    ScanError,
    SubscriptionNotFoundError,
)
from lastwish.delivery.models import CheckInInterval, DataCategory
from lastwish.delivery.repository import FinancialDataSource, SubscriptionRepository
from lastwish.delivery.service import LastWishService
from lastwish.infrastructure.database import db_transaction, reset_pool

OVERDUE = NOW - timedelta(days=31)


@pytest.fixture
def channel() -> FakeMailChannel:
    return FakeMailChannel()


@pytest.fixture
def service(temp_db, channel) -> LastWishService:
    return LastWishService(channel=channel)


def test_not_yet_overdue_sends_nothing(service, channel):
    insert_subscription(make_subscription(last_check_in=NOW - timedelta(days=29)))

    summary = service.run_scheduled(now=NOW)

    assert summary.processed_count == 0
    assert channel.sent == []
    assert ledger_rows("user-1") == []
    assert SubscriptionRepository.get("user-1").delivery_claimed is False


def test_one_invalid_recipient_does_not_block_the_other(service, channel):
    seed_financial_data("user-1")
    insert_subscription(
        make_subscription(last_check_in=OVERDUE, emails=["alice@example.com", "broken-address"])
    )

    summary = service.run_scheduled(now=NOW)

    assert summary.processed_count == 1
    assert summary.emails_sent == 1
    assert summary.emails_failed == 1
    assert [m["to"] for m in channel.sent] == ["alice@example.com"]

    rows = ledger_rows("user-1")
    assert len(rows) == 2
    statuses = {row["recipient_email"]: row["delivery_status"] for row in rows}
    assert statuses == {"alice@example.com": "sent", "broken-address": "failed"}
    failed = next(row for row in rows if row["delivery_status"] == "failed")
    assert failed["delivery_data"] is None
    assert "Invalid email address" in failed["error_message"]

    # Partial failure is terminal: the claim stays taken
    assert SubscriptionRepository.get("user-1").delivery_claimed is True
    assert service.run_scheduled(now=NOW + timedelta(hours=1)).processed_count == 0


def test_overlapping_runs_deliver_once(temp_db, channel):
    """Two scheduler runs at once: one aggregation, one round of ledger rows"""
    seed_financial_data("user-1")
    insert_subscription(
        make_subscription(last_check_in=OVERDUE, emails=["alice@example.com", "bob@example.com"])
    )

    aggregator = CountingAggregator(FinancialDataSource.fetch)
    service = LastWishService(channel=channel, aggregator=aggregator)
    barrier = threading.Barrier(2)

    def run():
        barrier.wait()
        return service.run_scheduled(now=NOW)

    with ThreadPoolExecutor(max_workers=2) as executor:
        summaries = list(executor.map(lambda _: run(), range(2)))

    assert aggregator.calls == ["user-1"]
    assert len(ledger_rows("user-1")) == 2
    assert len(channel.sent) == 2
    assert sum(s.processed_count for s in summaries) == 1
    # The loser either lost the claim or no longer saw the row as a candidate
    assert sum(s.claim_conflicts for s in summaries) <= 1


def test_only_included_categories_are_sent(service, channel):
    seed_financial_data("user-1")
    insert_subscription(make_subscription(last_check_in=OVERDUE, include=[DataCategory.ACCOUNTS]))

    service.run_scheduled(now=NOW)

    html = channel.sent[0]["html"]
    assert "Accounts: 2 records" in html
    assert "Transactions" not in html
    assert "Sam Owner" in html

    payload_row = ledger_rows("user-1")[0]
    assert '"transactions"' not in payload_row["delivery_data"]


def test_minute_interval_subscription_is_delivered(service, channel):
    insert_subscription(
        make_subscription(
            last_check_in=NOW - timedelta(minutes=10), interval=CheckInInterval.minutes(5)
        )
    )

    summary = service.run_scheduled(now=NOW)

    assert summary.emails_sent == 1


def test_malformed_rows_are_counted_not_fatal(service, channel):
    insert_subscription(make_subscription("good", last_check_in=OVERDUE))
    insert_subscription(make_subscription("bad", last_check_in=OVERDUE))
    with db_transaction() as conn:
        conn.execute("UPDATE last_wish_settings SET recipients = '{oops' WHERE user_id = 'bad'")

    summary = service.run_scheduled(now=NOW)

    assert summary.processed_count == 1
    assert summary.data_quality_warnings == 1


def test_overdue_without_recipients_is_skipped(service, channel):
    insert_subscription(make_subscription(last_check_in=OVERDUE, emails=[]))

    summary = service.run_scheduled(now=NOW)

    assert summary.skipped_no_recipients == 1
    assert SubscriptionRepository.get("user-1").delivery_claimed is False


def test_scan_failure_raises_scan_error(service, monkeypatch, tmp_path):
    monkeypatch.setenv("LASTWISH_DB_PATH", str(tmp_path / "nowhere" / "missing.db"))
    reset_pool()

    with pytest.raises(ScanError):
        service.run_scheduled(now=NOW)


def test_check_in_rearms_after_delivery(service, channel):
    insert_subscription(make_subscription(last_check_in=OVERDUE))
    service.run_scheduled(now=NOW)

    service.check_in("user-1", now=NOW)

    assert service.run_scheduled(now=NOW + timedelta(days=29)).processed_count == 0
    assert service.run_scheduled(now=NOW + timedelta(days=31)).processed_count == 1
    assert len(channel.sent) == 2


def test_manual_delivery_claims(service, channel):
    insert_subscription(make_subscription())

    outcomes = service.deliver_now("user-1")

    assert [o.success for o in outcomes] == [True]
    assert SubscriptionRepository.get("user-1").delivery_claimed is True
    with pytest.raises(ClaimConflictError):
        service.deliver_now("user-1")


def test_test_mode_delivery_does_not_claim(service, channel):
    insert_subscription(make_subscription())

    service.deliver_now("user-1", test_mode=True)
    service.deliver_now("user-1", test_mode=True)

    assert SubscriptionRepository.get("user-1").delivery_claimed is False
    assert all(m["subject"].startswith("🧪 Test Email - ") for m in channel.sent)
    assert [row["test_mode"] for row in ledger_rows("user-1")] == [1, 1]


def test_manual_delivery_errors(service):
    with pytest.raises(SubscriptionNotFoundError):
        service.deliver_now("ghost")

    insert_subscription(make_subscription(emails=[]))
    with pytest.raises(NoRecipientsError):
        service.deliver_now("user-1")


def test_status_reports_overdue_hours_and_history(service, channel):
    insert_subscription(make_subscription(last_check_in=NOW - timedelta(days=32)))
    service.run_scheduled(now=NOW)

    status = service.status("user-1", now=NOW)

    assert status["isOverdue"] is False  # claimed subscriptions are no longer eligible
    assert status["hoursOverdue"] == 48.0
    assert status["deliveryClaimed"] is True
    assert status["recentDeliveries"][0]["status"] == "sent"
    assert status["smtp"]["enabled"] is True


def _repository_editing_after_scan(sql: str, params: tuple) -> type[SubscriptionRepository]:
    """Repository whose scan is followed by a settings edit, before any claim"""

    class EditedAfterScan(SubscriptionRepository):
        @staticmethod
        def list_candidate_rows():
            rows = SubscriptionRepository.list_candidate_rows()
            with db_transaction() as conn:
                conn.execute(sql, params)
            return rows

    return EditedAfterScan


def test_recipient_removed_after_scan_is_not_sent(temp_db, channel):
    seed_financial_data("user-1")
    insert_subscription(
        make_subscription(last_check_in=OVERDUE, emails=["alice@example.com", "bob@example.com"])
    )
    only_alice = json.dumps([{"id": "r0", "email": "alice@example.com", "name": "Alice"}])
    repository = _repository_editing_after_scan(
        "UPDATE last_wish_settings SET recipients = ? WHERE user_id = 'user-1'", (only_alice,)
    )
    service = LastWishService(repository=repository, channel=channel)

    summary = service.run_scheduled(now=NOW)

    assert summary.emails_sent == 1
    assert [m["to"] for m in channel.sent] == ["alice@example.com"]
    assert [row["recipient_email"] for row in ledger_rows("user-1")] == ["alice@example.com"]


def test_category_disabled_after_scan_is_not_sent(temp_db, channel):
    seed_financial_data("user-1")
    insert_subscription(make_subscription(last_check_in=OVERDUE))
    repository = _repository_editing_after_scan(
        "UPDATE last_wish_settings SET include_data = ? WHERE user_id = 'user-1'",
        ('["accounts"]',),
    )
    service = LastWishService(repository=repository, channel=channel)

    service.run_scheduled(now=NOW)

    html = channel.sent[0]["html"]
    assert "Accounts: 2 records" in html
    assert "Transactions" not in html


def test_all_recipients_removed_after_scan_sends_nothing(temp_db, channel):
    insert_subscription(make_subscription(last_check_in=OVERDUE))
    repository = _repository_editing_after_scan(
        "UPDATE last_wish_settings SET recipients = '[]' WHERE user_id = 'user-1'", ()
    )
    service = LastWishService(repository=repository, channel=channel)

    summary = service.run_scheduled(now=NOW)

    assert channel.sent == []
    assert summary.skipped_no_recipients == 1
    assert summary.processed_count == 0
