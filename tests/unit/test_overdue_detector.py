"""Unit tests for overdue detection

Tests cover:
- Strict deadline comparison
- Claimed / disabled / never-checked-in exclusion
- Malformed rows reported as data-quality warnings
- Minute-based intervals
- Naive timestamps treated as UTC
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fakes import NOW, make_subscription

from lastwish.delivery.detector import find_overdue, is_overdue, overdue_by, time_remaining
from lastwish.delivery.models import CheckInInterval


def test_exactly_at_deadline_is_not_overdue():
    """A subscription exactly at last_check_in + interval is not overdue"""
    sub = make_subscription(last_check_in=NOW - timedelta(days=30))

    assert not is_overdue(sub, NOW)
    assert is_overdue(sub, NOW + timedelta(seconds=1))


def test_checked_in_29_days_ago_is_not_overdue():
    sub = make_subscription(last_check_in=NOW - timedelta(days=29))

    result = find_overdue(NOW, [sub.to_db_dict()])

    assert result.overdue == []
    assert result.scanned == 1


def test_checked_in_31_days_ago_is_overdue():
    sub = make_subscription(last_check_in=NOW - timedelta(days=31))

    result = find_overdue(NOW, [sub.to_db_dict()])

    assert [s.user_id for s in result.overdue] == ["user-1"]


def test_claimed_subscription_never_selected():
    sub = make_subscription(last_check_in=NOW - timedelta(days=365), claimed=True)

    assert find_overdue(NOW, [sub.to_db_dict()]).overdue == []


def test_disabled_subscription_never_selected():
    sub = make_subscription(last_check_in=NOW - timedelta(days=365), enabled=False)

    assert find_overdue(NOW, [sub]).overdue == []


def test_never_checked_in_is_not_overdue():
    sub = make_subscription(last_check_in=None)

    result = find_overdue(NOW, [sub.to_db_dict()])

    assert result.overdue == []
    assert result.warnings == []


def test_empty_input():
    result = find_overdue(NOW, [])

    assert result.overdue == []
    assert result.warnings == []
    assert result.scanned == 0


def test_malformed_rows_become_warnings():
    """Bad rows are skipped and counted, valid rows in the same scan still match"""
    good = make_subscription("good", last_check_in=NOW - timedelta(days=40)).to_db_dict()

    bad_timestamp = dict(good, user_id="bad-ts", last_check_in="not-a-date")
    bad_json = dict(good, user_id="bad-json", recipients="[{")
    bad_frequency = dict(good, user_id="bad-freq", check_in_frequency=0)
    missing_user = dict(good, user_id=None)

    result = find_overdue(NOW, [bad_timestamp, good, bad_json, bad_frequency, missing_user])

    assert [s.user_id for s in result.overdue] == ["good"]
    assert len(result.warnings) == 4
    assert {w.user_id for w in result.warnings} == {"bad-ts", "bad-json", "bad-freq", None}
    assert result.scanned == 5


def test_minute_interval():
    sub = make_subscription(
        last_check_in=NOW - timedelta(minutes=6),
        interval=CheckInInterval.minutes(5),
    )

    assert is_overdue(sub, NOW)
    assert overdue_by(sub, NOW) == timedelta(minutes=1)


def test_naive_now_treated_as_utc():
    sub = make_subscription(last_check_in=NOW - timedelta(days=31))
    naive_now = datetime(NOW.year, NOW.month, NOW.day, NOW.hour)

    assert is_overdue(sub, naive_now)


def test_time_remaining_before_deadline():
    sub = make_subscription(last_check_in=NOW - timedelta(days=28))

    assert time_remaining(sub, NOW) == timedelta(days=2)
    assert overdue_by(sub, NOW) == timedelta(0)


def test_legacy_include_data_mapping_is_parsed():
    """Settings rows written as {"accounts": true, "lendBorrow": true, ...} still load"""
    row = make_subscription(last_check_in=NOW - timedelta(days=31)).to_db_dict()
    row["include_data"] = '{"accounts": true, "lendBorrow": true, "savings": false}'

    result = find_overdue(NOW, [row])

    assert {c.value for c in result.overdue[0].include_data} == {"accounts", "loans"}
