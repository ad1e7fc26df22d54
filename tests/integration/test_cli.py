"""Tests for the lastwish-check command"""

from __future__ import annotations

import json
import sqlite3
from datetime import timedelta

import pytest
from fakes import FakeMailChannel, insert_subscription, make_subscription

from lastwish import cli
from lastwish.delivery import service as service_module
from lastwish.delivery.models import utc_now
from lastwish.delivery.repository import SubscriptionRepository
from lastwish.delivery.service import LastWishService


@pytest.fixture
def overdue(temp_db):
    insert_subscription(make_subscription(last_check_in=utc_now() - timedelta(days=31)))


def test_dry_run_lists_without_sending(overdue, monkeypatch, capsys):
    channel = FakeMailChannel()
    monkeypatch.setattr(service_module, "_service", LastWishService(channel=channel))

    assert cli.main(["--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "Overdue: 1" in out
    assert channel.sent == []


def test_run_prints_json_summary(overdue, monkeypatch, capsys):
    channel = FakeMailChannel()
    monkeypatch.setattr(service_module, "_service", LastWishService(channel=channel))

    assert cli.main(["--json"]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["processedCount"] == 1
    assert summary["emailsSent"] == 1
    assert len(channel.sent) == 1


@pytest.mark.usefixtures("temp_db")
def test_dry_run_store_failure_exits_nonzero(monkeypatch, capsys):
    def broken():
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(SubscriptionRepository, "list_candidate_rows", staticmethod(broken))

    assert cli.main(["--dry-run"]) == 1
    assert "Subscription store unavailable" in capsys.readouterr().err
