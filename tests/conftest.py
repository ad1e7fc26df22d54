"""
Pytest configuration for the Last Wish tests

Every test that touches the database gets its own SQLite file: the pool is
process-wide, so the fixture points LASTWISH_DB_PATH at a temp file and resets
the cached pool around the test.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from lastwish.infrastructure.database import init_database, reset_pool
from lastwish.observability.telemetry import reset_counters


@pytest.fixture(autouse=True)
def clean_telemetry() -> Iterator[None]:
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def temp_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Isolated, initialized database for one test."""
    db_path = tmp_path / "lastwish.db"
    monkeypatch.setenv("LASTWISH_DB_PATH", str(db_path))
    reset_pool()
    init_database()
    yield db_path
    reset_pool()
