"""
Data aggregation - gathers one owner's financial records across categories.

Category queries are independent; a failure in one degrades that category to
an empty list instead of aborting the gather.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import ValidationError

from lastwish.delivery.models import (
    RECORD_TYPES,
    DataCategory,
    FinancialRecord,
    FinancialSnapshot,
)
from lastwish.delivery.repository import FinancialDataSource
from lastwish.observability.logging import get_logger
from lastwish.observability.telemetry import counter, time_block
from lastwish.utils.redaction import redact

logger = get_logger(__name__)

FetchFn = Callable[[DataCategory, str], list[dict[str, Any]]]


class DataAggregator:
    """Builds a FinancialSnapshot from the category tables."""

    def __init__(self, fetch: FetchFn | None = None):
        self._fetch = fetch or FinancialDataSource.fetch

    def gather(
        self, user_id: str, categories: Iterable[DataCategory] | None = None
    ) -> FinancialSnapshot:
        """
        Query every requested category (all by default).

        Returns:
            Snapshot with one entry per queried category, possibly empty
        """
        sections: dict[DataCategory, list[FinancialRecord]] = {}

        with time_block("last_wish.aggregate"):
            for category in categories or DataCategory:
                sections[category] = self._gather_category(user_id, category)

        return FinancialSnapshot(sections)

    def _gather_category(self, user_id: str, category: DataCategory) -> list[FinancialRecord]:
        try:
            rows = self._fetch(category, user_id)
        except (sqlite3.Error, RuntimeError, FileNotFoundError, TimeoutError) as e:
            logger.error(
                "Failed to load %s for user %s, continuing without it: %s",
                category.value,
                redact(user_id),
                e,
            )
            counter(f"last_wish.aggregate.{category.value}.failed")
            return []

        record_type = RECORD_TYPES[category]
        records: list[FinancialRecord] = []
        for row in rows:
            try:
                records.append(record_type.from_row(row))
            except ValidationError as e:
                logger.warning(
                    "Dropping invalid %s row %s: %s",
                    category.value,
                    row.get("id"),
                    e.errors()[0]["msg"] if e.errors() else e,
                )
                counter("last_wish.aggregate.invalid_row")
        return records
