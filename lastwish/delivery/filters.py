"""Projection of a snapshot onto the categories the owner opted into."""

from __future__ import annotations

from collections.abc import Iterable

from lastwish.delivery.models import DataCategory, FinancialSnapshot


def filter_snapshot(
    snapshot: FinancialSnapshot, include: Iterable[DataCategory]
) -> FinancialSnapshot:
    """
    Keep only the included categories.

    Excluded categories are removed, not emptied. Pure and idempotent:
    filter_snapshot(filter_snapshot(s, c), c) == filter_snapshot(s, c).
    """
    allowed = set(include)
    return FinancialSnapshot(
        {category: snapshot.records(category) for category in snapshot if category in allowed}
    )
