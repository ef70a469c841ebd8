"""
Aggregation Engine

DESIGN DECISION: Aggregates are DERIVED, never cached.
Every total and breakdown is recomputed from the transaction log's
`active_records()` on each read, so a realtime change is visible in
the very next read and a soft-deleted record can never leak into a sum.

All arithmetic goes through `spendsync.money`; ordering uses
`money.compare`, never native comparison of floats.

Known drift: bucket percentages are rounded independently, so a
breakdown may sum to 99 or 101. They are not normalized.
"""

from datetime import date, datetime
from decimal import Decimal
from functools import cmp_to_key
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from spendsync import money
from spendsync.models.transaction import (
    AggregateBucket,
    TransactionKind,
    TransactionRecord,
)
from spendsync.store.transaction_log import TransactionLogStore


DEFAULT_UNCATEGORIZED_LABEL = "Uncategorized"


class _Group:
    """Running total for one bucket."""

    __slots__ = ("label", "total", "count", "icon", "color")

    def __init__(self, label: str, icon: Optional[str], color: Optional[str]):
        self.label = label
        self.total = money.ZERO
        self.count = 0
        self.icon = icon
        self.color = color


def _build_buckets(
    records: list[TransactionRecord],
    key_of: Callable[[TransactionRecord], tuple[str, str]],
    grand_total: Decimal,
) -> list[AggregateBucket]:
    """
    Group records and turn the groups into sorted buckets.

    `key_of` returns (grouping key, display label). The display label and
    icon/color of a bucket come from the first record seen in that group.
    """
    groups: dict[str, _Group] = {}
    for record in records:
        key, label = key_of(record)
        group = groups.get(key)
        if group is None:
            category = record.category
            group = _Group(
                label,
                category.icon if category else None,
                category.color if category else None,
            )
            groups[key] = group
        group.total = money.add(group.total, record.amount)
        group.count += 1

    buckets = [
        AggregateBucket(
            label=group.label,
            total=group.total,
            count=group.count,
            percentage=int(money.percentage(group.total, grand_total, decimals=0)),
            icon=group.icon,
            color=group.color,
        )
        for group in groups.values()
    ]

    # Stable: equal totals keep first-seen order
    return sorted(
        buckets,
        key=cmp_to_key(lambda a, b: money.compare(b.total, a.total)),
    )


class AggregationEngine:
    """
    Derives totals and breakdowns from a TransactionLogStore.

    Only expense records count towards totals and breakdowns.
    """

    def __init__(
        self,
        store: TransactionLogStore,
        timezone: str = "UTC",
        uncategorized_label: str = DEFAULT_UNCATEGORIZED_LABEL,
    ):
        self._store = store
        self._tz = ZoneInfo(timezone)
        self._uncategorized_label = uncategorized_label

    def _expenses(self) -> list[TransactionRecord]:
        return [r for r in self._store.active_records() if r.kind == TransactionKind.EXPENSE]

    def _local_date(self, moment: datetime) -> date:
        return moment.astimezone(self._tz).date()

    def _today(self, today: Optional[date]) -> date:
        return today or datetime.now(self._tz).date()

    # =========================================================================
    # TODAY
    # =========================================================================

    def today_records(self, today: Optional[date] = None) -> list[TransactionRecord]:
        """Active records (any kind) created on the local calendar date."""
        day = self._today(today)
        return [
            r for r in self._store.active_records()
            if self._local_date(r.created_at) == day
        ]

    def today_total(self, today: Optional[date] = None) -> Decimal:
        day = self._today(today)
        return money.sum_amounts(
            r.amount for r in self._expenses() if self._local_date(r.created_at) == day
        )

    def today_count(self, today: Optional[date] = None) -> int:
        day = self._today(today)
        return sum(1 for r in self._expenses() if self._local_date(r.created_at) == day)

    # =========================================================================
    # MONTH
    # =========================================================================

    def monthly_total(self) -> Decimal:
        return money.sum_amounts(r.amount for r in self._expenses())

    def monthly_count(self) -> int:
        return len(self._expenses())

    def monthly_income_total(self) -> Decimal:
        return money.sum_amounts(
            r.amount for r in self._store.active_records()
            if r.kind == TransactionKind.INCOME
        )

    # =========================================================================
    # BREAKDOWNS
    # =========================================================================

    def summary_by_category(self) -> list[AggregateBucket]:
        """
        Expense buckets keyed by category name, largest total first.

        Records without a category (or with an unnamed one) share the
        uncategorized bucket.
        """
        expenses = self._expenses()

        def key_of(record: TransactionRecord) -> tuple[str, str]:
            name = record.category_name or self._uncategorized_label
            return name, name

        return _build_buckets(expenses, key_of, money.sum_amounts(r.amount for r in expenses))

    def summary_by_description(self) -> list[AggregateBucket]:
        """
        Expense buckets keyed by trimmed, case-insensitive description.

        The label keeps the casing of the first record seen in each group.
        """
        expenses = self._expenses()

        def key_of(record: TransactionRecord) -> tuple[str, str]:
            return record.description_key, record.description.strip()

        return _build_buckets(expenses, key_of, money.sum_amounts(r.amount for r in expenses))
