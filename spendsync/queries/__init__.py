"""Derived views over the transaction log."""

from spendsync.queries.aggregation import AggregationEngine
from spendsync.queries.budget import (
    BudgetBounds,
    BudgetStatus,
    classify,
    classify_with_bounds,
)
from spendsync.queries.dedupe import (
    dedupe_key,
    drop_duplicates,
    find_duplicate_groups,
    merge_datasets,
)

__all__ = [
    "AggregationEngine",
    "BudgetBounds",
    "BudgetStatus",
    "classify",
    "classify_with_bounds",
    "dedupe_key",
    "drop_duplicates",
    "find_duplicate_groups",
    "merge_datasets",
]
