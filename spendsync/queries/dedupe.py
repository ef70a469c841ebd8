"""
Historical Dedupe & Merge

Helpers for folding exported datasets (e.g. a past year's ledger) into
one list without double-counting.

Unlike the live log, historical rows often come from different
exports with different ids, so a duplicate is detected by content:

    "{date}_{description}_{amount}"

where date is the local calendar date of `created_at`, description is
trimmed and lower-cased, and amount is the 2dp money string.
"""

from typing import Iterable
from zoneinfo import ZoneInfo

from spendsync import money
from spendsync.models.transaction import TransactionRecord


def dedupe_key(record: TransactionRecord, timezone: str = "UTC") -> str:
    """Content key for a record."""
    day = record.created_at.astimezone(ZoneInfo(timezone)).date().isoformat()
    amount = money.round_amount(record.amount)
    return f"{day}_{record.description_key}_{amount}"


def find_duplicate_groups(
    records: Iterable[TransactionRecord],
    timezone: str = "UTC",
) -> list[list[TransactionRecord]]:
    """
    Groups of records sharing a dedupe key.

    Only keys seen more than once are returned. Groups keep first-seen
    order, and so do the records inside each group.
    """
    groups: dict[str, list[TransactionRecord]] = {}
    for record in records:
        groups.setdefault(dedupe_key(record, timezone), []).append(record)
    return [group for group in groups.values() if len(group) > 1]


def merge_datasets(*datasets: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    """Concatenate datasets and sort oldest first. Ties keep input order."""
    merged = [record for dataset in datasets for record in dataset]
    return sorted(merged, key=lambda r: r.created_at)


def drop_duplicates(
    records: Iterable[TransactionRecord],
    timezone: str = "UTC",
) -> list[TransactionRecord]:
    """Keep the first record of each dedupe key."""
    seen: set[str] = set()
    kept: list[TransactionRecord] = []
    for record in records:
        key = dedupe_key(record, timezone)
        if key in seen:
            continue
        seen.add(key)
        kept.append(record)
    return kept
