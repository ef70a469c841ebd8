"""Transaction log package."""

from spendsync.store.transaction_log import ApplyOutcome, TransactionLogStore

__all__ = ["ApplyOutcome", "TransactionLogStore"]
