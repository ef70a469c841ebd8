"""Services package."""

from spendsync.services.storage import (
    NotFoundError,
    PermissionError,
    RemoteFetchError,
    RemoteWriteError,
    StorageError,
    SupabaseTransactionStore,
    TransactionStoreInterface,
)

__all__ = [
    "NotFoundError",
    "PermissionError",
    "RemoteFetchError",
    "RemoteWriteError",
    "StorageError",
    "SupabaseTransactionStore",
    "TransactionStoreInterface",
]
