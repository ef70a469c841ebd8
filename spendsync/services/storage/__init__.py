"""
Storage Services Package

Provides the abstract store-of-record interface and its Supabase implementation.
"""

from spendsync.services.storage.interface import (
    NotFoundError,
    PermissionError,
    RemoteFetchError,
    RemoteWriteError,
    StorageError,
    TransactionStoreInterface,
)
from spendsync.services.storage.supabase_store import SupabaseTransactionStore

__all__ = [
    # Interfaces
    "TransactionStoreInterface",
    # Exceptions
    "NotFoundError",
    "PermissionError",
    "RemoteFetchError",
    "RemoteWriteError",
    "StorageError",
    # Supabase implementation
    "SupabaseTransactionStore",
]
