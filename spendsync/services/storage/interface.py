"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the store of record.
This allows us to:
1. Keep the reconciliation core independent of Supabase
2. Use in-memory storage for testing
3. Map every backend failure onto one error taxonomy

The interface is intentionally small: the operations the transaction
log needs, with server-side filtering by time range and owner set.
Row-level security is the database's job; a rejection surfaces here
as PermissionError.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

from spendsync.models.transaction import (
    FamilyMember,
    FetchResult,
    TransactionInput,
    TransactionRecord,
    TransactionUpdateInput,
)


class TransactionStoreInterface(ABC):
    """
    Abstract interface for the transactions store of record.

    Any backend (Supabase, PostgreSQL, in-memory) must implement these methods.
    """

    @abstractmethod
    async def fetch_transactions(
        self,
        start: datetime,
        end: datetime,
        user_ids: Iterable[str],
    ) -> FetchResult:
        """
        Fetch non-deleted transactions in a time range.

        Args:
            start: Inclusive lower bound on created_at
            end: Inclusive upper bound on created_at
            user_ids: Only rows whose created_by is in this set

        Returns:
            FetchResult with rows ordered newest first

        Raises:
            RemoteFetchError: If the query fails
            PermissionError: If the caller may not read these rows
        """
        pass

    @abstractmethod
    async def create_transactions(
        self,
        items: list[TransactionInput],
        created_by: str,
    ) -> list[TransactionRecord]:
        """
        Insert transactions and return them with their assigned ids.

        Raises:
            RemoteWriteError: If the insert fails
            PermissionError: If the caller may not insert
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        transaction_id: str,
        update: TransactionUpdateInput,
    ) -> TransactionRecord:
        """
        Apply a partial update and return the stored row.

        Raises:
            NotFoundError: If no such transaction exists
            RemoteWriteError: If the update fails
            PermissionError: If the caller may not update it
        """
        pass

    @abstractmethod
    async def soft_delete_transaction(
        self,
        transaction_id: str,
        deleted_at: datetime,
    ) -> None:
        """
        Mark a transaction deleted by setting deleted_at.

        Raises:
            RemoteWriteError: If the update fails
            PermissionError: If the caller may not delete it
        """
        pass

    @abstractmethod
    async def fetch_family_members(self, user_id: str) -> list[FamilyMember]:
        """
        Fetch the membership rows visible to a user.

        Raises:
            RemoteFetchError: If the query fails
        """
        pass


class StorageError(Exception):
    """Base exception for store-of-record operations."""
    pass


class RemoteFetchError(StorageError):
    """Reading from the store of record failed."""
    pass


class RemoteWriteError(StorageError):
    """Writing to the store of record failed."""
    pass


class NotFoundError(RemoteWriteError):
    """Entity not found in storage."""
    pass


class PermissionError(StorageError):
    """The store of record rejected the operation for this caller."""
    pass
