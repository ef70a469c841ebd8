"""
Supabase Storage Implementation

DESIGN DECISION: Supabase (PostgREST + Postgres) is the store of record.
- Filtering by time range and owner set happens server-side
- Row-level security decides who may read or write what
- Deletes are soft: deleted_at is set, the row stays

Transport hiccups are retried with exponential backoff. Everything
else is mapped onto the storage error taxonomy and raised; nothing
here touches the local transaction log.
"""

from datetime import datetime
from typing import Any, Iterable, Optional, Type

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from spendsync.config import SupabaseSettings, get_settings
from spendsync.models.transaction import (
    FamilyMember,
    FetchResult,
    TransactionInput,
    TransactionRecord,
    TransactionUpdateInput,
)
from spendsync.services.storage.interface import (
    NotFoundError,
    PermissionError,
    RemoteFetchError,
    RemoteWriteError,
    StorageError,
    TransactionStoreInterface,
)


TRANSACTION_SELECT = "*, categories(id, name, icon, color, type)"
FAMILY_MEMBER_SELECT = "family_id, user_id, role, deleted_at"

# Postgres insufficient_privilege, PostgREST JWT errors
PERMISSION_CODES = {"42501", "PGRST301", "PGRST302", "401", "403"}

logger = structlog.get_logger(__name__)


def map_api_error(
    error: APIError,
    fallback: Type[StorageError],
    operation: str,
) -> StorageError:
    """Translate a PostgREST error into the storage taxonomy."""
    code = str(error.code) if error.code is not None else ""
    message = error.message or str(error)
    if code in PERMISSION_CODES:
        return PermissionError(f"{operation} rejected: {message}")
    return fallback(f"{operation} failed ({code or 'unknown'}): {message}")


class SupabaseTransactionStore(TransactionStoreInterface):
    """
    Supabase implementation of the transactions store of record.

    The async client is created lazily on first use unless one is injected.
    """

    def __init__(
        self,
        client: Optional[AsyncClient] = None,
        settings: Optional[SupabaseSettings] = None,
    ):
        self._client = client
        self._settings = settings or get_settings().supabase

    async def get_client(self) -> AsyncClient:
        if self._client is None:
            try:
                self._client = await acreate_client(
                    self._settings.url,
                    self._settings.key,
                )
            except Exception as e:
                raise RemoteFetchError(f"Failed to connect to Supabase: {e}") from e
        return self._client

    async def _table(self, name: str):
        client = await self.get_client()
        return client.table(name)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _execute(self, query) -> Any:
        return await query.execute()

    async def _run(
        self,
        query,
        fallback: Type[StorageError],
        operation: str,
    ) -> Any:
        try:
            return await self._execute(query)
        except APIError as e:
            logger.warning("supabase_api_error", operation=operation, code=e.code, message=e.message)
            raise map_api_error(e, fallback, operation) from e
        except httpx.HTTPError as e:
            logger.warning("supabase_transport_error", operation=operation, error=str(e))
            raise fallback(f"{operation} failed: {e}") from e

    async def fetch_transactions(
        self,
        start: datetime,
        end: datetime,
        user_ids: Iterable[str],
    ) -> FetchResult:
        """Fetch a window of transactions, newest first."""
        table = await self._table(self._settings.transactions_table)
        query = (
            table.select(TRANSACTION_SELECT, count="exact")
            .in_("created_by", sorted(set(user_ids)))
            .is_("deleted_at", "null")
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at", desc=True)
        )
        response = await self._run(query, RemoteFetchError, "fetch transactions")

        try:
            records = [TransactionRecord.model_validate(row) for row in response.data or []]
        except ValueError as e:
            raise RemoteFetchError(f"Malformed transaction row: {e}") from e

        return FetchResult(
            success=True,
            data=records,
            count=response.count if response.count is not None else len(records),
        )

    async def create_transactions(
        self,
        items: list[TransactionInput],
        created_by: str,
    ) -> list[TransactionRecord]:
        table = await self._table(self._settings.transactions_table)
        rows = [item.to_insert_payload(created_by) for item in items]
        response = await self._run(table.insert(rows), RemoteWriteError, "create transactions")

        data = response.data or []
        if len(data) != len(rows):
            raise RemoteWriteError(
                f"Insert acknowledged {len(data)} of {len(rows)} transactions"
            )
        try:
            return [TransactionRecord.model_validate(row) for row in data]
        except ValueError as e:
            raise RemoteWriteError(f"Malformed inserted row: {e}") from e

    async def update_transaction(
        self,
        transaction_id: str,
        update: TransactionUpdateInput,
    ) -> TransactionRecord:
        table = await self._table(self._settings.transactions_table)
        query = (
            table.update(update.to_update_payload())
            .eq("id", transaction_id)
            .is_("deleted_at", "null")
        )
        response = await self._run(query, RemoteWriteError, "update transaction")

        if not response.data:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        try:
            return TransactionRecord.model_validate(response.data[0])
        except ValueError as e:
            raise RemoteWriteError(f"Malformed updated row: {e}") from e

    async def soft_delete_transaction(
        self,
        transaction_id: str,
        deleted_at: datetime,
    ) -> None:
        table = await self._table(self._settings.transactions_table)
        query = (
            table.update({"deleted_at": deleted_at.isoformat()})
            .eq("id", transaction_id)
        )
        response = await self._run(query, RemoteWriteError, "delete transaction")
        if not response.data:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

    async def fetch_family_members(self, user_id: str) -> list[FamilyMember]:
        """
        Fetch active memberships visible to the user.

        Row-level security limits the result to the user's own families.
        """
        table = await self._table(self._settings.family_members_table)
        query = table.select(FAMILY_MEMBER_SELECT).is_("deleted_at", "null")
        response = await self._run(query, RemoteFetchError, "fetch family members")

        try:
            return [FamilyMember.model_validate(row) for row in response.data or []]
        except ValueError as e:
            raise RemoteFetchError(f"Malformed family member row: {e}") from e
