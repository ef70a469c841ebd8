"""
Tests for the Supabase adapters.

The Supabase client is mocked; no network calls are made.
"""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError
from tenacity import wait_none

from spendsync.config import SupabaseSettings
from spendsync.models.transaction import TransactionInput, TransactionUpdateInput
from spendsync.realtime import SupabaseRealtimeFeed
from spendsync.services.storage import (
    NotFoundError,
    PermissionError,
    RemoteFetchError,
    RemoteWriteError,
    SupabaseTransactionStore,
)
from spendsync.services.storage.supabase_store import map_api_error

from conftest import PARTNER, VIEWER


SETTINGS = SupabaseSettings(url="https://example.supabase.co", key="anon-key")

ROW = {
    "id": "tx-1",
    "description": "Kopi",
    "amount": "15000.00",
    "transaction_type": "expense",
    "category": "c1",
    "categories": {"id": "c1", "name": "Food", "icon": None, "color": None, "type": "expense"},
    "created_by": VIEWER,
    "created_at": "2024-05-15T03:00:00+00:00",
    "updated_at": None,
    "deleted_at": None,
}


def mock_client(data=None, count=None, error=None):
    """Client whose query builder chains and resolves to `data` (or raises `error`)."""
    builder = MagicMock()
    for name in ("select", "insert", "update", "in_", "is_", "gte", "lte", "order", "eq"):
        getattr(builder, name).return_value = builder
    if error is not None:
        builder.execute = AsyncMock(side_effect=error)
    else:
        builder.execute = AsyncMock(return_value=SimpleNamespace(data=data, count=count))
    client = MagicMock()
    client.table.return_value = builder
    return client, builder


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(SupabaseTransactionStore._execute.retry, "wait", wait_none())


class TestFetch:
    """Tests for reading transactions and memberships."""

    @pytest.mark.asyncio
    async def test_fetch_builds_filtered_query(self):
        """Test window, owner and soft-delete filters are applied server-side."""
        client, builder = mock_client(data=[ROW], count=1)
        store = SupabaseTransactionStore(client, SETTINGS)
        start = datetime(2024, 5, 1, tzinfo=timezone.utc)
        end = datetime(2024, 5, 31, 23, 59, 59, tzinfo=timezone.utc)

        result = await store.fetch_transactions(start, end, [VIEWER, PARTNER, VIEWER])

        client.table.assert_called_with("transactions")
        builder.in_.assert_called_with("created_by", sorted({VIEWER, PARTNER}))
        builder.is_.assert_called_with("deleted_at", "null")
        builder.gte.assert_called_with("created_at", start.isoformat())
        builder.lte.assert_called_with("created_at", end.isoformat())
        builder.order.assert_called_with("created_at", desc=True)
        assert result.count == 1
        assert result.data[0].category_name == "Food"

    @pytest.mark.asyncio
    async def test_malformed_row(self):
        """Test a row that does not decode is a fetch error."""
        client, _ = mock_client(data=[{"id": "tx-1"}])
        store = SupabaseTransactionStore(client, SETTINGS)
        with pytest.raises(RemoteFetchError):
            await store.fetch_transactions(datetime.now(timezone.utc), datetime.now(timezone.utc), [VIEWER])

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        """Test transient failures retry three times then surface."""
        client, builder = mock_client(error=httpx.ConnectError("reset"))
        store = SupabaseTransactionStore(client, SETTINGS)

        with pytest.raises(RemoteFetchError):
            await store.fetch_transactions(datetime.now(timezone.utc), datetime.now(timezone.utc), [VIEWER])
        assert builder.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_permission_denied(self):
        """Test RLS rejections map to PermissionError."""
        error = APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None})
        client, _ = mock_client(error=error)
        store = SupabaseTransactionStore(client, SETTINGS)

        with pytest.raises(PermissionError):
            await store.fetch_transactions(datetime.now(timezone.utc), datetime.now(timezone.utc), [VIEWER])

    @pytest.mark.asyncio
    async def test_family_members(self):
        """Test membership rows decode."""
        client, builder = mock_client(data=[
            {"family_id": 1, "user_id": VIEWER, "role": "owner", "deleted_at": None},
            {"family_id": 1, "user_id": PARTNER, "role": "member", "deleted_at": None},
        ])
        store = SupabaseTransactionStore(client, SETTINGS)

        members = await store.fetch_family_members(VIEWER)
        client.table.assert_called_with("family_members")
        assert [m.user_id for m in members] == [VIEWER, PARTNER]
        assert members[0].family_id == "1"


class TestWrites:
    """Tests for insert/update/soft delete."""

    @pytest.mark.asyncio
    async def test_create(self):
        """Test inserted rows come back as records."""
        client, builder = mock_client(data=[ROW])
        store = SupabaseTransactionStore(client, SETTINGS)

        created = await store.create_transactions([TransactionInput(description="Kopi", amount="15000")], VIEWER)
        sent = builder.insert.call_args.args[0]
        assert sent[0]["created_by"] == VIEWER
        assert created[0].id == "tx-1"

    @pytest.mark.asyncio
    async def test_create_partial_ack(self):
        """Test an insert acknowledging fewer rows than sent is an error."""
        client, _ = mock_client(data=[ROW])
        store = SupabaseTransactionStore(client, SETTINGS)
        items = [TransactionInput(description="Kopi", amount="1"), TransactionInput(description="Teh", amount="2")]

        with pytest.raises(RemoteWriteError):
            await store.create_transactions(items, VIEWER)

    @pytest.mark.asyncio
    async def test_write_api_error(self):
        """Test other PostgREST errors map to RemoteWriteError."""
        error = APIError({"message": "violates check", "code": "23514", "hint": None, "details": None})
        client, _ = mock_client(error=error)
        store = SupabaseTransactionStore(client, SETTINGS)

        with pytest.raises(RemoteWriteError) as exc_info:
            await store.create_transactions([TransactionInput(description="Kopi", amount="1")], VIEWER)
        assert not isinstance(exc_info.value, PermissionError)

    @pytest.mark.asyncio
    async def test_update_missing_row(self):
        """Test an update matching nothing is NotFoundError."""
        client, builder = mock_client(data=[])
        store = SupabaseTransactionStore(client, SETTINGS)

        with pytest.raises(NotFoundError):
            await store.update_transaction("tx-9", TransactionUpdateInput(amount="5"))
        builder.eq.assert_called_with("id", "tx-9")

    @pytest.mark.asyncio
    async def test_soft_delete_sets_deleted_at(self):
        """Test delete is an update of deleted_at."""
        client, builder = mock_client(data=[ROW])
        store = SupabaseTransactionStore(client, SETTINGS)
        at = datetime(2024, 5, 15, tzinfo=timezone.utc)

        await store.soft_delete_transaction("tx-1", at)
        builder.update.assert_called_with({"deleted_at": at.isoformat()})


class TestErrorMapping:
    """Tests for map_api_error."""

    @pytest.mark.parametrize("code", ["42501", "PGRST301", "401", "403"])
    def test_permission_codes(self, code):
        """Test auth failures become PermissionError."""
        error = APIError({"message": "nope", "code": code, "hint": None, "details": None})
        assert isinstance(map_api_error(error, RemoteFetchError, "fetch"), PermissionError)

    def test_fallback(self):
        """Test other codes use the fallback type."""
        error = APIError({"message": "bad", "code": "22P02", "hint": None, "details": None})
        mapped = map_api_error(error, RemoteWriteError, "update")
        assert type(mapped) is RemoteWriteError
        assert "22P02" in str(mapped)


class TestRealtimeFeed:
    """Tests for the Supabase realtime adapter."""

    @pytest.mark.asyncio
    async def test_callbacks_feed_the_channel(self):
        """Test change and status callbacks end up on the FeedChannel."""
        realtime_channel = MagicMock()
        realtime_channel.subscribe = AsyncMock()
        client = MagicMock()
        client.channel.return_value = realtime_channel
        client.remove_channel = AsyncMock()

        feed = SupabaseRealtimeFeed(AsyncMock(return_value=client), SETTINGS)
        channel = await feed.open("transactions", "created_by=eq.user-viewer")

        kwargs = realtime_channel.on_postgres_changes.call_args.kwargs
        assert kwargs["table"] == "transactions"
        assert kwargs["filter"] == "created_by=eq.user-viewer"
        kwargs["callback"]({"data": {"type": "INSERT", "record": {"id": "tx-1"}}})
        status_callback = realtime_channel.subscribe.call_args.args[0]
        status_callback(SimpleNamespace(value="SUBSCRIBED"), None)
        await asyncio.sleep(0)

        first = await channel.get()
        second = await channel.get()
        assert first.payload["data"]["type"] == "INSERT"
        assert second.status == "SUBSCRIBED"

        await feed.close(channel)
        client.remove_channel.assert_awaited_once_with(realtime_channel)
        await feed.close(channel)
        client.remove_channel.assert_awaited_once()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
