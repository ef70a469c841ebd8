"""
Shared fixtures for SpendSync tests.

No real Supabase calls: the store of record and the realtime feed are
replaced by in-memory fakes that tests can pause, fail and inspect.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Iterable, Optional

import pytest

from spendsync.models.transaction import (
    FamilyMember,
    FetchResult,
    TransactionInput,
    TransactionRecord,
    TransactionUpdateInput,
)
from spendsync.realtime.channel import FeedChannel, RealtimeFeedInterface
from spendsync.services.storage.interface import (
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
)


VIEWER = "user-viewer"
PARTNER = "user-partner"
STRANGER = "user-stranger"
FAMILY = "family-1"

# Mid-May 2024, 10:00 in Jakarta
NOW = datetime(2024, 5, 15, 3, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def make_record(
    amount="10000",
    description="Kopi",
    created_by: str = VIEWER,
    created_at: Optional[datetime] = None,
    kind: str = "expense",
    category=None,
    record_id: Optional[str] = None,
    deleted_at: Optional[datetime] = None,
) -> TransactionRecord:
    """Build a TransactionRecord from wire-shaped fields."""
    return TransactionRecord.model_validate({
        "id": record_id or f"tx-{next(_ids)}",
        "description": description,
        "amount": amount,
        "transaction_type": kind,
        "category": category,
        "created_by": created_by,
        "created_at": created_at or NOW,
        "deleted_at": deleted_at,
    })


def membership(user_id: str, family_id: str = FAMILY, deleted_at=None) -> FamilyMember:
    return FamilyMember(family_id=family_id, user_id=user_id, deleted_at=deleted_at)


class FakeTransactionStore(TransactionStoreInterface):
    """
    In-memory store of record.

    Set `hold_fetches = True` to make every fetch wait on a future in
    `pending_fetches`, which the test resolves (or fails) in any order.
    `hold_member_fetches` does the same for membership lookups, which
    read the members at call time.
    """

    def __init__(self, rows: Iterable[TransactionRecord] = (), members: Iterable[FamilyMember] = ()):
        self.rows: list[TransactionRecord] = list(rows)
        self.members: list[FamilyMember] = list(members)
        self.clock = lambda: NOW

        self.hold_fetches = False
        self.pending_fetches: list[asyncio.Future] = []
        self.hold_member_fetches = False
        self.pending_member_fetches: list[asyncio.Future] = []
        self.fetch_error: Optional[StorageError] = None
        self.write_error: Optional[StorageError] = None

        self.fetch_calls: list[tuple[datetime, datetime, frozenset]] = []
        self.created_batches: list[list[TransactionInput]] = []
        self.updates: list[tuple[str, TransactionUpdateInput]] = []
        self.deletes: list[tuple[str, datetime]] = []

    def _snapshot(self, start, end, user_ids) -> FetchResult:
        data = [
            r for r in self.rows
            if r.deleted_at is None
            and r.created_by in user_ids
            and start <= r.created_at <= end
        ]
        data.sort(key=lambda r: r.created_at, reverse=True)
        return FetchResult(success=True, data=data, count=len(data))

    async def fetch_transactions(self, start, end, user_ids) -> FetchResult:
        user_ids = frozenset(user_ids)
        self.fetch_calls.append((start, end, user_ids))
        if self.hold_fetches:
            gate = asyncio.get_running_loop().create_future()
            self.pending_fetches.append(gate)
            await gate
        if self.fetch_error is not None:
            raise self.fetch_error
        return self._snapshot(start, end, user_ids)

    async def create_transactions(self, items, created_by) -> list[TransactionRecord]:
        self.created_batches.append(list(items))
        if self.write_error is not None:
            raise self.write_error
        created = [
            make_record(
                amount=item.amount,
                description=item.description,
                created_by=created_by,
                created_at=self.clock(),
                kind=item.kind.value,
                category={"id": item.category} if item.category else None,
            )
            for item in items
        ]
        self.rows.extend(created)
        return created

    async def update_transaction(self, transaction_id, update) -> TransactionRecord:
        self.updates.append((transaction_id, update))
        if self.write_error is not None:
            raise self.write_error
        for index, row in enumerate(self.rows):
            if row.id == transaction_id and row.deleted_at is None:
                changes = {}
                if update.description is not None:
                    changes["description"] = update.description
                if update.amount is not None:
                    changes["amount"] = update.amount
                if update.kind is not None:
                    changes["kind"] = update.kind
                changes["updated_at"] = self.clock()
                self.rows[index] = row.model_copy(update=changes)
                return self.rows[index]
        raise NotFoundError(f"Transaction not found: {transaction_id}")

    async def soft_delete_transaction(self, transaction_id, deleted_at) -> None:
        self.deletes.append((transaction_id, deleted_at))
        if self.write_error is not None:
            raise self.write_error
        for index, row in enumerate(self.rows):
            if row.id == transaction_id:
                self.rows[index] = row.mark_deleted(deleted_at)
                return
        raise NotFoundError(f"Transaction not found: {transaction_id}")

    async def fetch_family_members(self, user_id) -> list[FamilyMember]:
        if self.fetch_error is not None:
            raise self.fetch_error
        active = [m for m in self.members if m.is_active]
        if self.hold_member_fetches:
            gate = asyncio.get_running_loop().create_future()
            self.pending_member_fetches.append(gate)
            await gate
        return active


class FakeFeed(RealtimeFeedInterface):
    """Realtime feed whose channels the test drives directly."""

    def __init__(self):
        self.channels: dict[str, FeedChannel] = {}
        self.fail_open: set[str] = set()
        self.opened: list[tuple[str, Optional[str]]] = []
        self.closed: list[str] = []

    async def open(self, table, event_filter=None) -> FeedChannel:
        self.opened.append((table, event_filter))
        if table in self.fail_open:
            raise ConnectionRefusedError("realtime unavailable")
        channel = FeedChannel(table, event_filter)
        self.channels[table] = channel
        return channel

    async def close(self, channel) -> None:
        self.closed.append(channel.table)
        channel.close()


def insert_payload(record: TransactionRecord) -> dict:
    return {"eventType": "INSERT", "table": "transactions", "new": record.to_record_dict(), "old": {}}


def update_payload(record: TransactionRecord) -> dict:
    return {"eventType": "UPDATE", "table": "transactions", "new": record.to_record_dict(), "old": {"id": record.id}}


def delete_payload(transaction_id: str) -> dict:
    return {"eventType": "DELETE", "table": "transactions", "new": {}, "old": {"id": transaction_id}}


def member_payload(event_type: str, member: FamilyMember) -> dict:
    row = member.model_dump(mode="json")
    if event_type == "DELETE":
        return {"eventType": "DELETE", "table": "family_members", "new": {}, "old": row}
    return {"eventType": event_type, "table": "family_members", "new": row, "old": {}}


async def settle(channel: Optional[FeedChannel] = None) -> None:
    """Let queued feed messages and pending callbacks run."""
    if channel is not None:
        await asyncio.wait_for(channel.join(), timeout=1)
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def remote() -> FakeTransactionStore:
    return FakeTransactionStore(members=[membership(VIEWER), membership(PARTNER)])


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()
