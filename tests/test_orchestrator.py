"""
Integration tests for the ExpenseTracker session.

Full flows with the in-memory store of record and a hand-driven feed.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from spendsync.models.audit import AuditEventType
from spendsync.orchestrator import ExpenseTracker, create_app_components
from spendsync.queries import BudgetBounds, BudgetStatus
from spendsync.realtime import SubscriptionState
from spendsync.services.storage import RemoteFetchError, RemoteWriteError
from spendsync.validation import ValidationError

from conftest import (
    NOW,
    PARTNER,
    VIEWER,
    FakeTransactionStore,
    insert_payload,
    make_record,
    member_payload,
    membership,
    settle,
    update_payload,
)


FOOD = {"id": "c1", "name": "Food", "icon": "utensils", "color": "#e67e22", "type": "expense"}


def tracker_for(remote, feed=None, **kwargs) -> ExpenseTracker:
    kwargs.setdefault("timezone_name", "Asia/Jakarta")
    return ExpenseTracker(VIEWER, remote, feed=feed, clock=lambda: NOW, **kwargs)


def audit_types(tracker) -> list[AuditEventType]:
    return [e.event_type for e in tracker.audit_logger.history]


class TestLoading:
    """Tests for session loads."""

    @pytest.mark.asyncio
    async def test_family_load(self, remote):
        """Test family mode shows every member's transactions."""
        remote.rows = [make_record(created_by=VIEWER), make_record(created_by=PARTNER)]
        tracker = tracker_for(remote)

        assert await tracker.load()
        assert tracker.store.window.label == "2024-05"
        assert tracker.store.scope_user_ids == frozenset({VIEWER, PARTNER})
        assert tracker.monthly_count == 2
        assert AuditEventType.TRANSACTIONS_LOADED in audit_types(tracker)

    @pytest.mark.asyncio
    async def test_solo_load(self, remote):
        """Test solo mode shows only the viewer's transactions."""
        remote.rows = [make_record(created_by=VIEWER), make_record(created_by=PARTNER)]
        tracker = tracker_for(remote, family_inclusive=False)

        await tracker.load()
        assert tracker.monthly_count == 1

    @pytest.mark.asyncio
    async def test_load_failure_is_audited(self, remote):
        """Test a failed load raises and keeps the previous snapshot."""
        remote.rows = [make_record(amount="100")]
        tracker = tracker_for(remote)
        await tracker.load()

        remote.fetch_error = RemoteFetchError("down")
        with pytest.raises(RemoteFetchError):
            await tracker.load()

        assert tracker.monthly_total == Decimal("100.00")
        assert AuditEventType.LOAD_FAILED in audit_types(tracker)

    @pytest.mark.asyncio
    async def test_later_load_wins_over_slow_scope_lookup(self, remote):
        """Test an earlier load whose membership lookup returns last cannot restore the old scope."""
        remote.rows = [make_record(created_by=PARTNER, amount="40000"), make_record(amount="10000")]
        tracker = tracker_for(remote)
        await tracker.load()
        remote.hold_member_fetches = True

        first = asyncio.create_task(tracker.load())
        await asyncio.sleep(0)
        remote.members = [membership(VIEWER), membership(PARTNER, deleted_at=NOW)]
        second = asyncio.create_task(tracker.load())
        await asyncio.sleep(0)

        remote.pending_member_fetches[1].set_result(None)
        assert await second is True
        remote.pending_member_fetches[0].set_result(None)
        assert await first is False

        assert tracker.store.scope_user_ids == frozenset({VIEWER})
        assert tracker.monthly_total == Decimal("10000.00")
        assert AuditEventType.LOAD_SUPERSEDED in audit_types(tracker)

    @pytest.mark.asyncio
    async def test_reload_follows_month_rollover(self, remote):
        """Test a long-lived session reloads the month it is now in."""
        now = [NOW]
        remote.clock = lambda: now[0]
        tracker = ExpenseTracker(VIEWER, remote, clock=lambda: now[0], timezone_name="Asia/Jakarta")
        await tracker.load()
        assert tracker.store.window.label == "2024-05"

        now[0] = datetime(2024, 6, 2, 3, 0, tzinfo=timezone.utc)
        await tracker.load()
        assert tracker.store.window.label == "2024-06"

        await tracker.add_transactions([{"description": "Kopi", "amount": 15000}])
        assert tracker.monthly_count == 1


class TestWrites:
    """Tests for create/update/delete flows."""

    @pytest.mark.asyncio
    async def test_add_then_echo_counts_once(self, remote, feed):
        """Test Kopi 15000 then its realtime echo raises the total by exactly 15000.00."""
        tracker = tracker_for(remote, feed)
        await tracker.load()
        await tracker.start_realtime()
        before = tracker.monthly_total

        created = await tracker.add_transactions([{"description": "Kopi", "amount": 15000}])
        channel = feed.channels["transactions"]
        channel.put_payload(insert_payload(created[0]))
        await settle(channel)

        assert len(tracker.store.active_records()) == 1
        assert tracker.monthly_total - before == Decimal("15000.00")
        assert tracker.today_total == Decimal("15000.00")
        assert tracker.today_count == 1
        await tracker.dispose()

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_remote(self, remote):
        """Test local validation failures are not sent."""
        tracker = tracker_for(remote)
        await tracker.load()

        with pytest.raises(ValidationError):
            await tracker.add_transactions([{"description": "Kopi", "amount": -5}])

        assert remote.created_batches == []
        assert AuditEventType.VALIDATION_FAILED in audit_types(tracker)

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_log_unchanged(self, remote):
        """Test nothing is inserted optimistically before the acknowledgment."""
        tracker = tracker_for(remote)
        await tracker.load()
        remote.write_error = RemoteWriteError("insert failed")

        with pytest.raises(RemoteWriteError):
            await tracker.add_transactions([{"description": "Kopi", "amount": 15000}])

        assert len(tracker.store) == 0
        assert AuditEventType.WRITE_FAILED in audit_types(tracker)

    @pytest.mark.asyncio
    async def test_update_and_delete(self, remote):
        """Test update replaces locally and delete hides the record."""
        record = make_record(amount="100", description="Teh")
        remote.rows = [record]
        tracker = tracker_for(remote)
        await tracker.load()

        updated = await tracker.update_transaction(record.id, {"amount": "250"})
        assert updated.amount == Decimal("250")
        assert tracker.monthly_total == Decimal("250.00")

        await tracker.delete_transaction(record.id)
        assert tracker.monthly_total == Decimal("0.00")
        assert remote.deletes == [(record.id, NOW)]
        assert tracker.store.get(record.id).deleted_at == NOW

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_record(self, remote):
        """Test a remote delete failure does not touch the log."""
        record = make_record()
        remote.rows = [record]
        tracker = tracker_for(remote)
        await tracker.load()
        remote.write_error = RemoteWriteError("rls")

        with pytest.raises(RemoteWriteError):
            await tracker.delete_transaction(record.id)
        assert tracker.monthly_count == 1


class TestFamilyRealtime:
    """Tests for membership-driven reloads through the feed."""

    @pytest.mark.asyncio
    async def test_member_removal_hides_their_transactions(self, remote, feed):
        """Test removing the only co-member shrinks the scope and reloads."""
        partner_row = make_record(created_by=PARTNER, amount="40000")
        viewer_row = make_record(created_by=VIEWER, amount="10000")
        remote.rows = [partner_row, viewer_row]
        tracker = tracker_for(remote, feed)
        await tracker.load()
        await tracker.start_realtime()
        assert tracker.monthly_total == Decimal("50000.00")

        removed = membership(PARTNER, deleted_at=NOW + timedelta(minutes=1))
        remote.members = [membership(VIEWER), removed]
        channel = feed.channels["family_members"]
        channel.put_payload(member_payload("UPDATE", removed))
        await settle(channel)

        assert tracker.store.scope_user_ids == frozenset({VIEWER})
        assert [r.id for r in tracker.store.active_records()] == [viewer_row.id]
        assert tracker.monthly_total == Decimal("10000.00")
        assert AuditEventType.FAMILY_SCOPE_CHANGED in audit_types(tracker)
        await tracker.dispose()


class TestCategoryDisplay:
    """Tests for category names surviving writes and realtime edits."""

    @pytest.mark.asyncio
    async def test_realtime_update_keeps_category_bucket(self, remote, feed):
        """Test an edited Food record stays in the Food bucket."""
        record = make_record(amount="20000", category=FOOD)
        remote.rows = [record]
        tracker = tracker_for(remote, feed)
        await tracker.load()
        await tracker.start_realtime()

        edited = make_record(amount="25000", record_id=record.id, category="c1")
        channel = feed.channels["transactions"]
        channel.put_payload(update_payload(edited))
        await settle(channel)

        summary = tracker.summary_by_category()
        assert [(b.label, b.total) for b in summary] == [("Food", Decimal("25000.00"))]
        await tracker.dispose()

    @pytest.mark.asyncio
    async def test_created_record_joins_its_category_bucket(self, remote):
        """Test a create acknowledged with a bare category id is grouped by name."""
        remote.rows = [make_record(amount="20000", category=FOOD)]
        tracker = tracker_for(remote)
        await tracker.load()

        await tracker.add_transactions([{"description": "Bakso", "amount": 5000, "category": "c1"}])
        summary = tracker.summary_by_category()
        assert [(b.label, b.total, b.count) for b in summary] == [("Food", Decimal("25000.00"), 2)]


class TestRealtimeLifecycle:
    """Tests for realtime start/stop and degradation."""

    @pytest.mark.asyncio
    async def test_degraded_feed_keeps_snapshot(self, remote, feed):
        """Test a failed channel degrades without raising."""
        remote.rows = [make_record(amount="100")]
        feed.fail_open.add("transactions")
        tracker = tracker_for(remote, feed)
        await tracker.load()

        status = await tracker.start_realtime()
        assert status["transactions"] == SubscriptionState.CHANNEL_ERROR
        assert tracker.is_degraded
        assert tracker.monthly_total == Decimal("100.00")
        await tracker.dispose()

    @pytest.mark.asyncio
    async def test_solo_mode_subscribes_to_own_rows(self, remote, feed):
        """Test solo mode filters the feed and skips memberships."""
        tracker = tracker_for(remote, feed, family_inclusive=False)
        await tracker.start_realtime()
        assert feed.opened == [("transactions", f"created_by=eq.{VIEWER}")]
        await tracker.dispose()

    @pytest.mark.asyncio
    async def test_context_manager_disposes(self, remote, feed):
        """Test create → use → dispose releases everything."""
        remote.rows = [make_record()]
        async with tracker_for(remote, feed) as tracker:
            await tracker.load()
            await tracker.start_realtime()

        assert tracker.is_disposed
        assert sorted(feed.closed) == ["family_members", "transactions"]
        assert set(tracker.realtime_status.values()) == {SubscriptionState.UNSUBSCRIBED}
        assert len(tracker.store) == 0
        with pytest.raises(RuntimeError):
            await tracker.load()
        await tracker.dispose()

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self):
        """Test two sessions are fully independent."""
        first = tracker_for(FakeTransactionStore([make_record(amount="1")]))
        second = tracker_for(FakeTransactionStore())
        await first.load()
        await second.load()
        assert first.monthly_count == 1
        assert second.monthly_count == 0


class TestSummaries:
    """Tests for read-through aggregates."""

    @pytest.mark.asyncio
    async def test_budget_status(self, remote):
        """Test the month's spending is classified against the bounds."""
        remote.rows = [make_record(amount="230000")]
        tracker = tracker_for(remote)
        await tracker.load()

        assert tracker.budget_status() == BudgetStatus.WITHIN
        assert tracker.budget_status(BudgetBounds(lower=0, upper=100000)) == BudgetStatus.OVER

    @pytest.mark.asyncio
    async def test_breakdowns_and_formatting(self, remote):
        """Test breakdowns come from the log and amounts format as Rupiah."""
        remote.rows = [make_record(amount="1500000", description="Sewa")]
        tracker = tracker_for(remote)
        await tracker.load()

        assert tracker.summary_by_description()[0].label == "Sewa"
        assert tracker.summary_by_category()[0].label == "Uncategorized"
        assert tracker.format_amount(tracker.monthly_total) == "Rp 1.500.000"


class TestFactory:
    """Tests for wiring from settings."""

    def test_create_app_components(self, monkeypatch):
        """Test the factory builds a Supabase-backed session."""
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.setenv("SUPABASE_KEY", "anon-key")
        monkeypatch.setenv("FAMILY_INCLUSIVE", "true")

        tracker = create_app_components(VIEWER)
        assert tracker.viewer_id == VIEWER
        assert [s.table for s in tracker.subscriptions] == ["transactions", "family_members"]

    def test_local_stack_disables_realtime(self, monkeypatch):
        """Test no feed is wired against a local Supabase."""
        monkeypatch.setenv("SUPABASE_URL", "http://127.0.0.1:54321")
        monkeypatch.setenv("SUPABASE_KEY", "anon-key")

        tracker = create_app_components(VIEWER)
        assert tracker.subscriptions == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
