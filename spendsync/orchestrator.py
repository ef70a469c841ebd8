"""
Main Orchestrator for SpendSync

This module ties together all the components and defines the
session-level flows:
1. Load (family scope → fetch window → commit snapshot)
2. Write (validate → remote write → local log)
3. Live updates (feed → subscription → reconciler → local log)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Invalid input never reaches the store of record
- The local log reflects a write only after the remote acknowledged it
- A realtime failure degrades to the last snapshot, it never raises
- Every step is audited

ExpenseTracker is an explicitly constructed aggregate with a
create → use → dispose lifecycle. Nothing is module-global, so
independent instances (one per test, one per viewer) never share state.

    async with create_app_components(viewer_id) as tracker:
        await tracker.load()
        await tracker.start_realtime()
        await tracker.add_transactions([{"description": "Kopi", "amount": 15000}])
        tracker.monthly_total
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Union
from uuid import UUID
from zoneinfo import ZoneInfo

from spendsync import money
from spendsync.audit import AuditLogger, create_correlation_id
from spendsync.config import get_settings
from spendsync.models.audit import AuditEventBuilder
from spendsync.models.transaction import (
    AggregateBucket,
    FamilyScope,
    PeriodWindow,
    TransactionInput,
    TransactionRecord,
    TransactionUpdateInput,
)
from spendsync.queries import (
    AggregationEngine,
    BudgetBounds,
    BudgetStatus,
    classify_with_bounds,
)
from spendsync.queries.aggregation import DEFAULT_UNCATEGORIZED_LABEL
from spendsync.realtime import (
    RealtimeFeedInterface,
    RealtimeReconciler,
    Subscription,
    SubscriptionState,
    SupabaseRealtimeFeed,
)
from spendsync.services.storage import (
    StorageError,
    SupabaseTransactionStore,
    TransactionStoreInterface,
)
from spendsync.store import TransactionLogStore
from spendsync.validation import TransactionValidator, ValidationError


class ExpenseTracker:
    """
    One viewer's session over the transaction log.

    Owns the log, the aggregation engine and the realtime subscriptions.
    All collaborators are injected; nothing is created implicitly
    except the validator and a local-only audit logger.
    """

    def __init__(
        self,
        viewer_id: str,
        remote: TransactionStoreInterface,
        feed: Optional[RealtimeFeedInterface] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        family_inclusive: bool = True,
        timezone_name: str = "UTC",
        uncategorized_label: str = DEFAULT_UNCATEGORIZED_LABEL,
        budget_bounds: Optional[BudgetBounds] = None,
        transactions_table: str = "transactions",
        family_members_table: str = "family_members",
        clock: Optional[Callable[[], datetime]] = None,
        currency_symbol: str = "Rp",
        thousands_separator: str = ".",
        decimal_separator: str = ",",
    ):
        """
        Initialize the session.

        Args:
            viewer_id: Current user; immutable for the session
            remote: Store of record
            feed: Realtime feed; None disables live updates
            family_inclusive: Show transactions of every family member
            timezone_name: Timezone for month windows and "today"
            budget_bounds: Bounds for budget_status; defaults apply when None
            clock: Returns the current UTC time (injectable for tests)
        """
        self._viewer_id = viewer_id
        self._remote = remote
        self._feed = feed
        self._validator = validator or TransactionValidator()
        self._audit_logger = audit_logger or AuditLogger()
        self._family_inclusive = family_inclusive
        self._timezone = timezone_name
        self._budget_bounds = budget_bounds or BudgetBounds()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._currency = {
            "symbol": currency_symbol,
            "thousands_separator": thousands_separator,
            "decimal_separator": decimal_separator,
        }
        self._disposed = False

        self._store = TransactionLogStore(remote, viewer_id, family_inclusive)
        self._aggregates = AggregationEngine(self._store, timezone_name, uncategorized_label)
        self._reconciler = RealtimeReconciler(
            self._store,
            on_family_change=self.refresh_family_scope,
            audit_logger=self._audit_logger,
        )

        self._subscriptions: list[Subscription] = []
        if feed is not None:
            # Without family mode only the viewer's own rows are of interest
            event_filter = None if family_inclusive else f"created_by=eq.{viewer_id}"
            self._subscriptions.append(Subscription(
                feed,
                transactions_table,
                self._reconciler.handle_transaction_event,
                audit_logger=self._audit_logger,
                event_filter=event_filter,
            ))
            if family_inclusive:
                self._subscriptions.append(Subscription(
                    feed,
                    family_members_table,
                    self._reconciler.handle_family_event,
                    audit_logger=self._audit_logger,
                ))

    async def __aenter__(self) -> "ExpenseTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    def _ensure_open(self) -> None:
        if self._disposed:
            raise RuntimeError("ExpenseTracker has been disposed")

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    @property
    def store(self) -> TransactionLogStore:
        return self._store

    @property
    def aggregates(self) -> AggregationEngine:
        return self._aggregates

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    @property
    def realtime_status(self) -> dict[str, SubscriptionState]:
        return {s.table: s.state for s in self._subscriptions}

    @property
    def is_degraded(self) -> bool:
        """True when any live feed has failed and the view may be stale."""
        return any(s.state == SubscriptionState.CHANNEL_ERROR for s in self._subscriptions)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # =========================================================================
    # LOADING
    # =========================================================================

    def current_window(self) -> PeriodWindow:
        return PeriodWindow.current(self._timezone, self._clock())

    async def _resolve_scope(self) -> FamilyScope:
        if not self._family_inclusive:
            return FamilyScope.solo(self._viewer_id)
        members = await self._remote.fetch_family_members(self._viewer_id)
        return FamilyScope.build(self._viewer_id, members)

    async def load(
        self,
        window: Optional[PeriodWindow] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Resolve the family scope and load a window (default: the current
        month, recomputed on every call).

        Returns:
            True if the snapshot was committed, False if a later load won

        Raises:
            StorageError: If the fetch fails; the previous snapshot stays
        """
        self._ensure_open()
        correlation_id = correlation_id or create_correlation_id()
        window = window or self.current_window()
        # The store claims this number before its first suspension
        generation = self._store.generation + 1

        try:
            committed = await self._store.load(window, resolve_scope=self._resolve_scope)
        except StorageError as e:
            self._audit_logger.log(AuditEventBuilder.load_failed(
                window.label,
                str(e),
                correlation_id,
            ))
            raise

        if committed:
            self._audit_logger.log(AuditEventBuilder.transactions_loaded(
                period=window.label,
                count=len(self._store),
                scope_size=len(self._store.scope_user_ids),
                correlation_id=correlation_id,
            ))
        else:
            self._audit_logger.log(AuditEventBuilder.load_superseded(
                window.label,
                generation,
                correlation_id,
            ))
        return committed

    async def refresh_family_scope(self) -> bool:
        """
        Recompute the family scope from the store of record and reload.

        Called by the reconciler on relevant membership changes.
        """
        previous = self._store.scope
        committed = await self.load()
        current = self._store.scope
        if committed and current.member_ids != previous.member_ids:
            self._audit_logger.log(AuditEventBuilder.family_scope_changed(
                self._viewer_id,
                len(previous.member_ids),
                len(current.member_ids),
            ))
        return committed

    # =========================================================================
    # WRITES
    # =========================================================================

    async def add_transactions(
        self,
        items: list[Union[TransactionInput, dict[str, Any]]],
        correlation_id: Optional[UUID] = None,
    ) -> list[TransactionRecord]:
        """
        Create transactions.

        Flow: validate locally → remote create → insert into the log.
        Created records outside the active window are not inserted.

        Returns:
            The records as stored, with their assigned ids

        Raises:
            ValidationError: Nothing was sent to the store of record
            StorageError: The remote create failed; the log is unchanged
        """
        self._ensure_open()
        correlation_id = correlation_id or create_correlation_id()

        try:
            inputs = self._validator.require_inputs(items)
        except ValidationError as e:
            self._audit_logger.log(AuditEventBuilder.validation_failed(
                "create",
                e.result.issues_as_dicts(),
                correlation_id,
            ))
            raise

        try:
            created = await self._remote.create_transactions(inputs, self._viewer_id)
        except StorageError as e:
            self._audit_logger.log(AuditEventBuilder.write_failed(
                "create",
                str(e),
                correlation_id=correlation_id,
            ))
            raise

        self._store.insert_local(created)
        for record in created:
            self._audit_logger.log(AuditEventBuilder.transaction_written(
                "create",
                record.id,
                str(record.amount),
                correlation_id,
            ))
        return created

    async def update_transaction(
        self,
        transaction_id: str,
        update: Union[TransactionUpdateInput, dict[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> TransactionRecord:
        """
        Update a transaction: validate → remote update → replace locally.

        Raises:
            ValidationError: Nothing was sent to the store of record
            StorageError: The remote update failed; the log is unchanged
        """
        self._ensure_open()
        correlation_id = correlation_id or create_correlation_id()

        try:
            validated = self._validator.require_update(update)
        except ValidationError as e:
            self._audit_logger.log(AuditEventBuilder.validation_failed(
                "update",
                e.result.issues_as_dicts(),
                correlation_id,
            ))
            raise

        try:
            record = await self._remote.update_transaction(transaction_id, validated)
        except StorageError as e:
            self._audit_logger.log(AuditEventBuilder.write_failed(
                "update",
                str(e),
                transaction_id,
                correlation_id,
            ))
            raise

        self._store.replace_local(record)
        self._audit_logger.log(AuditEventBuilder.transaction_written(
            "update",
            record.id,
            str(record.amount),
            correlation_id,
        ))
        return record

    async def delete_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Soft-delete a transaction remotely, then locally.

        Raises:
            StorageError: The remote delete failed; the log is unchanged
        """
        self._ensure_open()
        correlation_id = correlation_id or create_correlation_id()
        deleted_at = self._clock()

        try:
            await self._remote.soft_delete_transaction(transaction_id, deleted_at)
        except StorageError as e:
            self._audit_logger.log(AuditEventBuilder.write_failed(
                "delete",
                str(e),
                transaction_id,
                correlation_id,
            ))
            raise

        self._store.delete_local(transaction_id, deleted_at)
        self._audit_logger.log(AuditEventBuilder.transaction_written(
            "delete",
            transaction_id,
            correlation_id=correlation_id,
        ))

    # =========================================================================
    # REALTIME
    # =========================================================================

    async def start_realtime(self) -> dict[str, SubscriptionState]:
        """
        Start every subscription. Failures degrade to CHANNEL_ERROR
        and are reported in the returned status map, never raised.
        """
        self._ensure_open()
        for subscription in self._subscriptions:
            await subscription.start()
        return self.realtime_status

    async def stop_realtime(self) -> None:
        for subscription in self._subscriptions:
            await subscription.stop()

    async def dispose(self) -> None:
        """Stop live updates and clear the log. Safe to call twice."""
        if self._disposed:
            return
        await self.stop_realtime()
        self._store.reset()
        self._disposed = True

    # =========================================================================
    # AGGREGATES (always derived from the current log)
    # =========================================================================

    @property
    def today_total(self) -> Decimal:
        return self._aggregates.today_total(self._today())

    @property
    def today_count(self) -> int:
        return self._aggregates.today_count(self._today())

    @property
    def monthly_total(self) -> Decimal:
        return self._aggregates.monthly_total()

    @property
    def monthly_count(self) -> int:
        return self._aggregates.monthly_count()

    def _today(self) -> date:
        return self._clock().astimezone(ZoneInfo(self._timezone)).date()

    def summary_by_category(self) -> list[AggregateBucket]:
        return self._aggregates.summary_by_category()

    def summary_by_description(self) -> list[AggregateBucket]:
        return self._aggregates.summary_by_description()

    def budget_status(self, bounds: Optional[BudgetBounds] = None) -> BudgetStatus:
        """Classify this month's spending against the budget bounds."""
        return classify_with_bounds(self.monthly_total, bounds or self._budget_bounds)

    def format_amount(self, amount, show_decimals: bool = False) -> str:
        """Format an amount with the session's currency conventions."""
        return money.format_currency(amount, show_decimals=show_decimals, **self._currency)


def create_app_components(viewer_id: str) -> ExpenseTracker:
    """
    Factory function to create a fully wired session from settings.

    Realtime is disabled when turned off in settings or when pointing
    at a local Supabase stack.

    Args:
        viewer_id: The authenticated user's id

    Returns:
        An ExpenseTracker using the Supabase store and realtime feed
    """
    settings = get_settings()
    supabase_settings = settings.supabase
    app_settings = settings.app

    remote = SupabaseTransactionStore(settings=supabase_settings)

    feed = None
    if app_settings.realtime_enabled and not supabase_settings.is_local:
        feed = SupabaseRealtimeFeed(remote.get_client, supabase_settings)

    return ExpenseTracker(
        viewer_id,
        remote,
        feed=feed,
        audit_logger=AuditLogger(),
        family_inclusive=app_settings.family_inclusive,
        timezone_name=app_settings.timezone,
        uncategorized_label=app_settings.uncategorized_label,
        budget_bounds=BudgetBounds.from_settings(),
        transactions_table=supabase_settings.transactions_table,
        family_members_table=supabase_settings.family_members_table,
        currency_symbol=app_settings.currency_symbol,
        thousands_separator=app_settings.thousands_separator,
        decimal_separator=app_settings.decimal_separator,
    )
