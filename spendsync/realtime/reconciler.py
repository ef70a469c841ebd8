"""
Realtime Reconciler

Merges change events into the TransactionLogStore.

Transactions feed:
    INSERT -> apply_remote_insert   (dropped if the id is already present)
    UPDATE -> apply_remote_update   (no-op for an unknown id)
    DELETE -> apply_remote_delete   (soft delete by id)

Family-membership feed:
    Any change touching the viewer or one of the viewer's families
    triggers `on_family_change`, which recomputes the family scope and
    reloads the log. Membership changes can both add and remove visible
    authors, so they are never patched incrementally.

DESIGN DECISION: The record id is the only reconciliation key. A local
create and its realtime echo always collapse into one record.
"""

from typing import Awaitable, Callable, Optional

from pydantic import ValidationError as SchemaError

from spendsync.audit import AuditLogger
from spendsync.models.audit import AuditEventBuilder
from spendsync.models.transaction import ChangeEvent, ChangeEventType
from spendsync.services.storage.interface import StorageError
from spendsync.store.transaction_log import ApplyOutcome, TransactionLogStore


FamilyChangeCallback = Callable[[], Awaitable[None]]


class RealtimeReconciler:
    """
    Handlers for the two realtime feeds.

    Hand `handle_transaction_event` and `handle_family_event` to a
    Subscription each.
    """

    def __init__(
        self,
        store: TransactionLogStore,
        on_family_change: Optional[FamilyChangeCallback] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._on_family_change = on_family_change
        self._audit_logger = audit_logger

    def _audit(self, event) -> None:
        if self._audit_logger:
            self._audit_logger.log(event)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def apply_transaction_event(self, event: ChangeEvent) -> ApplyOutcome:
        """
        Apply one transaction change to the store.

        Raises:
            pydantic.ValidationError: If an INSERT/UPDATE row is not a
                valid transaction record
        """
        if event.event_type == ChangeEventType.DELETE:
            transaction_id = event.row_id
            if transaction_id is None:
                return ApplyOutcome.NOT_FOUND
            return self._store.apply_remote_delete(transaction_id, event.commit_timestamp)

        record = event.record()
        if event.event_type == ChangeEventType.INSERT:
            return self._store.apply_remote_insert(record)
        if record.deleted_at is not None:
            # A soft delete arrives as an UPDATE setting deleted_at
            return self._store.apply_remote_delete(record.id, record.deleted_at)
        return self._store.apply_remote_update(record)

    async def handle_transaction_event(self, event: ChangeEvent) -> None:
        """Subscription handler for the transactions feed."""
        try:
            outcome = self.apply_transaction_event(event)
        except SchemaError as e:
            self._audit(AuditEventBuilder.remote_payload_rejected(event.table or "transactions", str(e)))
            return

        if outcome == ApplyOutcome.APPLIED:
            self._audit(AuditEventBuilder.remote_change_applied(
                event.event_type.value,
                event.row_id,
            ))
        else:
            self._audit(AuditEventBuilder.remote_change_ignored(
                event.event_type.value,
                event.row_id,
                outcome.value,
            ))

    # =========================================================================
    # FAMILY MEMBERSHIP
    # =========================================================================

    def is_relevant_family_event(self, event: ChangeEvent) -> bool:
        """
        True if the change touches the viewer's own membership or one of
        the viewer's current families.

        Both row images are checked so a move between families is seen
        from either side.
        """
        viewer_id = self._store.viewer_id
        family_ids = self._store.scope.family_ids
        for row in (event.new, event.old):
            if not row:
                continue
            if str(row.get("user_id")) == viewer_id:
                return True
            family_id = row.get("family_id")
            if family_id is not None and str(family_id) in family_ids:
                return True
        return False

    async def handle_family_event(self, event: ChangeEvent) -> None:
        """Subscription handler for the family-membership feed."""
        if event.event_type != ChangeEventType.DELETE:
            try:
                event.member()
            except SchemaError as e:
                self._audit(AuditEventBuilder.remote_payload_rejected(event.table or "family_members", str(e)))
                return

        if not self.is_relevant_family_event(event):
            self._audit(AuditEventBuilder.remote_change_ignored(
                event.event_type.value,
                None,
                "unrelated_family",
            ))
            return

        if self._on_family_change is None:
            return

        try:
            await self._on_family_change()
        except StorageError as e:
            # The previous snapshot stays; the next change or a manual reload retries
            self._audit(AuditEventBuilder.load_failed(
                "family_reload",
                str(e),
            ))
