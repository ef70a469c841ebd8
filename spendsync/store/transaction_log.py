"""
Transaction Log Store

The in-memory log of transaction records for one period window.

DESIGN DECISION: The log is the single owner of local transaction state.
- Every mutation is a synchronous step. There is no `await` between
  reading the log and writing it, so interleaved async completions on
  the event loop can never lose an update.
- `load` is the only method that suspends. It is guarded by a
  generation counter: the latest started load wins, and a stale result
  (or stale failure) is discarded when it eventually resolves.
- The record `id` is the sole deduplication authority. A local insert
  and its realtime echo collapse into one record.
- Mutations applied while a load is in flight are journaled and
  replayed onto the snapshot it commits, so a change the server made
  after answering the query is not wiped.
- Records arriving with a bare category id borrow the display fields
  of a known record with the same category.
- Deletes are soft. Deleted records are retained but never appear in
  `active_records()`, the only view aggregates may read.

CONCURRENCY: single event loop, no locks. Do not call mutation methods
from other threads.
"""

from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, NamedTuple, Optional

import structlog

from spendsync.models.transaction import (
    CategoryRef,
    FamilyScope,
    PeriodWindow,
    TransactionRecord,
)
from spendsync.services.storage.interface import StorageError, TransactionStoreInterface


logger = structlog.get_logger(__name__)


class ApplyOutcome(str, Enum):
    """What a mutation did to the log."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    OUT_OF_WINDOW = "out_of_window"
    OUT_OF_SCOPE = "out_of_scope"
    NOT_FOUND = "not_found"
    NOT_LOADED = "not_loaded"


class JournalEntry(NamedTuple):
    """A mutation applied while a load was in flight."""
    action: str
    record: Optional[TransactionRecord] = None
    transaction_id: Optional[str] = None
    deleted_at: Optional[datetime] = None


ScopeResolver = Callable[[], Awaitable[FamilyScope]]


class TransactionLogStore:
    """
    Ordered, newest-first log of transactions for the active period window.

    Admission rules for records not fetched by `load`:
    - `created_at` must fall inside the active window
    - family-inclusive mode: `created_by` must be in the current family scope
    - otherwise: `created_by` must be the viewer
    """

    def __init__(
        self,
        remote: TransactionStoreInterface,
        viewer_id: str,
        family_inclusive: bool = False,
    ):
        """
        Initialize the store.

        Args:
            remote: Store of record used by `load`
            viewer_id: Current user; immutable for the session
            family_inclusive: Admit records from every family scope member
        """
        self._remote = remote
        self._viewer_id = viewer_id
        self._family_inclusive = family_inclusive

        self._records: list[TransactionRecord] = []
        self._window: Optional[PeriodWindow] = None
        self._scope: FamilyScope = FamilyScope.solo(viewer_id)

        self._generation = 0
        self._pending = 0
        self._journal: list[JournalEntry] = []
        self._last_error: Optional[StorageError] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    @property
    def family_inclusive(self) -> bool:
        return self._family_inclusive

    @property
    def window(self) -> Optional[PeriodWindow]:
        """The window of the last committed load."""
        return self._window

    @property
    def scope(self) -> FamilyScope:
        return self._scope

    @property
    def scope_user_ids(self) -> frozenset[str]:
        return self._scope.member_ids

    @property
    def generation(self) -> int:
        """Number of the most recently started load."""
        return self._generation

    @property
    def is_loading(self) -> bool:
        return self._pending > 0

    @property
    def last_error(self) -> Optional[StorageError]:
        """Error of the latest load, if it failed."""
        return self._last_error

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, transaction_id: object) -> bool:
        return any(r.id == transaction_id for r in self._records)

    def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        """Look up a record by id, including soft-deleted ones."""
        for record in self._records:
            if record.id == transaction_id:
                return record
        return None

    def all_records(self) -> list[TransactionRecord]:
        """Every retained record, soft-deleted ones included, newest first."""
        return sorted(self._records, key=lambda r: r.created_at, reverse=True)

    def active_records(self) -> list[TransactionRecord]:
        """
        Records with no `deleted_at`, newest first by created_at.

        This is the only view aggregates may consume.
        """
        return [r for r in self.all_records() if r.deleted_at is None]

    # =========================================================================
    # LOADING
    # =========================================================================

    def _effective_scope(self, scope: FamilyScope) -> FamilyScope:
        if not self._family_inclusive:
            return FamilyScope.solo(self._viewer_id)
        return scope

    async def load(
        self,
        window: PeriodWindow,
        scope: Optional[FamilyScope] = None,
        resolve_scope: Optional[ScopeResolver] = None,
    ) -> bool:
        """
        Replace the log with the records of `window` for `scope`.

        A load started later supersedes this one: if another load begins
        before this one resolves, this result is discarded. The
        generation is taken before the first suspension, so a
        `resolve_scope` coroutine runs inside the guarded section.

        Args:
            window: Period to load
            scope: Family scope to load for (default: the current one)
            resolve_scope: Coroutine function producing the scope,
                awaited after this load has claimed its generation

        Returns:
            True if this load's snapshot was committed, False if superseded

        Raises:
            StorageError: If the scope lookup or the fetch fails and this
                load is still the latest. The previous snapshot is left
                untouched.
        """
        self._generation += 1
        generation = self._generation
        self._pending += 1
        mark = len(self._journal)

        try:
            try:
                if resolve_scope is not None:
                    scope = await resolve_scope()
                    if generation != self._generation:
                        logger.info("stale_load_discarded", generation=generation, period=window.label)
                        return False
                scope = self._effective_scope(scope or self._scope)
                result = await self._remote.fetch_transactions(
                    window.start,
                    window.end,
                    scope.member_ids,
                )
            except StorageError as e:
                if generation != self._generation:
                    logger.info(
                        "stale_load_failed",
                        generation=generation,
                        period=window.label,
                        error=str(e),
                    )
                    return False
                self._last_error = e
                logger.warning("load_failed", period=window.label, error=str(e))
                raise

            if generation != self._generation:
                logger.info("stale_load_discarded", generation=generation, period=window.label)
                return False

            self._commit(window, scope, result.data, self._journal[mark:])
            return True
        finally:
            self._pending -= 1
            if not self._pending:
                self._journal.clear()

    def _commit(
        self,
        window: PeriodWindow,
        scope: FamilyScope,
        records: Iterable[TransactionRecord],
        replay: Iterable[JournalEntry] = (),
    ) -> None:
        # Same admission rules as the realtime path
        seen: set[str] = set()
        kept: list[TransactionRecord] = []
        for record in records:
            if record.id in seen:
                continue
            if not window.contains(record.created_at):
                continue
            if not scope.includes(record.created_by):
                continue
            seen.add(record.id)
            kept.append(record)

        self._records = kept
        self._window = window
        self._scope = scope
        self._last_error = None

        replayed = 0
        for entry in replay:
            if entry.action == "insert":
                outcome = self._insert(entry.record)
            elif entry.action == "update":
                outcome = self._update(entry.record)
            else:
                outcome = self._delete(entry.transaction_id, entry.deleted_at)
            if outcome == ApplyOutcome.APPLIED:
                replayed += 1

        logger.debug(
            "snapshot_committed",
            period=window.label,
            count=len(self._records),
            replayed=replayed,
        )

    def reset(self) -> None:
        """Drop all records and forget the window. In-flight loads are discarded."""
        self._generation += 1
        self._records = []
        self._window = None
        self._scope = FamilyScope.solo(self._viewer_id)
        self._journal.clear()
        self._last_error = None

    # =========================================================================
    # ADMISSION
    # =========================================================================

    def _admits_author(self, created_by: str) -> bool:
        if self._family_inclusive:
            return self._scope.includes(created_by)
        return created_by == self._viewer_id

    def _admission(self, record: TransactionRecord) -> ApplyOutcome:
        if self._window is None:
            return ApplyOutcome.NOT_LOADED
        if not self._window.contains(record.created_at):
            return ApplyOutcome.OUT_OF_WINDOW
        if not self._admits_author(record.created_by):
            return ApplyOutcome.OUT_OF_SCOPE
        return ApplyOutcome.APPLIED

    def _index_of(self, transaction_id: str) -> int:
        for index, record in enumerate(self._records):
            if record.id == transaction_id:
                return index
        return -1

    def _known_category(
        self,
        category_id: str,
        previous: Optional[TransactionRecord] = None,
    ) -> Optional[CategoryRef]:
        candidates = [previous] if previous is not None else []
        for record in candidates + self._records:
            ref = record.category
            if ref is not None and ref.id == category_id and ref.name is not None:
                return ref
        return None

    def _with_category_details(
        self,
        record: TransactionRecord,
        previous: Optional[TransactionRecord] = None,
    ) -> TransactionRecord:
        """
        Fill a bare category id from a record that carries the join.

        Realtime rows and write acknowledgments only hold the id.
        """
        category = record.category
        if category is None or category.name is not None:
            return record
        known = self._known_category(category.id, previous)
        if known is None:
            return record
        return record.model_copy(update={"category": known})

    # =========================================================================
    # MUTATIONS (synchronous, atomic)
    # =========================================================================

    def _remember(self, entry: JournalEntry) -> None:
        if self._pending:
            self._journal.append(entry)

    def _insert(self, record: TransactionRecord) -> ApplyOutcome:
        if self._index_of(record.id) != -1:
            return ApplyOutcome.DUPLICATE
        outcome = self._admission(record)
        if outcome != ApplyOutcome.APPLIED:
            return outcome
        self._records.insert(0, self._with_category_details(record))
        return ApplyOutcome.APPLIED

    def _update(self, record: TransactionRecord) -> ApplyOutcome:
        index = self._index_of(record.id)
        if index == -1:
            return ApplyOutcome.NOT_FOUND
        self._records[index] = self._with_category_details(record, self._records[index])
        return ApplyOutcome.APPLIED

    def _delete(self, transaction_id: str, deleted_at: Optional[datetime]) -> ApplyOutcome:
        index = self._index_of(transaction_id)
        if index == -1:
            return ApplyOutcome.NOT_FOUND
        record = self._records[index]
        if record.deleted_at is None:
            self._records[index] = record.mark_deleted(deleted_at)
        return ApplyOutcome.APPLIED

    def insert_local(self, records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
        """
        Prepend records the store of record has just acknowledged.

        Call only after the remote create succeeded. Records outside the
        active window, and ids already present (the realtime echo may
        arrive first), are skipped.

        Returns:
            The records actually added
        """
        added: list[TransactionRecord] = []
        for record in records:
            self._remember(JournalEntry("insert", record=record))
            outcome = self._admission(record)
            if outcome == ApplyOutcome.APPLIED and (
                self._index_of(record.id) != -1 or any(a.id == record.id for a in added)
            ):
                outcome = ApplyOutcome.DUPLICATE
            if outcome != ApplyOutcome.APPLIED:
                logger.debug("local_insert_skipped", transaction_id=record.id, reason=outcome.value)
                continue
            added.append(self._with_category_details(record))

        self._records[:0] = added
        return added

    def apply_remote_insert(self, record: TransactionRecord) -> ApplyOutcome:
        """
        Add a record delivered by the realtime feed.

        No-op for a known id, a record outside the window, or an author
        outside the visible scope.
        """
        self._remember(JournalEntry("insert", record=record))
        return self._insert(record)

    def apply_remote_update(self, record: TransactionRecord) -> ApplyOutcome:
        """
        Replace the record with the same id in place.

        No-op when the id is unknown: the update may concern a record
        outside the loaded window or scope.
        """
        self._remember(JournalEntry("update", record=record))
        return self._update(record)

    def replace_local(self, record: TransactionRecord) -> ApplyOutcome:
        """Replace a record after a successful remote update."""
        return self.apply_remote_update(record)

    def apply_remote_delete(
        self,
        transaction_id: str,
        deleted_at: Optional[datetime] = None,
    ) -> ApplyOutcome:
        """
        Soft-delete the record with this id.

        The record is retained with `deleted_at` set. An already-deleted
        record keeps its first deletion timestamp.
        """
        self._remember(JournalEntry("delete", transaction_id=transaction_id, deleted_at=deleted_at))
        return self._delete(transaction_id, deleted_at)

    def delete_local(
        self,
        transaction_id: str,
        deleted_at: Optional[datetime] = None,
    ) -> ApplyOutcome:
        """Soft-delete after a successful remote delete."""
        return self.apply_remote_delete(transaction_id, deleted_at)
