"""
Realtime Subscription

One logical subscription (e.g. "transactions" or "family_members")
with an explicit state machine:

    UNSUBSCRIBED --start--> SUBSCRIBING --SUBSCRIBED--> SUBSCRIBED
          ^                      |                          |
          |                      +--CHANNEL_ERROR/TIMED_OUT-+--> CHANNEL_ERROR
          +------------------------- stop (from any state) ------------+

DESIGN DECISION: A channel failure degrades, it never crashes.
CHANNEL_ERROR only disables live updates; the local log keeps the last
fetched snapshot. `stop()` always returns to UNSUBSCRIBED, releases the
channel, and is a no-op when repeated.

Every inbound payload is schema-validated into a ChangeEvent before the
handler sees it. Malformed payloads are logged and dropped.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError as SchemaError

from spendsync.audit import AuditLogger
from spendsync.models.audit import AuditEventBuilder
from spendsync.models.transaction import ChangeEvent
from spendsync.realtime.channel import (
    FeedChannel,
    FeedMessage,
    RealtimeFeedInterface,
    SubscriptionError,
    SubscriptionState,
)


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]

logger = structlog.get_logger(__name__)


class Subscription:
    """
    Receive loop plus state machine for one table.

    The handler is awaited for each decoded event, in delivery order.
    """

    def __init__(
        self,
        feed: RealtimeFeedInterface,
        table: str,
        handler: ChangeHandler,
        audit_logger: Optional[AuditLogger] = None,
        event_filter: Optional[str] = None,
    ):
        self._feed = feed
        self._table = table
        self._handler = handler
        self._audit_logger = audit_logger
        self._event_filter = event_filter

        self._state = SubscriptionState.UNSUBSCRIBED
        self._last_error: Optional[SubscriptionError] = None
        self._channel: Optional[FeedChannel] = None
        self._task: Optional[asyncio.Task] = None
        # Bumped by stop() so an in-flight start() knows it lost
        self._epoch = 0

    @property
    def table(self) -> str:
        return self._table

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def last_error(self) -> Optional[SubscriptionError]:
        return self._last_error

    @property
    def is_live(self) -> bool:
        return self._state == SubscriptionState.SUBSCRIBED

    @property
    def channel(self) -> Optional[FeedChannel]:
        return self._channel

    def _audit(self, event) -> None:
        if self._audit_logger:
            self._audit_logger.log(event)

    def _transition(self, state: SubscriptionState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        self._audit(AuditEventBuilder.subscription_status_changed(
            table=self._table,
            previous=previous.value,
            current=state.value,
        ))

    def _degrade(self, message: str) -> None:
        self._last_error = SubscriptionError(self._table, message)
        self._transition(SubscriptionState.CHANNEL_ERROR)
        self._audit(AuditEventBuilder.subscription_degraded(self._table, message))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> SubscriptionState:
        """
        Open the channel and start the receive loop.

        Returns once the channel is open; the state moves to SUBSCRIBED
        when the feed confirms. Calling start on a live or connecting
        subscription does nothing.
        """
        if self._state in (SubscriptionState.SUBSCRIBING, SubscriptionState.SUBSCRIBED):
            return self._state

        # A previous failed attempt may still hold a channel
        await self._release()

        epoch = self._epoch
        self._last_error = None
        self._transition(SubscriptionState.SUBSCRIBING)

        try:
            channel = await self._feed.open(self._table, self._event_filter)
        except Exception as e:
            if epoch == self._epoch:
                self._degrade(f"open failed: {e}")
            return self._state

        if epoch != self._epoch:
            # stop() ran while we were connecting
            await self._close_channel(channel)
            return self._state

        self._channel = channel
        self._task = asyncio.create_task(
            self._receive_loop(channel),
            name=f"realtime:{self._table}",
        )
        return self._state

    async def stop(self) -> None:
        """Tear down from any state. Idempotent."""
        self._epoch += 1
        await self._release()
        self._transition(SubscriptionState.UNSUBSCRIBED)

    async def _release(self) -> None:
        task, channel = self._task, self._channel
        self._task = None
        self._channel = None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if channel is not None:
            await self._close_channel(channel)

    async def _close_channel(self, channel: FeedChannel) -> None:
        channel.close()
        try:
            await self._feed.close(channel)
        except Exception as e:
            logger.warning("channel_release_failed", table=self._table, error=str(e))

    # =========================================================================
    # RECEIVE LOOP
    # =========================================================================

    async def _receive_loop(self, channel: FeedChannel) -> None:
        while True:
            message = await channel.get()
            try:
                if message is None:
                    return
                if message.is_status:
                    if not self._on_status(message):
                        return
                    continue
                await self._dispatch(message.payload or {})
            finally:
                channel.task_done()

    def _on_status(self, message: FeedMessage) -> bool:
        """Apply a feed status. Returns False when the loop should end."""
        status = (message.status or "").upper()
        if status == SubscriptionState.SUBSCRIBED.value:
            self._last_error = None
            self._transition(SubscriptionState.SUBSCRIBED)
            return True
        if status in ("CHANNEL_ERROR", "TIMED_OUT"):
            self._degrade(message.error or status.lower())
            return False
        if status == "CLOSED":
            self._transition(SubscriptionState.UNSUBSCRIBED)
            return False

        logger.debug("unknown_feed_status", table=self._table, status=message.status)
        return True

    async def _dispatch(self, payload: dict) -> None:
        try:
            event = ChangeEvent.model_validate(payload)
        except SchemaError as e:
            self._audit(AuditEventBuilder.remote_payload_rejected(self._table, str(e)))
            return

        try:
            await self._handler(event)
        except Exception as e:
            # One bad event must not end live updates for the table
            logger.exception("change_handler_failed", table=self._table, event_type=event.event_type.value)
            self._audit(AuditEventBuilder.system_error(
                error_type="change_handler_failed",
                error_message=str(e),
                details={"table": self._table, "row_id": event.row_id},
            ))
