"""
Realtime Feed Channel

DESIGN DECISION: The realtime feed is a stream, not a set of callbacks.
A feed adapter pushes raw payloads and status strings into a
FeedChannel; the subscription owns the only receive loop over it.

    adapter callback --put_payload/put_status--> FeedChannel --get--> receive loop

This keeps the feed's callback idiom (and its threads, if any) out of
the reconciliation code. Adapters only need to implement
RealtimeFeedInterface.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, NamedTuple, Optional


class SubscriptionState(str, Enum):
    """Lifecycle of one logical subscription."""
    UNSUBSCRIBED = "UNSUBSCRIBED"
    SUBSCRIBING = "SUBSCRIBING"
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"


class SubscriptionError(Exception):
    """
    The realtime channel could not be established or failed.

    Recorded on the subscription as `last_error`; never raised to callers.
    """

    def __init__(self, table: str, message: str):
        super().__init__(f"{table}: {message}")
        self.table = table


class FeedMessage(NamedTuple):
    """One item on a feed channel: either a row payload or a status update."""
    payload: Optional[dict[str, Any]] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_status(self) -> bool:
        return self.status is not None


class FeedChannel:
    """
    Typed, unbounded queue of feed messages for one table.

    Producers call `put_payload`/`put_status` without awaiting; the
    single consumer awaits `get` and acknowledges with `task_done`.
    """

    def __init__(self, table: str, event_filter: Optional[str] = None):
        self.table = table
        self.event_filter = event_filter
        self.handle: Any = None  # adapter-owned resource
        self._queue: asyncio.Queue[Optional[FeedMessage]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put_payload(self, payload: dict[str, Any]) -> None:
        if not self._closed:
            self._queue.put_nowait(FeedMessage(payload=payload))

    def put_status(self, status: str, error: Optional[str] = None) -> None:
        if not self._closed:
            self._queue.put_nowait(FeedMessage(status=status, error=error))

    def close(self) -> None:
        """End the stream. Messages already queued are still delivered."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def get(self) -> Optional[FeedMessage]:
        """Next message, or None once the channel is closed and drained."""
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every message put so far has been processed."""
        await self._queue.join()


class RealtimeFeedInterface(ABC):
    """
    Abstract realtime feed.

    Implementations open one channel per table and release it on close.
    """

    @abstractmethod
    async def open(self, table: str, event_filter: Optional[str] = None) -> FeedChannel:
        """
        Open a channel streaming row changes of `table`.

        The adapter reports its connection status through
        `put_status` using SUBSCRIBED, CHANNEL_ERROR, TIMED_OUT or CLOSED.

        Raises:
            Exception: Any adapter failure; the subscription degrades
                to CHANNEL_ERROR instead of propagating it.
        """
        pass

    @abstractmethod
    async def close(self, channel: FeedChannel) -> None:
        """Release the channel's resources. Must tolerate repeated calls."""
        pass
