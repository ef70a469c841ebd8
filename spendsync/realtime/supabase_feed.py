"""
Supabase Realtime Feed

Adapts Supabase's postgres_changes channels to FeedChannel streams.

The Supabase client reports changes and connection status through
callbacks. Each callback only enqueues onto the FeedChannel; all
interpretation happens in the subscription's receive loop.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
from supabase import AsyncClient

from spendsync.config import SupabaseSettings, get_settings
from spendsync.realtime.channel import FeedChannel, RealtimeFeedInterface


ClientProvider = Callable[[], Awaitable[AsyncClient]]

logger = structlog.get_logger(__name__)


class SupabaseRealtimeFeed(RealtimeFeedInterface):
    """
    RealtimeFeedInterface backed by `AsyncClient.channel(...)`.

    The client comes from `client_provider` so the feed can share the
    store's lazily created connection.
    """

    def __init__(
        self,
        client_provider: ClientProvider,
        settings: Optional[SupabaseSettings] = None,
    ):
        self._client_provider = client_provider
        self._settings = settings or get_settings().supabase
        self._counter = 0

    async def open(self, table: str, event_filter: Optional[str] = None) -> FeedChannel:
        client = await self._client_provider()
        loop = asyncio.get_running_loop()
        feed_channel = FeedChannel(table, event_filter)

        # Callbacks may fire off the event loop thread
        def on_change(payload: dict[str, Any]) -> None:
            loop.call_soon_threadsafe(feed_channel.put_payload, payload)

        def on_status(status: Any, error: Optional[Exception] = None) -> None:
            value = getattr(status, "value", status)
            loop.call_soon_threadsafe(
                feed_channel.put_status,
                str(value),
                str(error) if error else None,
            )

        self._counter += 1
        channel = client.channel(f"spendsync:{table}:{self._counter}")
        channel.on_postgres_changes(
            "*",
            schema=self._settings.db_schema,
            table=table,
            filter=event_filter,
            callback=on_change,
        )
        feed_channel.handle = channel
        await channel.subscribe(on_status)

        logger.info("realtime_channel_opened", table=table, filter=event_filter)
        return feed_channel

    async def close(self, channel: FeedChannel) -> None:
        handle = channel.handle
        channel.handle = None
        channel.close()
        if handle is None:
            return
        client = await self._client_provider()
        await client.remove_channel(handle)
        logger.info("realtime_channel_closed", table=channel.table)
