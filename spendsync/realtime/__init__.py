"""Realtime feed, subscriptions and reconciliation."""

from spendsync.realtime.channel import (
    FeedChannel,
    FeedMessage,
    RealtimeFeedInterface,
    SubscriptionError,
    SubscriptionState,
)
from spendsync.realtime.reconciler import RealtimeReconciler
from spendsync.realtime.subscription import Subscription
from spendsync.realtime.supabase_feed import SupabaseRealtimeFeed

__all__ = [
    "FeedChannel",
    "FeedMessage",
    "RealtimeFeedInterface",
    "RealtimeReconciler",
    "Subscription",
    "SubscriptionError",
    "SubscriptionState",
    "SupabaseRealtimeFeed",
]
