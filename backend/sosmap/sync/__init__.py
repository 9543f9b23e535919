"""
Live Sync Package

Entity store, feed sources and the sync manager that applies feed
batches in arrival order.
"""

from .entity_store import EntityStore, ApplyResult, parse_records
from .feeds import (
    FeedSource,
    PollingFeedSource,
    SocketIOFeedSource,
    PushFeedSource,
    create_feed_source,
)
from .live_sync import LiveSyncManager, SyncState

__all__ = [
    "EntityStore",
    "ApplyResult",
    "parse_records",
    "FeedSource",
    "PollingFeedSource",
    "SocketIOFeedSource",
    "PushFeedSource",
    "create_feed_source",
    "LiveSyncManager",
    "SyncState",
]
