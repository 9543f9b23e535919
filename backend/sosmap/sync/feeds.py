"""
Live Feed Sources

Where entity batches come from. A source is opened with a `deliver`
callback (the sync manager's submit) and an `on_error` callback for
failures after the feed was established.

Sources:
- PollingFeedSource: periodic pull of a full snapshot
- SocketIOFeedSource: push subscription over Socket.IO
- PushFeedSource: batches arrive through the HTTP API only
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import socketio
from pydantic import ValidationError
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from sosmap.errors import FeedUnavailable
from sosmap.models.entities import EntityBatch

logger = logging.getLogger(__name__)


DeliverFn = Callable[[EntityBatch], object]
ErrorFn = Callable[[Exception], None]
FetchFn = Callable[[], Awaitable[EntityBatch]]


class FeedSource(ABC):
    """A subscription that hands entity batches to the sync manager"""

    name = "feed"

    @abstractmethod
    async def subscribe(self, deliver: DeliverFn, on_error: ErrorFn) -> None:
        """
        Open the feed

        Raises:
            FeedUnavailable: the feed could not be established
        """

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Close the feed; no delivery happens afterwards"""


class PushFeedSource(FeedSource):
    """No upstream connection; batches are submitted by the HTTP API"""

    name = "push"

    async def subscribe(self, deliver, on_error):
        return None

    async def unsubscribe(self):
        return None


class PollingFeedSource(FeedSource):
    """
    Pull a snapshot on a fixed interval

    The first fetch happens inside subscribe(), so a backend that is
    down fails the subscription. Later failures are reported through
    `on_error` and polling continues.

    Usage:
        source = PollingFeedSource(client.fetch_entity_snapshot, interval=5.0)
    """

    name = "poll"

    def __init__(self, fetch: FetchFn, interval: float = 5.0):
        self.fetch = fetch
        self.interval = interval

        self._task: Optional[asyncio.Task] = None
        self._deliver: Optional[DeliverFn] = None
        self._on_error: Optional[ErrorFn] = None

        self.poll_count = 0
        self.error_count = 0

    async def subscribe(self, deliver, on_error):
        self._deliver = deliver
        self._on_error = on_error

        batch = await self._fetch_once()
        deliver(batch)

        self._task = asyncio.create_task(self._poll_loop())

    async def _fetch_once(self) -> EntityBatch:
        self.poll_count += 1
        try:
            return await self.fetch()
        except FeedUnavailable:
            self.error_count += 1
            raise
        except (OSError, asyncio.TimeoutError) as e:
            self.error_count += 1
            raise FeedUnavailable(str(e), source=self.name)
        except ValueError as e:
            # Includes pydantic ValidationError from a bad payload
            self.error_count += 1
            raise FeedUnavailable(f"Invalid snapshot: {e}", source=self.name)

    async def _poll_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                batch = await self._fetch_once()
            except FeedUnavailable as e:
                logger.warning("[Feed] Poll failed: %s", e)
                self._on_error(e)
                continue
            self._deliver(batch)

    async def unsubscribe(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._deliver = None


class SocketIOFeedSource(FeedSource):
    """
    Push subscription to the backend's Socket.IO entity stream

    Each `event` message carries one EntityBatch as JSON. The client
    reconnects on its own; disconnects are reported through `on_error`.

    Usage:
        source = SocketIOFeedSource("http://localhost:8001")
    """

    name = "socketio"

    def __init__(
        self,
        url: str,
        event: str = "entities:batch",
        socketio_path: str = "socket.io",
        client: Optional[socketio.AsyncClient] = None,
    ):
        self.url = url
        self.event = event
        self.socketio_path = socketio_path
        self.client = client or socketio.AsyncClient(reconnection=True)

        self._deliver: Optional[DeliverFn] = None
        self._on_error: Optional[ErrorFn] = None
        self._connected = False

        self.message_count = 0
        self.invalid_count = 0

    async def subscribe(self, deliver, on_error):
        self._deliver = deliver
        self._on_error = on_error

        self.client.on(self.event, self._handle_batch)
        self.client.on("disconnect", self._handle_disconnect)

        try:
            await self.client.connect(self.url, socketio_path=self.socketio_path)
        except SocketIOConnectionError as e:
            raise FeedUnavailable(f"Socket.IO connect failed: {e}", source=self.url)
        self._connected = True
        logger.info("[Feed] Subscribed to %s (%s)", self.url, self.event)

    async def _handle_batch(self, data):
        if self._deliver is None:
            return
        self.message_count += 1
        try:
            batch = EntityBatch.model_validate(data)
        except ValidationError as e:
            self.invalid_count += 1
            logger.warning("[Feed] Ignoring invalid batch message: %s", e.error_count())
            return
        self._deliver(batch)

    async def _handle_disconnect(self, *args):
        if self._connected and self._on_error is not None:
            self._on_error(FeedUnavailable("Socket.IO disconnected", source=self.url))

    async def unsubscribe(self):
        self._deliver = None
        if self._connected:
            self._connected = False
            await self.client.disconnect()


FEED_MODES = ("poll", "socketio", "push")


def create_feed_source(
    mode: str,
    fetch: Optional[FetchFn] = None,
    url: Optional[str] = None,
    poll_interval: float = 5.0,
    event: str = "entities:batch",
) -> FeedSource:
    """
    Build the feed source for a sync mode

    Args:
        mode: "poll", "socketio" or "push"
        fetch: Snapshot coroutine (poll mode)
        url: Socket.IO server URL (socketio mode)
        poll_interval: Seconds between polls
        event: Socket.IO event carrying batches

    Raises:
        ValueError: unknown mode or missing collaborator
    """
    mode = (mode or "").lower()
    if mode == "poll":
        if fetch is None:
            raise ValueError("poll mode needs a snapshot fetch function")
        return PollingFeedSource(fetch, interval=poll_interval)
    if mode == "socketio":
        if not url:
            raise ValueError("socketio mode needs a feed URL")
        return SocketIOFeedSource(url, event=event)
    if mode == "push":
        return PushFeedSource()
    raise ValueError(f"Unknown feed mode {mode!r}; expected one of {', '.join(FEED_MODES)}")
