"""
Live Sync Manager

Single point of ingress for backend-origin entity changes.

State machine: IDLE -> SUBSCRIBING -> ACTIVE -> (ERROR | CLOSED)

Features:
- Batches are queued in arrival order and applied one at a time by a
  single worker; the next batch waits until the render pipeline
  callback for the previous one has finished
- Failed subscriptions retry with bounded exponential backoff while
  existing entities stay on the map (degraded flag set)
- stop() is idempotent; a closed flag and generation counter are set
  before any await so late batches are never applied
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from sosmap.errors import FeedUnavailable, ReconcileInvariantError
from sosmap.models.entities import EntityBatch
from sosmap.sync.entity_store import ApplyResult, EntityStore
from sosmap.sync.feeds import FeedSource

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    ERROR = "error"
    CLOSED = "closed"


AppliedCallback = Callable[[ApplyResult], Awaitable[None]]
StatusCallback = Callable[["LiveSyncManager"], None]


class LiveSyncManager:
    """
    Subscribe to a feed and apply its batches to the entity store

    Usage:
        sync = LiveSyncManager(source, store, on_applied=view.on_batch_applied)
        await sync.start()
        ...
        await sync.stop()
    """

    def __init__(
        self,
        source: FeedSource,
        store: EntityStore,
        on_applied: Optional[AppliedCallback] = None,
        on_status: Optional[StatusCallback] = None,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        max_retries: Optional[int] = None,
    ):
        """
        Args:
            source: Feed to subscribe to
            store: Entity store mutated by the worker
            on_applied: Render pipeline, awaited after every batch
            on_status: Called on state / degraded changes
            retry_base_delay: First backoff delay in seconds
            retry_max_delay: Backoff cap in seconds
            max_retries: Give up after this many retries (None = forever)
        """
        self.source = source
        self.store = store
        self.on_applied = on_applied
        self.on_status = on_status
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.max_retries = max_retries

        self.state = SyncState.IDLE
        self.degraded = False
        self.last_error: Optional[str] = None
        self.generation = 0

        self._closed = False
        self._source_open = False
        self._queue: "asyncio.Queue[Tuple[int, EntityBatch]]" = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None

        # Statistics
        self.received = 0
        self.applied = 0
        self.rejected_records = 0
        self.discarded = 0
        self.connect_attempts = 0
        self.feed_errors = 0

    @property
    def closed(self) -> bool:
        return self._closed

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self):
        """
        Start the worker and open the feed

        A failed first subscription leaves the manager in ERROR with a
        retry task running; it does not raise.
        """
        if self._closed or self._worker_task is not None:
            return

        generation = self.generation
        self._worker_task = asyncio.create_task(self._worker_loop())

        if not await self._connect_once(generation) and self._is_current(generation):
            self._schedule_retry(generation)

    async def _connect_once(self, generation: int) -> bool:
        self.connect_attempts += 1
        self._set_state(SyncState.SUBSCRIBING)

        try:
            await self.source.subscribe(self.submit, self._on_source_error)
        except FeedUnavailable as e:
            if self._is_current(generation):
                self.degraded = True
                self.last_error = str(e)
                self.feed_errors += 1
                logger.warning("[LiveSync] Feed unavailable (%s): %s", self.source.name, e)
                self._set_state(SyncState.ERROR)
            return False

        if not self._is_current(generation):
            # stop() ran while we were subscribing and found nothing to close
            await self.source.unsubscribe()
            return False

        self._source_open = True
        self.degraded = False
        self.last_error = None
        logger.info("[LiveSync] Subscribed to %s feed", self.source.name)
        self._set_state(SyncState.ACTIVE)
        return True

    def _schedule_retry(self, generation: int):
        self._retry_task = asyncio.create_task(self._retry_loop(generation))

    def retry_delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)"""
        return min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)

    async def _retry_loop(self, generation: int):
        attempt = 0
        while self._is_current(generation):
            attempt += 1
            if self.max_retries is not None and attempt > self.max_retries:
                logger.error("[LiveSync] Giving up on %s feed after %d retries", self.source.name, self.max_retries)
                return
            await asyncio.sleep(self.retry_delay(attempt))
            if not self._is_current(generation):
                return
            if await self._connect_once(generation):
                return

    async def stop(self):
        """
        Tear down: no batch is applied once this is called

        Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        self.generation += 1
        self._set_state(SyncState.CLOSED)

        current = asyncio.current_task()
        for task in (self._retry_task, self._worker_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._source_open:
            self._source_open = False
            await self.source.unsubscribe()

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            self.discarded += 1

        logger.info("[LiveSync] Stopped (%d applied, %d discarded)", self.applied, self.discarded)

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self.generation

    # ============================================
    # Ingress
    # ============================================

    def submit(self, batch: EntityBatch) -> bool:
        """
        Queue a batch for the worker

        Returns:
            False if the manager is closed and the batch was ignored
        """
        if self._closed:
            self.discarded += 1
            return False

        self.received += 1
        self._queue.put_nowait((self.generation, batch))

        if self.degraded and self.state is SyncState.ACTIVE:
            self.degraded = False
            self.last_error = None
            self._notify()
        return True

    def _on_source_error(self, error: Exception):
        if self._closed:
            return
        self.degraded = True
        self.last_error = str(error)
        self.feed_errors += 1
        self._notify()

    async def _worker_loop(self):
        while True:
            generation, batch = await self._queue.get()
            try:
                if not self._is_current(generation):
                    self.discarded += 1
                    continue

                result = self.store.apply(batch)
                self.applied += 1
                self.rejected_records += len(result.rejected)

                if self.on_applied is not None and self._is_current(generation):
                    await self.on_applied(result)

            except ReconcileInvariantError:
                logger.critical("[LiveSync] Render pipeline invariant broken, worker stopping")
                self._set_state(SyncState.ERROR)
                raise
            except Exception as e:
                logger.exception("[LiveSync] Applying batch %s failed, worker stopping", batch.batch_id)
                self.last_error = str(e)
                self._set_state(SyncState.ERROR)
                raise
            finally:
                self._queue.task_done()

    async def drain(self):
        """Wait until every queued batch has been applied or discarded"""
        await self._queue.join()

    # ============================================
    # Status
    # ============================================

    def _set_state(self, state: SyncState):
        if state is self.state:
            return
        logger.debug("[LiveSync] %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    def _notify(self):
        if self.on_status is not None:
            self.on_status(self)

    def status(self) -> Dict[str, Any]:
        """Feed status for dashboards"""
        return {
            'state': self.state.value,
            'source': self.source.name,
            'degraded': self.degraded,
            'lastError': self.last_error,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get sync statistics"""
        return {
            **self.status(),
            'generation': self.generation,
            'queued': self._queue.qsize(),
            'received': self.received,
            'applied': self.applied,
            'rejectedRecords': self.rejected_records,
            'discarded': self.discarded,
            'connectAttempts': self.connect_attempts,
            'feedErrors': self.feed_errors,
        }
