"""Work queue and worker loop for the reboot controller.

Record keys reach the reconciler through a WorkQueue:

- a key is queued at most once at a time (repeated adds coalesce)
- a key handed to a worker is never handed to another worker until done()
  is called; adds made while it is processing are delivered afterwards
- add_after() schedules a delayed delivery (per-record backoff)

Keys are produced by explicit enqueue() calls, by delayed requeues returned
from the reconciler, and by a periodic resync that lists every record.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque

from janitor.reconciler import RebootNodeReconciler
from janitor.store import RecordStore

logger = logging.getLogger(__name__)


class QueueShutDown(Exception):
    """Raised by WorkQueue.get() once the queue has been shut down."""


class WorkQueue:
    """Deduplicating, single-flight async work queue."""

    def __init__(self) -> None:
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._cond = asyncio.Condition()
        self._shutting_down = False
        # Strong references to in-flight delayed adds
        self._adds: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> int:
        return len(self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def _add_nowait(self, key: str) -> bool:
        if self._shutting_down or key in self._dirty:
            return False
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.append(key)
        return True

    async def add(self, key: str) -> None:
        async with self._cond:
            if self._add_nowait(key):
                self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        """Deliver key after delay seconds, keeping the earliest pending delivery."""
        if self._shutting_down:
            return
        loop = asyncio.get_running_loop()
        if delay <= 0:
            self._spawn_add(loop, key)
            return
        existing = self._timers.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()

        def _fire() -> None:
            self._timers.pop(key, None)
            self._spawn_add(loop, key)

        self._timers[key] = loop.call_later(delay, _fire)

    def _spawn_add(self, loop: asyncio.AbstractEventLoop, key: str) -> None:
        task = loop.create_task(self.add(key))
        self._adds.add(task)
        task.add_done_callback(self._adds.discard)

    async def get(self) -> str:
        async with self._cond:
            while not self._queue:
                if self._shutting_down:
                    raise QueueShutDown()
                await self._cond.wait()
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    async def done(self, key: str) -> None:
        async with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    async def shutdown(self) -> None:
        async with self._cond:
            self._shutting_down = True
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._cond.notify_all()


class ErrorRateLimiter:
    """Per-key exponential delay for keys whose reconcile raised."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[str, int] = {}

    def when(self, key: str) -> float:
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)


class RebootNodeController:
    """Runs reconcile workers and the periodic resync."""

    def __init__(
        self,
        reconciler: RebootNodeReconciler,
        store: RecordStore,
        *,
        workers: int = 4,
        resync_interval: float = 300.0,
        queue: WorkQueue | None = None,
        rate_limiter: ErrorRateLimiter | None = None,
    ):
        self.reconciler = reconciler
        self.store = store
        self.workers = workers
        self.resync_interval = resync_interval
        self.queue = queue or WorkQueue()
        self.rate_limiter = rate_limiter or ErrorRateLimiter()
        self.reconcile_count = 0
        self.error_count = 0

    async def enqueue(self, name: str) -> None:
        await self.queue.add(name)

    async def resync(self) -> int:
        """Enqueue every known record. Returns the number of keys queued."""
        records = await self.store.list()
        for record in records:
            await self.queue.add(record.name)
        logger.debug(f"Resync queued {len(records)} rebootnodes")
        return len(records)

    async def process_next(self) -> str:
        """Take one key from the queue and reconcile it."""
        key = await self.queue.get()
        try:
            result = await self.reconciler.reconcile(key)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_count += 1
            delay = self.rate_limiter.when(key)
            logger.error(
                f"Reconcile of rebootnode {key} failed, retrying in {delay:.3f}s: {e}",
                exc_info=True,
            )
            self.queue.add_after(key, delay)
        else:
            self.reconcile_count += 1
            self.rate_limiter.forget(key)
            if result.requeue_after is not None:
                self.queue.add_after(key, result.requeue_after)
        finally:
            await self.queue.done(key)
        return key

    async def _worker(self, index: int) -> None:
        logger.debug(f"Reconcile worker {index} started")
        while True:
            try:
                await self.process_next()
            except QueueShutDown:
                logger.debug(f"Reconcile worker {index} stopping")
                return

    async def _resync_loop(self) -> None:
        while not self.queue.shutting_down:
            try:
                await self.resync()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Resync of rebootnodes failed: {e}")
            await asyncio.sleep(self.resync_interval)

    async def run(self) -> None:
        """Run workers and resync until cancelled.

        A queue left shut down by an earlier run is replaced, so the
        supervisor can restart a crashed controller. Keys pending in the
        old queue are picked up again by the first resync.
        """
        if self.queue.shutting_down:
            self.queue = WorkQueue()
        logger.info(f"Starting rebootnode controller with {self.workers} workers")
        tasks = [
            asyncio.create_task(self._worker(i), name=f"rebootnode-worker-{i}")
            for i in range(self.workers)
        ]
        tasks.append(asyncio.create_task(self._resync_loop(), name="rebootnode-resync"))
        try:
            await asyncio.gather(*tasks)
        finally:
            await self.queue.shutdown()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Rebootnode controller stopped")
