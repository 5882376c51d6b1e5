"""
Rate-limited work queue feeding the reconcile workers.

Watch handlers only enqueue keys; a fixed pool of asyncio workers drains the
queue. The queue guarantees:
1. A key is waiting in the queue at most once
2. A key is never processed by two workers at the same time
3. A key added while it is being processed runs again once the current pass ends
4. Failed keys come back with per-key exponential backoff
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from kubevirtbmc.constants import DEFAULT_REQUEUE_BASE_DELAY, DEFAULT_REQUEUE_MAX_DELAY
from kubevirtbmc.errors import OperatorError
from kubevirtbmc.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectKey:
    """Namespace and name of the resource to reconcile."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a reconcile pass that did not raise."""

    requeue: bool = False
    requeue_after: float | None = None


ReconcileFunc = Callable[[ObjectKey], Awaitable[ReconcileResult]]


class ReconcileQueue:
    """Deduplicating work queue with single-flight processing per key."""

    def __init__(
        self,
        reconcile: ReconcileFunc,
        workers: int = 4,
        base_delay: float = DEFAULT_REQUEUE_BASE_DELAY,
        max_delay: float = DEFAULT_REQUEUE_MAX_DELAY,
    ):
        """
        Initialize the queue.

        Args:
            reconcile: Coroutine function called once per dequeued key
            workers: Number of concurrent workers
            base_delay: First retry delay in seconds
            max_delay: Upper bound for the retry delay in seconds
        """
        self.reconcile = reconcile
        self.workers = workers
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._queue: asyncio.Queue[ObjectKey] = asyncio.Queue()
        self._queued: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()
        self._failures: dict[ObjectKey, int] = {}
        self._timers: dict[ObjectKey, tuple[float, asyncio.TimerHandle]] = {}
        self._tasks: list[asyncio.Task] = []

    def __len__(self) -> int:
        return len(self._queued)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def add(self, key: ObjectKey) -> None:
        """Enqueue a key unless it is already waiting."""
        if key in self._queued:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        self._queued.add(key)
        self._queue.put_nowait(key)
        metrics_collector.set_queue_depth(len(self._queued))

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """
        Enqueue a key once the delay has elapsed.

        When a delayed add for the key is already pending, the earlier of the
        two deadlines wins.
        """
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        due = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending[0] <= due:
                return
            pending[1].cancel()

        self._timers[key] = (due, loop.call_at(due, self._fire_timer, key))

    def _fire_timer(self, key: ObjectKey) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def backoff_delay(self, key: ObjectKey) -> float:
        """Delay for the next retry of a key, doubling on each failure."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2**failures), self.max_delay)

    def forget(self, key: ObjectKey) -> None:
        """Reset the backoff of a key after a successful pass."""
        self._failures.pop(key, None)

    def retries(self, key: ObjectKey) -> int:
        return self._failures.get(key, 0)

    async def start(self) -> None:
        """Start the worker pool."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Started {self.workers} reconcile workers")

    async def stop(self) -> None:
        """Cancel the workers and every pending delayed add."""
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Reconcile workers stopped")

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            metrics_collector.set_queue_depth(len(self._queued))
            try:
                await self._process(key)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._dirty.discard(key)
                    metrics_collector.record_requeue("dirty")
                    self.add(key)
                self._queue.task_done()

    async def _process(self, key: ObjectKey) -> None:
        try:
            result = await self.reconcile(key)
        except asyncio.CancelledError:
            raise
        except OperatorError as e:
            if not e.retryable:
                logger.warning(
                    f"Dropping {key} after non-retryable error: {e}",
                    extra={"queue_key": str(key), "error_type": type(e).__name__},
                )
                self.forget(key)
                return
            self._retry(key, e, e.delay)
        except Exception as e:
            self._retry(key, e, None)
        else:
            self.forget(key)
            if result.requeue_after is not None:
                metrics_collector.record_requeue("requeue_after")
                self.add_after(key, result.requeue_after)
            elif result.requeue:
                metrics_collector.record_requeue("requeue")
                self.add_after(key, self.base_delay)

    def _retry(self, key: ObjectKey, error: Exception, delay: float | None) -> None:
        backoff = self.backoff_delay(key)
        if delay is None:
            delay = backoff
        metrics_collector.record_requeue("error")
        logger.info(
            f"Retrying {key} in {delay:.1f}s after {type(error).__name__}",
            extra={
                "queue_key": str(key),
                "error_type": type(error).__name__,
                "retries": self.retries(key),
            },
        )
        self.add_after(key, delay)
