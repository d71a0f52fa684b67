"""Rate-limited request scheduler for outbound provider calls.

Every call to the market-data provider goes through ``RequestScheduler``:

- Work is queued FIFO and dispatched by one dedicated worker task, so at most
  one call is in flight at any time.
- Before each dispatch the sliding window is pruned and checked; when the
  quota is used up the worker sleeps until the oldest slot frees up (never
  less than ``floor_wait_seconds``).
- The dispatch timestamp is recorded before the call runs, so a failed call
  still consumes a slot. The provider counts issued calls, not successful ones.
- Callers get an ``asyncio.Future`` back and are settled exactly once with the
  work's result or exception. The scheduler never inspects or retries errors.

Notes:
- Per-process only, no persistence.
- Must be used from a single event loop; no locks are taken.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from stockdash.adapters.rate_limit.base import (
    DispatcherState,
    QueueStats,
    RateLimitConfig,
    StatusSnapshot,
)
from stockdash.adapters.rate_limit.window import SlidingWindowTracker
from stockdash.core.errors import QueueClearedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ExecuteFn = Callable[[], "Awaitable[T] | T"]


@dataclass
class _WorkItem:
    id: str
    execute_fn: Callable[[], Any]
    enqueued_at: float
    future: asyncio.Future


class RequestScheduler:
    """Serializes provider calls under a sliding-window quota.

    Attributes:
        config: Immutable quota configuration.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            config: Quota to enforce; defaults to 5 requests / 60 seconds.
            clock: Monotonic time source in seconds. Dispatch timestamps,
                ``enqueued_at`` and ``next_available_at`` use this clock.
        """
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._window = SlidingWindowTracker(
            max_requests=self.config.max_requests,
            window_seconds=self.config.window_seconds,
        )
        self._queue: deque[_WorkItem] = deque()
        self._counter = itertools.count(1)
        self._state = DispatcherState.IDLE
        self._worker: asyncio.Task | None = None
        self._wakeup: asyncio.Event | None = None
        self._in_flight: _WorkItem | None = None

        logger.info(
            "scheduler.initialized",
            extra={
                "max_requests": self.config.max_requests,
                "window_s": self.config.window_seconds,
                "floor_wait_s": self.config.floor_wait_seconds,
            },
        )

    @property
    def state(self) -> DispatcherState:
        """IDLE when the worker is parked on an empty queue, DRAINING otherwise."""
        return self._state

    @property
    def queue_length(self) -> int:
        """Items waiting for dispatch; the one in flight is not counted."""
        return len(self._queue)

    def schedule(self, execute_fn: ExecuteFn) -> "asyncio.Future[T]":
        """Queue a unit of work and return its completion handle.

        Args:
            execute_fn: Zero-argument callable. Its return value is awaited
                when it is awaitable.

        Returns:
            Future settled with the work's result or exception, or with
            ``QueueClearedError`` if ``clear()`` runs before dispatch.

        Raises:
            RuntimeError: If called without a running event loop.
        """
        loop = asyncio.get_running_loop()
        now = self._clock()
        item = _WorkItem(
            id=f"req_{next(self._counter)}_{int(time.time() * 1000)}",
            execute_fn=execute_fn,
            enqueued_at=now,
            future=loop.create_future(),
        )
        self._queue.append(item)

        logger.debug(
            "scheduler.enqueued",
            extra={"work_id": item.id, "queue_length": len(self._queue)},
        )

        self._ensure_worker(loop)
        if self._state is DispatcherState.IDLE:
            self._wake()
        return item.future

    def get_status(self) -> StatusSnapshot:
        """Snapshot the quota window and queue.

        Prunes expired dispatches first, so the numbers are current even
        while the worker is parked.

        Returns:
            StatusSnapshot with ``next_available_at`` on the scheduler clock.
            ``retry_after_seconds`` is 0 whenever a slot is free.
        """
        now = self._clock()
        self._window.prune(now)
        can_admit = self._window.can_admit()
        next_free_at = self._window.next_free_at(now)
        return StatusSnapshot(
            requests_in_window=self._window.count(),
            max_requests=self.config.max_requests,
            queue_length=len(self._queue),
            can_dispatch_now=can_admit,
            next_available_at=next_free_at,
            retry_after_seconds=0.0 if can_admit else max(0.0, next_free_at - now),
        )

    def get_queue_stats(self) -> QueueStats:
        """Summarize how long queued items have been waiting.

        Returns:
            QueueStats over the items not yet dispatched. All fields are 0
            for an empty queue.
        """
        now = self._clock()
        waits = [now - item.enqueued_at for item in self._queue]
        if not waits:
            return QueueStats(
                total_queued=0,
                average_wait_seconds=0.0,
                oldest_request_age_seconds=0.0,
            )
        return QueueStats(
            total_queued=len(waits),
            average_wait_seconds=sum(waits) / len(waits),
            oldest_request_age_seconds=max(waits),
        )

    def clear(self) -> int:
        """Reject every queued item with ``QueueClearedError``.

        Work already dispatched keeps running and settles normally. With
        nothing in flight the worker goes back to IDLE at once; otherwise
        it stays DRAINING until the in-flight call settles and it finds the
        queue empty.

        Returns:
            Number of items rejected.
        """
        rejected = 0
        while self._queue:
            item = self._queue.popleft()
            if not item.future.done():
                item.future.set_exception(QueueClearedError())
                rejected += 1

        if self._in_flight is None:
            self._state = DispatcherState.IDLE
        self._wake()

        logger.info("scheduler.cleared", extra={"rejected": rejected})
        return rejected

    async def aclose(self) -> None:
        """Clear the queue and stop the worker.

        An item in flight at this point has its future cancelled.
        """
        self.clear()
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        self._state = DispatcherState.IDLE

    def _ensure_worker(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._wakeup = asyncio.Event()
        self._worker = loop.create_task(self._run(), name="request-scheduler")

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def _run(self) -> None:
        assert self._wakeup is not None
        wakeup = self._wakeup
        while True:
            if not self._queue:
                self._state = DispatcherState.IDLE
                wakeup.clear()
                # schedule() may have appended between the check and clear()
                if not self._queue:
                    await wakeup.wait()
                continue

            self._state = DispatcherState.DRAINING
            now = self._clock()
            self._window.prune(now)

            if self._window.can_admit():
                item = self._queue.popleft()
                if item.future.done():
                    # Cancelled by the caller while queued; no slot consumed.
                    continue
                self._window.record(now)
                await self._dispatch(item, now)
                continue

            wait = max(self._window.next_free_at(now) - now, self.config.floor_wait_seconds)
            logger.debug(
                "scheduler.waiting",
                extra={
                    "wait_s": round(wait, 3),
                    "queue_length": len(self._queue),
                    "requests_in_window": self._window.count(),
                },
            )
            wakeup.clear()
            try:
                await asyncio.wait_for(wakeup.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    async def _dispatch(self, item: _WorkItem, dispatched_at: float) -> None:
        self._in_flight = item
        logger.debug(
            "scheduler.dispatched",
            extra={
                "work_id": item.id,
                "queued_s": round(dispatched_at - item.enqueued_at, 3),
                "requests_in_window": self._window.count(),
            },
        )
        try:
            result = item.execute_fn()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            item.future.cancel()
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # The work cancelled itself; the worker keeps draining.
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
            logger.debug(
                "scheduler.settled",
                extra={"work_id": item.id, "outcome": "error", "error_type": type(exc).__name__},
            )
        else:
            if not item.future.done():
                item.future.set_result(result)
            logger.debug("scheduler.settled", extra={"work_id": item.id, "outcome": "ok"})
        finally:
            self._in_flight = None
