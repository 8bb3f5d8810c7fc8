"""In-memory fixed-window rate limiter with a bounded wait queue.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Queued waiters are asyncio futures, so ``acquire`` must always be awaited
  from the same event loop.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitLease


@dataclass
class _Partition:
    window_index: int
    permits: int
    waiters: deque[asyncio.Future] = field(default_factory=deque)
    timer: asyncio.TimerHandle | None = None


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per partition key.

    Each partition starts with ``limit`` permits. Windows are aligned to the
    moment the limiter was created, so counters reset on a fixed schedule
    regardless of when requests arrive. Once a partition is exhausted, up to
    ``queue_limit`` requests wait for the next window and are admitted
    oldest-first; anything beyond that is rejected immediately.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        queue_limit: int = 0,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of permits per window.
            window_seconds: Size of the fixed window in seconds.
            queue_limit: Requests allowed to wait once the window is exhausted.
            clock: Time source function returning UNIX time in seconds.
            logger: Logger for queue and reset events.

        Raises:
            ValueError: If limit, window_seconds or queue_limit are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if queue_limit < 0:
            raise ValueError("queue_limit must be >= 0")

        self._limit = limit
        self._window_seconds = window_seconds
        self._queue_limit = queue_limit
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._epoch = clock()
        self._next_prune = self._epoch + window_seconds
        self._partitions: dict[str, _Partition] = {}

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def queue_limit(self) -> int:
        return self._queue_limit

    def _window_index(self, now: float) -> int:
        return int((now - self._epoch) // self._window_seconds)

    def _reset_at(self, window_index: int) -> float:
        return self._epoch + (window_index + 1) * self._window_seconds

    def _lease(self, partition: _Partition, *, granted: bool, now: float, queued: bool = False) -> RateLimitLease:
        reset_at = self._reset_at(partition.window_index)
        retry_after = None if granted else max(1, int(math.ceil(reset_at - now)))
        return RateLimitLease(
            granted=granted,
            limit=self._limit,
            remaining=partition.permits,
            reset_at=int(math.ceil(reset_at)),
            retry_after_seconds=retry_after,
            queued=queued,
        )

    def _refresh_locked(self, key: str, now: float) -> _Partition:
        """Get the partition for ``key``, replenishing it when the window changed.

        Replenishing hands fresh permits to queued waiters first, oldest-first.
        """
        window_index = self._window_index(now)
        partition = self._partitions.get(key)
        if partition is None:
            partition = _Partition(window_index=window_index, permits=self._limit)
            self._partitions[key] = partition
            return partition

        if partition.window_index != window_index:
            partition.window_index = window_index
            partition.permits = self._limit
            while partition.waiters and partition.permits > 0:
                waiter = partition.waiters.popleft()
                if waiter.done():
                    continue
                partition.permits -= 1
                waiter.set_result(self._lease(partition, granted=True, now=now, queued=True))

        return partition

    def _prune_locked(self, now: float) -> None:
        """Drop idle partitions from past windows to bound memory."""
        if now < self._next_prune:
            return
        current = self._window_index(now)
        idle = [
            key
            for key, partition in self._partitions.items()
            if partition.window_index < current and not partition.waiters and partition.timer is None
        ]
        for key in idle:
            del self._partitions[key]
        self._next_prune = now + self._window_seconds

    def _schedule_replenish_locked(self, key: str, partition: _Partition, now: float) -> None:
        if partition.timer is not None:
            return
        delay = max(0.0, self._reset_at(partition.window_index) - now)
        loop = asyncio.get_running_loop()
        partition.timer = loop.call_later(delay, self._on_window_elapsed, key)

    def _on_window_elapsed(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            partition = self._partitions.get(key)
            if partition is None:
                return
            partition.timer = None
            self._refresh_locked(key, now)
            if partition.waiters:
                self._schedule_replenish_locked(key, partition, now)

    def try_acquire(self, key: str) -> RateLimitLease:
        """Take a permit for ``key`` if one is available in the current window.

        Args:
            key: Partition key (e.g., client address).

        Returns:
            RateLimitLease with admission decision and metadata.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()
        with self._lock:
            self._prune_locked(now)
            partition = self._refresh_locked(key, now)
            if partition.permits > 0 and not partition.waiters:
                partition.permits -= 1
                return self._lease(partition, granted=True, now=now)
            return self._lease(partition, granted=False, now=now)

    async def acquire(self, key: str) -> RateLimitLease:
        """Take a permit for ``key``, queueing while the partition is exhausted.

        Args:
            key: Partition key (e.g., client address).

        Returns:
            RateLimitLease; ``granted`` is False only when the queue is full.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        now = self._clock()
        with self._lock:
            self._prune_locked(now)
            partition = self._refresh_locked(key, now)

            if partition.permits > 0 and not partition.waiters:
                partition.permits -= 1
                return self._lease(partition, granted=True, now=now)

            if len(partition.waiters) >= self._queue_limit:
                return self._lease(partition, granted=False, now=now)

            waiter: asyncio.Future = asyncio.get_running_loop().create_future()
            partition.waiters.append(waiter)
            queue_depth = len(partition.waiters)
            self._schedule_replenish_locked(key, partition, now)

        self._logger.debug(
            "rate_limit.queued",
            extra={"queue_depth": queue_depth, "queue_limit": self._queue_limit},
        )

        try:
            return await waiter
        except asyncio.CancelledError:
            with self._lock:
                if waiter in partition.waiters:
                    partition.waiters.remove(waiter)
                elif waiter.done() and not waiter.cancelled():
                    # Permit was handed over as the caller went away; give it back.
                    partition.permits += 1
            raise

    def queue_depth(self, key: str) -> int:
        """Number of requests currently waiting for ``key``."""
        with self._lock:
            partition = self._partitions.get(key)
            return len(partition.waiters) if partition else 0
