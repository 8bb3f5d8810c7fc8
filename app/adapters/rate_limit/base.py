"""Rate limiter interfaces.

The pipeline depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitLease:
    """Result of a rate limit admission attempt.

    Attributes:
        granted: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining permits in the current window (0 when exhausted).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when rejected.
        queued: Whether the request waited in the queue before being granted.
    """

    granted: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None = None
    queued: bool = False


class AbstractRateLimiter(ABC):
    """Interface for partitioned rate limiters."""

    @abstractmethod
    def try_acquire(self, key: str) -> RateLimitLease:
        """Take a permit for ``key`` without waiting.

        Args:
            key: Partition key (e.g., client address).

        Returns:
            RateLimitLease describing whether a permit was taken.
        """
        raise NotImplementedError

    @abstractmethod
    async def acquire(self, key: str) -> RateLimitLease:
        """Take a permit for ``key``, waiting in the queue if allowed.

        Args:
            key: Partition key (e.g., client address).

        Returns:
            RateLimitLease describing whether the request was admitted.
        """
        raise NotImplementedError
