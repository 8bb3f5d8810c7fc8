"""Rate limiting middleware for the request pipeline.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: the middleware depends on the limiter interface only.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind an
  abstract interface.

Rate limiting strategy:
- Fixed-window limit per client address, with a small wait queue.
- If the client address is unknown, all such requests share one partition.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import Request, Response, status
from starlette.types import ASGIApp, Receive, Scope, Send

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitLease
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.config import RateLimitSettings

DEFAULT_PARTITION = "default"


def build_rate_limiter(
    rate_settings: RateLimitSettings,
    logger: logging.Logger | None = None,
) -> AbstractRateLimiter:
    """Build the process-wide limiter described by ``rate_settings``."""

    return InMemoryFixedWindowRateLimiter(
        limit=rate_settings.permit_limit,
        window_seconds=rate_settings.window_seconds,
        queue_limit=rate_settings.queue_limit,
        logger=logger,
    )


def partition_key(request: Request) -> str:
    """Return the limiter partition for the request: the client address."""

    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_PARTITION


def _hash_partition_key(key: str) -> str:
    """Hash the partition key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _rejection_headers(lease: RateLimitLease) -> dict[str, str]:
    return {
        "Retry-After": str(lease.retry_after_seconds or 0),
        "X-RateLimit-Limit": str(lease.limit),
        "X-RateLimit-Remaining": str(lease.remaining),
        "X-RateLimit-Reset": str(lease.reset_at),
    }


class RateLimitMiddleware:
    """ASGI middleware enforcing rate limits.

    Each request takes one permit from its partition. Without a wait queue
    the permit is taken without waiting; otherwise the request may wait for
    the next window. When the partition and its queue are both exhausted the
    request is answered with a bare 429.

    Raw ASGI middleware, so the route's response streams through untouched
    and the compression stage outside it still sees the real body size.

    Usage:
        app.add_middleware(RateLimitMiddleware, limiter=limiter, rate_settings=settings.rate_limit)
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: AbstractRateLimiter,
        rate_settings: RateLimitSettings,
        logger: logging.Logger | None = None,
    ) -> None:
        self.app = app
        self.limiter = limiter
        self.rate_settings = rate_settings
        self.logger = logger or logging.getLogger(__name__)

    async def _admit(self, key: str) -> RateLimitLease:
        if self.rate_settings.queue_limit == 0:
            return self.limiter.try_acquire(key)
        return await self.limiter.acquire(key)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        key = partition_key(request)
        lease = await self._admit(key)

        if lease.granted:
            self.logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": _hash_partition_key(key),
                    "limit": lease.limit,
                    "remaining": lease.remaining,
                    "queued": lease.queued,
                },
            )
            await self.app(scope, receive, send)
            return

        self.logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": _hash_partition_key(key),
                "limit": lease.limit,
                "window_s": self.rate_settings.window_seconds,
                "retry_after_s": lease.retry_after_seconds,
                "request_path": request.url.path,
            },
        )

        headers = _rejection_headers(lease) if self.rate_settings.include_headers else None
        response = Response(status_code=status.HTTP_429_TOO_MANY_REQUESTS, headers=headers)
        await response(scope, receive, send)
