"""In-memory TTL cache backing the response caching stage.

Single-process and thread-safe. Every entry carries its own lifetime (taken
from the response's ``max-age``) and the time it was stored, which the
caching stage reports back to clients as the ``Age`` header. The interface is
small enough to put a shared store (e.g., Redis) behind later.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from hashlib import sha256
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class CacheItem:
    """Cached value with its storage and expiry timestamps (UNIX seconds)."""

    value: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SimpleTTLCache:
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        ttl_seconds: Lifetime used when ``set`` is called without one.
        max_entries: Capacity; the least recently used entry goes first
            (None for unbounded).
    """

    def __init__(self, ttl_seconds: float = 60, max_entries: int | None = 1024) -> None:
        self._default_ttl = ttl_seconds
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._counters = {"hits": 0, "misses": 0, "evictions": 0}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"SimpleTTLCache(ttl_seconds={self._default_ttl}, max_entries={self._max_entries}, size={len(self._entries)})"

    def get_item(self, key: str) -> CacheItem | None:
        """Return the fresh entry for ``key`` (value plus timestamps).

        Expired entries are dropped on access.

        Args:
            key: Cache key.

        Returns:
            CacheItem, or None when missing or expired.
        """

        with self._lock:
            item = self._entries.get(key)
            if item is not None and item.is_expired(time.time()):
                self._drop_locked(key)
                item = None

            if item is None:
                self._counters["misses"] += 1
                return None

            self._counters["hits"] += 1
            self._entries.move_to_end(key)
            return item

    def get(self, key: str) -> Any | None:
        """Return the cached value for ``key``, or None."""

        item = self.get_item(key)
        return item.value if item else None

    def set(self, key: str, value: Any, *, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds`` (or the default TTL).

        Expired entries are purged first, then the least recently used
        entries are evicted while the cache is over capacity.
        """

        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = time.time()
            for stale in [k for k, item in self._entries.items() if item.is_expired(now)]:
                self._drop_locked(stale)

            self._entries[key] = CacheItem(value=value, stored_at=now, expires_at=now + ttl)
            self._entries.move_to_end(key)

            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)
                    self._counters["evictions"] += 1

            logger.debug(
                "cache.set",
                extra={"cache_key": key[:16], "size": len(self._entries), "ttl_s": ttl},
            )

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether it was present."""

        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry and reset the counters."""

        with self._lock:
            self._entries.clear()
            self._counters = dict.fromkeys(self._counters, 0)

    def stats(self) -> dict[str, int | float | None]:
        """Return counters and size, never the cached values."""

        with self._lock:
            return {
                "ttl_seconds": self._default_ttl,
                "max_entries": self._max_entries,
                "entries": len(self._entries),
                **self._counters,
            }

    def _drop_locked(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._counters["evictions"] += 1


def build_cache_key(*parts: str) -> str:
    """Build a stable cache key from request attributes.

    Args:
        parts: Strings identifying the cached representation
            (method, path, query, negotiated encoding...).

    Returns:
        Hex-encoded SHA-256 digest string.
    """

    hasher = sha256()
    for part in parts:
        hasher.update(part.encode())
        hasher.update(b"\x00")
    return hasher.hexdigest()
