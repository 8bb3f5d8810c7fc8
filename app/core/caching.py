"""Response caching stage.

Serves repeated GET/HEAD requests from memory when the route marked its
response as shareable (``Cache-Control: public, max-age=N``). Requests that
carry credentials or ask for a fresh copy always reach the route.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from fastapi import Request, Response

from app.core.middleware import CallNext, Stage
from app.utils.simple_cache import SimpleTTLCache, build_cache_key

CACHEABLE_METHODS = {"GET", "HEAD"}
_UNCACHEABLE_DIRECTIVES = {"private", "no-store", "no-cache"}
_HOP_HEADERS = {"content-length", "date", "age", "set-cookie"}


@dataclass(frozen=True)
class CachedResponse:
    status_code: int
    headers: tuple[tuple[str, str], ...]
    body: bytes
    media_type: str | None


def parse_cache_control(value: str | None) -> dict[str, str | None]:
    """Parse a Cache-Control header into a directive mapping.

    Examples:
        >>> parse_cache_control("public, max-age=60")
        {'public': None, 'max-age': '60'}
    """
    directives: dict[str, str | None] = {}
    if not value:
        return directives
    for part in value.split(","):
        name, _, arg = part.strip().partition("=")
        if name:
            directives[name.lower()] = arg.strip('"') or None
    return directives


def shared_max_age(response: Response) -> int | None:
    """Return how long ``response`` may be cached, or None if it may not."""
    if response.status_code != 200 or "set-cookie" in response.headers:
        return None

    directives = parse_cache_control(response.headers.get("cache-control"))
    if "public" not in directives or _UNCACHEABLE_DIRECTIVES & directives.keys():
        return None

    raw = directives.get("s-maxage") or directives.get("max-age")
    try:
        max_age = int(raw) if raw is not None else 0
    except ValueError:
        return None
    return max_age if max_age > 0 else None


def _request_is_cacheable(request: Request) -> bool:
    if request.method not in CACHEABLE_METHODS:
        return False
    if "authorization" in request.headers:
        return False
    directives = parse_cache_control(request.headers.get("cache-control"))
    return not (_UNCACHEABLE_DIRECTIVES & directives.keys())


def _cache_key(request: Request) -> str:
    return build_cache_key(
        request.method,
        request.url.path,
        request.url.query,
        request.headers.get("accept-encoding", ""),
    )


def response_caching_stage(
    cache: SimpleTTLCache,
    *,
    max_body_bytes: int,
    logger: logging.Logger | None = None,
) -> Stage:
    """Build the pipeline stage that caches shareable responses.

    Args:
        cache: Store for cached responses.
        max_body_bytes: Larger bodies are passed through without caching.
        logger: Logger for cache decisions.

    Returns:
        Stage function for the pipeline.
    """

    log = logger or logging.getLogger(__name__)

    async def cache_responses(request: Request, call_next: CallNext) -> Response:
        if not _request_is_cacheable(request):
            return await call_next(request)

        key = _cache_key(request)
        item = cache.get_item(key)
        if item is not None:
            cached: CachedResponse = item.value
            age = max(0, int(time.time() - item.stored_at))
            response = Response(
                content=cached.body,
                status_code=cached.status_code,
                media_type=cached.media_type,
            )
            for name, value in cached.headers:
                response.headers.append(name, value)
            response.headers["Age"] = str(age)
            log.debug("response_cache.hit", extra={"path": request.url.path, "age_s": age})
            return response

        response = await call_next(request)
        max_age = shared_max_age(response)
        if max_age is None:
            return response

        body = b""
        async for chunk in response.body_iterator:
            body += chunk
            if len(body) > max_body_bytes:
                # Too large to keep; drain the rest straight into the reply.
                async for rest in response.body_iterator:
                    body += rest
                return _rebuild(response, body)

        headers = tuple(
            (name, value)
            for name, value in response.headers.items()
            if name.lower() not in _HOP_HEADERS and name.lower() != "content-type"
        )
        cache.set(
            key,
            CachedResponse(
                status_code=response.status_code,
                headers=headers,
                body=body,
                media_type=response.headers.get("content-type"),
            ),
            ttl_seconds=max_age,
        )
        log.debug("response_cache.stored", extra={"path": request.url.path, "ttl_s": max_age})
        return _rebuild(response, body)

    return cache_responses


def _rebuild(response: Response, body: bytes) -> Response:
    rebuilt = Response(content=body, status_code=response.status_code)
    for name, value in response.headers.items():
        if name.lower() != "content-length":
            rebuilt.headers.append(name, value)
    return rebuilt
