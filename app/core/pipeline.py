"""Request pipeline composition.

The pipeline is an explicit, ordered list of stages. Starlette folds the list
into a single ASGI app (first entry outermost), so every request runs the
stages in exactly this order and any stage may answer early:

 1. request body size limit (413; transport-level guard)
 2. request logging (request id, duration, one line per request)
 3. security headers (on every response, including early answers and errors)
 4. IP restriction (403 for blocked client addresses)
 5. authentication (bearer token → request.state.principal)
 6. authorization is declared per route (require_authenticated/require_role)
 7. documentation routes are only registered in development
 8. CORS (permissive in development, origin-restricted otherwise)
 9. response caching
10. HTTPS redirect (when enabled)
11. compression
12. rate limiting (429)
13. route dispatch (FastAPI router)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.core.auth import TokenValidator, authentication_stage
from app.core.caching import response_caching_stage
from app.core.config import Settings
from app.core.middleware import (
    SECURITY_HEADERS,
    Stage,
    ip_restriction_stage,
    request_logging_stage,
    security_headers_stage,
)
from app.core.rate_limit import RateLimitMiddleware
from app.core.request_size import RequestSizeLimitMiddleware
from app.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineServices:
    """Stateful collaborators shared by the stages across requests."""

    token_validator: TokenValidator
    rate_limiter: AbstractRateLimiter
    response_cache: SimpleTTLCache


def stage(fn: Stage) -> Middleware:
    """Wrap a ``(request, call_next)`` stage function as pipeline middleware."""
    return Middleware(BaseHTTPMiddleware, dispatch=fn)


def cors_middleware(settings: Settings) -> Middleware:
    """CORS policy: allow everything in development, listed origins otherwise."""
    if settings.is_development:
        return Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )
    return Middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=settings.cors.allow_credentials,
    )


def build_pipeline(settings: Settings, services: PipelineServices) -> list[Middleware]:
    """Build the ordered middleware list for the application.

    Args:
        settings: Application settings.
        services: Shared stage state (validator, limiter, cache).

    Returns:
        Middleware list, outermost first, ready for ``FastAPI(middleware=...)``.
    """

    extra_headers = {**SECURITY_HEADERS, **settings.app.custom_headers}

    pipeline: list[Middleware] = [
        Middleware(
            RequestSizeLimitMiddleware,
            max_body_size=settings.app.max_request_body_bytes,
            extra_headers=extra_headers,
        ),
        stage(request_logging_stage(settings.log.request_id_header, logging.getLogger("app.access"))),
        stage(security_headers_stage(settings.app.custom_headers)),
    ]

    if settings.app.blocked_ips:
        pipeline.append(stage(ip_restriction_stage(settings.app.blocked_ips)))

    pipeline.append(stage(authentication_stage(services.token_validator)))
    pipeline.append(cors_middleware(settings))

    if settings.cache.enabled:
        pipeline.append(
            stage(
                response_caching_stage(
                    services.response_cache,
                    max_body_bytes=settings.cache.max_body_bytes,
                )
            )
        )

    if settings.app.https_redirect_enabled:
        pipeline.append(Middleware(HTTPSRedirectMiddleware))

    if settings.compression.enabled:
        pipeline.append(Middleware(GZipMiddleware, minimum_size=settings.compression.minimum_size))

    if settings.rate_limit.enabled:
        pipeline.append(
            Middleware(
                RateLimitMiddleware,
                limiter=services.rate_limiter,
                rate_settings=settings.rate_limit,
            )
        )

    logger.debug("pipeline.built", extra={"stages": len(pipeline)})
    return pipeline
