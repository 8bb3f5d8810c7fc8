"""Application factory for the FastAPI app.

Centralizes app construction (settings, pipeline, handlers, routers, docs)
so tests can build isolated apps with their own settings and collaborators.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.api.endpoints import map_private_group, map_public_group, route_paths
from app.api.routes import health_endpoints, post_endpoints, secure_endpoints
from app.core.auth import TokenValidator
from app.core.config import Settings, get_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.openapi import apply_openapi_customizations
from app.core.pipeline import PipelineServices, build_pipeline
from app.core.rate_limit import build_rate_limiter
from app.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)


def build_services(
    cfg: Settings,
    *,
    token_validator: TokenValidator | None = None,
    rate_limiter: AbstractRateLimiter | None = None,
    response_cache: SimpleTTLCache | None = None,
) -> PipelineServices:
    """Build the stateful collaborators, keeping any that were supplied."""

    return PipelineServices(
        token_validator=token_validator or TokenValidator(cfg.auth),
        rate_limiter=rate_limiter or build_rate_limiter(cfg.rate_limit),
        response_cache=response_cache or SimpleTTLCache(max_entries=cfg.cache.max_entries),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings
    logger.info(
        "application.started",
        extra={"environment": cfg.app.environment, "docs_enabled": cfg.is_development},
    )
    yield
    logger.info("application.stopped")


def create_app(
    settings: Settings | None = None,
    *,
    token_validator: TokenValidator | None = None,
    rate_limiter: AbstractRateLimiter | None = None,
    response_cache: SimpleTTLCache | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Application settings; the process-wide settings when omitted.
        token_validator: Bearer token validator (built from settings if omitted).
        rate_limiter: Partitioned limiter (built from settings if omitted).
        response_cache: Response cache store (built from settings if omitted).

    Returns:
        Configured FastAPI app with pipeline, handlers, routers and docs.
    """
    cfg = settings or get_settings()
    services = build_services(
        cfg,
        token_validator=token_validator,
        rate_limiter=rate_limiter,
        response_cache=response_cache,
    )

    docs_enabled = cfg.is_development

    app = FastAPI(
        title=cfg.app.title,
        version=cfg.app.version,
        description=(
            "Web API bootstrap: JWT bearer authentication, CORS, rate limiting, "
            "response compression and caching, security headers and sample "
            "post endpoints."
        ),
        docs_url="/swagger" if docs_enabled else None,
        openapi_url="/swagger/v1/swagger.json" if docs_enabled else None,
        redoc_url=None,
        middleware=build_pipeline(cfg, services),
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.services = services

    # Exception handlers
    setup_exception_handlers(app)

    # Routers, built from the endpoint registry
    secure_router = map_private_group(secure_endpoints, tags=["Auth"])
    app.include_router(map_public_group(health_endpoints, tags=["Health"]))
    app.include_router(map_public_group(post_endpoints, prefix="/tasks", tags=["Posts"]))
    app.include_router(secure_router)

    # OpenAPI customizations (security scheme, tags, public routes)
    if docs_enabled:
        apply_openapi_customizations(app, protected_paths=route_paths(secure_router))

    return app
