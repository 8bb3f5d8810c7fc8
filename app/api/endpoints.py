"""Endpoint registry.

Each feature describes its routes as ``EndpointDescriptor`` values. At
startup the app factory builds one router per group by iterating a known
list of descriptors, so every route the API serves is visible here and in
the feature modules, without any discovery magic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from fastapi import APIRouter, Depends, Response
from fastapi.params import Depends as DependsParam

from app.core.auth import require_authenticated


@dataclass(frozen=True)
class EndpointDescriptor:
    """Declarative description of a single route."""

    method: str
    path: str
    handler: Callable[..., Any]
    summary: str
    response_model: Any = None
    response_class: type[Response] | None = None
    status_code: int = 200
    cache_seconds: int | None = None
    dependencies: tuple[DependsParam, ...] = field(default_factory=tuple)


def cache_control(seconds: int) -> Callable[[Response], None]:
    """Dependency marking the response as publicly cacheable for ``seconds``."""

    def set_cache_control(response: Response) -> None:
        response.headers["Cache-Control"] = f"public, max-age={seconds}"

    return set_cache_control


def map_endpoint(router: APIRouter, endpoint: EndpointDescriptor) -> APIRouter:
    """Register ``endpoint`` on ``router`` and return the router."""

    dependencies = list(endpoint.dependencies)
    if endpoint.cache_seconds:
        dependencies.append(Depends(cache_control(endpoint.cache_seconds)))

    extra: dict[str, Any] = {}
    if endpoint.response_class is not None:
        extra["response_class"] = endpoint.response_class

    router.add_api_route(
        endpoint.path,
        endpoint.handler,
        methods=[endpoint.method],
        summary=endpoint.summary,
        response_model=endpoint.response_model,
        response_model_exclude_none=True,
        status_code=endpoint.status_code,
        dependencies=dependencies,
        **extra,
    )
    return router


def map_public_group(
    endpoints: Sequence[EndpointDescriptor],
    *,
    prefix: str = "",
    tags: Sequence[str] = (),
) -> APIRouter:
    """Build a router whose routes allow anonymous callers."""

    router = APIRouter(prefix=prefix, tags=list(tags))
    for endpoint in endpoints:
        map_endpoint(router, endpoint)
    return router


def map_private_group(
    endpoints: Sequence[EndpointDescriptor],
    *,
    prefix: str = "",
    tags: Sequence[str] = (),
) -> APIRouter:
    """Build a router whose routes all require an authenticated caller."""

    router = APIRouter(
        prefix=prefix,
        tags=list(tags),
        dependencies=[Depends(require_authenticated)],
    )
    for endpoint in endpoints:
        map_endpoint(router, endpoint)
    return router


def route_paths(router: APIRouter) -> list[str]:
    """Full paths registered on ``router`` (used for OpenAPI security)."""

    return [route.path for route in router.routes if hasattr(route, "path")]
