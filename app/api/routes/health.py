from __future__ import annotations

from fastapi.responses import PlainTextResponse

from app.api.endpoints import EndpointDescriptor


def hello() -> str:
    """Greeting endpoint."""

    return "Hello, World!"


def health_check() -> str:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service
    liveness. Never requires authentication.
    """

    return "Healthy"


ENDPOINTS = (
    EndpointDescriptor(
        method="GET",
        path="/",
        handler=hello,
        summary="Greeting",
        response_class=PlainTextResponse,
        cache_seconds=60,
    ),
    EndpointDescriptor(
        method="GET",
        path="/health",
        handler=health_check,
        summary="Liveness check",
        response_class=PlainTextResponse,
    ),
)
