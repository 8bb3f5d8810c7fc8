"""HTTP stages for request correlation, logging and response hardening.

Every stage is an async function ``(request, call_next) -> response``; the
pipeline module wraps each one with Starlette's ``BaseHTTPMiddleware``.
Stages that need configuration are built by factories taking the relevant
settings and a logger.

The request logging stage:
- Accepts incoming X-Request-ID header or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Injects request_id into response headers for client-side tracking
- Measures total request duration and includes it in response headers
- Emits one structured log line per request
- Clears context after request completion to prevent context leaks
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, Mapping

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse

from app.core.errors import AppError
from app.core.exception_handlers import app_error_handler, general_exception_handler
from app.core.logging import clear_request_id, set_request_id

CallNext = Callable[[Request], Awaitable[Response]]
Stage = Callable[[Request, CallNext], Awaitable[Response]]

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'self'",
}


def request_logging_stage(
    request_id_header: str = "X-Request-ID",
    logger: logging.Logger | None = None,
) -> Stage:
    """Build the outermost stage: request id propagation and access logging.

    If the client provides the request id header, that value is used.
    Otherwise a new UUID is generated. The id is propagated back in the
    response headers and stored in contextvars for log correlation.

    Args:
        request_id_header: Header used to read and echo the request id.
        logger: Logger receiving the per-request line.

    Returns:
        Stage function for the pipeline.

    Example:
        >>> # Request arrives with custom ID
        >>> # Headers: {"X-Request-ID": "req-abc-123"}
        >>> # Response includes:
        >>> # {"X-Request-ID": "req-abc-123", "X-Request-Duration-ms": "45.67"}
    """

    log = logger or logging.getLogger("app.access")

    async def request_logging(request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(request_id_header) or str(uuid.uuid4())
        set_request_id(request_id)
        start = time.perf_counter()
        try:
            try:
                response: Response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                log.exception(
                    "request.failed",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "duration_ms": round(duration_ms, 2),
                    },
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            log.info(
                "request.completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                    "client": request.client.host if request.client else None,
                },
            )
        finally:
            clear_request_id()

        response.headers[request_id_header] = request_id
        response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
        return response

    return request_logging


def security_headers_stage(extra_headers: Mapping[str, str] | None = None) -> Stage:
    """Build the stage adding anti-sniffing, framing and CSP headers.

    Errors escaping the inner stages or the routes are turned into responses
    here, through the global handlers, so error responses carry the headers
    too.

    Args:
        extra_headers: Additional static headers for every response.

    Returns:
        Stage function for the pipeline.
    """

    headers = {**SECURITY_HEADERS, **(extra_headers or {})}

    async def add_security_headers(request: Request, call_next: CallNext) -> Response:
        try:
            response = await call_next(request)
        except AppError as exc:
            response = await app_error_handler(request, exc)
        except Exception as exc:
            response = await general_exception_handler(request, exc)
        for name, value in headers.items():
            response.headers[name] = value
        return response

    return add_security_headers


def ip_restriction_stage(
    blocked_ips: Iterable[str],
    logger: logging.Logger | None = None,
) -> Stage:
    """Build the stage refusing requests from blocked client addresses.

    Args:
        blocked_ips: Client addresses answered with 403.
        logger: Logger for refused requests.

    Returns:
        Stage function for the pipeline.
    """

    blocked = frozenset(blocked_ips)
    log = logger or logging.getLogger(__name__)

    async def restrict_ips(request: Request, call_next: CallNext) -> Response:
        client_host = request.client.host if request.client else None
        if client_host is not None and client_host in blocked:
            log.warning("ip_restriction.denied", extra={"path": request.url.path})
            return PlainTextResponse("Access Denied.", status_code=403)
        return await call_next(request)

    return restrict_ips
