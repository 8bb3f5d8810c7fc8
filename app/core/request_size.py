"""Request body size limit middleware.

Limits the size of incoming request bodies before any pipeline stage runs,
the way a server-level body limit would. Enforced for both Content-Length
and chunked transfer encoding.
"""

from __future__ import annotations

import json
import logging
from typing import Mapping

from starlette.exceptions import HTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


class RequestBodyTooLarge(HTTPException):
    """Raised when the request body exceeds the configured limit.

    An HTTPException, so routes reading the body answer 413 through the
    regular exception handling instead of a generic body parsing error.
    """

    def __init__(self, max_size: int) -> None:
        super().__init__(
            status_code=413,
            detail=f"Request body too large. Maximum allowed: {max_size} bytes",
        )


class SizeLimitedStream:
    """Wrap an ASGI receive callable and count body bytes as they arrive."""

    def __init__(self, receive: Receive, max_size: int) -> None:
        self._receive = receive
        self._max_size = max_size
        self._bytes_read = 0

    async def receive(self) -> Message:
        message = await self._receive()

        if message["type"] == "http.request":
            self._bytes_read += len(message.get("body", b""))
            if self._bytes_read > self._max_size:
                raise RequestBodyTooLarge(self._max_size)

        return message


class RequestSizeLimitMiddleware:
    """ASGI middleware answering 413 (Payload Too Large) for oversized bodies.

    Raw ASGI middleware, so the receive callable is wrapped before
    Starlette's Request is constructed.

    Usage:
        app.add_middleware(RequestSizeLimitMiddleware, max_body_size=100_000_000)
    """

    def __init__(
        self,
        app: ASGIApp,
        max_body_size: int = 100_000_000,
        extra_headers: Mapping[str, str] | None = None,
    ) -> None:
        self.app = app
        self.max_body_size = max_body_size
        self.extra_headers = dict(extra_headers or {})

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = None
        for name, value in scope.get("headers", []):
            if name.lower() == b"content-length":
                content_length = value.decode("latin-1")
                break

        if content_length:
            try:
                if int(content_length) > self.max_body_size:
                    await self._send_413_response(send, scope)
                    return
            except ValueError:
                # Invalid Content-Length, fall through to the streaming check
                pass

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        size_limited_receive = SizeLimitedStream(receive, self.max_body_size).receive

        try:
            await self.app(scope, size_limited_receive, tracking_send)
        except RequestBodyTooLarge as exc:
            if response_started:
                raise
            await self._send_413_response(send, scope, detail=exc.detail)

    async def _send_413_response(self, send: Send, scope: Scope, detail: str | None = None) -> None:
        if detail is None:
            detail = f"Request body too large. Maximum allowed: {self.max_body_size} bytes"

        logger.warning(
            "request_size.rejected",
            extra={"path": scope.get("path"), "max_body_size": self.max_body_size},
        )

        body = json.dumps({"detail": detail}).encode()
        headers = [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ]
        headers.extend((k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in self.extra_headers.items())

        await send({"type": "http.response.start", "status": 413, "headers": headers})
        await send({"type": "http.response.body", "body": body})
