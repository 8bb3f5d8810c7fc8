"""Endpoints behind authorization.

Registered through a private group, so every route here already requires an
authenticated caller; routes add role requirements on top.
"""

from __future__ import annotations

from fastapi import Depends
from fastapi.responses import PlainTextResponse

from app.api.endpoints import EndpointDescriptor
from app.core.auth import Principal, require_role


async def secure() -> str:
    return "You are authenticated!"


async def admin(principal: Principal = Depends(require_role("admin"))) -> str:
    return "Welcome Admin!"


ENDPOINTS = (
    EndpointDescriptor(
        method="GET",
        path="/secure",
        handler=secure,
        summary="Requires any authenticated caller",
        response_class=PlainTextResponse,
    ),
    EndpointDescriptor(
        method="GET",
        path="/admin",
        handler=admin,
        summary="Requires the admin role",
        response_class=PlainTextResponse,
    ),
)
