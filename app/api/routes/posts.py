"""Post endpoints.

There is no backing store yet: listing and creating return fixed values.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Query

from app.api.endpoints import EndpointDescriptor
from app.core.auth import Principal, get_principal
from app.schemas.post import CreatedResponse, CreatePostRequest, PostFilter, PostList

logger = logging.getLogger(__name__)


async def get_posts(filters: Annotated[PostFilter, Query()]) -> PostList:
    """List posts. Filters are accepted but do not change the result."""

    return PostList(id=1)


async def create_post(
    request: CreatePostRequest,
    principal: Annotated[Principal | None, Depends(get_principal)],
) -> CreatedResponse:
    """Create a post and return its identifier."""

    logger.info(
        "post.created",
        extra={"has_content": request.content is not None, "authenticated": principal is not None},
    )
    return CreatedResponse(id=2)


ENDPOINTS = (
    EndpointDescriptor(
        method="GET",
        path="/",
        handler=get_posts,
        summary="Gets all posts",
        response_model=PostList,
    ),
    EndpointDescriptor(
        method="POST",
        path="/",
        handler=create_post,
        summary="Creates a new post",
        response_model=CreatedResponse,
    ),
)
