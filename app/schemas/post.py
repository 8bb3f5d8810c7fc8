"""Pydantic schemas for the post endpoints."""

from __future__ import annotations

from pydantic import Field

from app.schemas.base import ApiModel


class PostFilter(ApiModel):
    """Optional query filters accepted when listing posts."""

    title: str | None = Field(
        default=None,
        description="Only posts whose title matches.",
    )
    content: str | None = Field(
        default=None,
        description="Only posts whose content matches.",
    )


class CreatePostRequest(ApiModel):
    """Body of a create-post request."""

    title: str = Field(
        ...,
        min_length=1,
        description="Post title (required, non-empty).",
    )
    content: str | None = Field(
        default=None,
        description="Optional post body.",
    )


class PostList(ApiModel):
    """Result of listing posts."""

    id: int = Field(..., description="Identifier of the listed post.")


class CreatedResponse(ApiModel):
    """Identifier assigned to a newly created post."""

    id: int = Field(..., description="Identifier of the created post.")
