"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- Bearer (JWT) security scheme, required only by protected operations

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from fastapi import FastAPI

BEARER_SCHEME = "Bearer"

TAGS_METADATA = [
    {
        "name": "Posts",
        "description": "Post endpoints.",
    },
    {
        "name": "Auth",
        "description": "Endpoints that require a bearer token.",
    },
    {
        "name": "Health",
        "description": "Greeting and liveness checks.",
    },
]


def apply_openapi_customizations(app: FastAPI, protected_paths: Iterable[str] = ()) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for bearer auth (``Authorization``
      header carrying a JWT)
    - Marks operations under ``protected_paths`` as requiring the bearer
      scheme and every other operation as public (``security: []``)
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi
    protected = set(protected_paths)

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            BEARER_SCHEME,
            {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Enter 'Bearer {token}'",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in TAGS_METADATA:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        paths = schema.get("paths", {})
        for path, methods in paths.items():
            requirement = [{BEARER_SCHEME: []}] if path in protected else []
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = requirement

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
