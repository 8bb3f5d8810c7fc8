"""Shared Pydantic base for API payloads.

JSON conventions for every request and response model:
- camelCase property names on the wire
- property names matched case-insensitively on input
- null fields left out of responses (routes use ``response_model_exclude_none``)
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model applying the API's JSON naming conventions."""

    model_config = ConfigDict(alias_generator=to_camel)

    @model_validator(mode="before")
    @classmethod
    def _match_keys_case_insensitively(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        known: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            alias = field.alias or name
            known[name.lower()] = alias
            known[alias.lower()] = alias

        return {
            known.get(key.lower(), key) if isinstance(key, str) else key: value
            for key, value in data.items()
        }
