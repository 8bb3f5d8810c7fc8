"""Application-level exception types.

This module defines domain errors used across the pipeline and routes,
enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    error to fill every key.
    """

    hint: str
    required_role: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input validation fails."""


class ConfigurationAppError(AppError):
    """Raised when settings are inconsistent or issuer metadata is unusable."""


class AuthenticationAppError(AppError):
    """Raised when the caller could not be authenticated."""


class AuthorizationAppError(AppError):
    """Raised when an authenticated caller lacks a required permission."""
