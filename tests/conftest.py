"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before anything imports the settings module, and
provides an RSA key pair plus helpers to mint bearer tokens locally, so no
identity provider is needed.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_ENVIRONMENT", "testing")
os.environ.setdefault("LOG_OUTPUT", "console")
os.environ.setdefault("AUTH_AUTHORITY", "https://issuer.test/realms/master")

import time
from typing import Any, Callable

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.auth import TokenValidator
from app.core.config import (
    AppSettings,
    AuthSettings,
    CacheSettings,
    CompressionSettings,
    CorsSettings,
    LogSettings,
    RateLimitSettings,
    Settings,
)

ISSUER = "https://issuer.test/realms/master"
AUDIENCE = "my-dotnet-api"


class StaticKeyResolver:
    """Signing key resolver returning a fixed public key."""

    def __init__(self, public_key: Any) -> None:
        self.public_key = public_key
        self.calls = 0

    async def __call__(self, token: str) -> Any:
        self.calls += 1
        return self.public_key


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def auth_settings() -> AuthSettings:
    return AuthSettings(authority=ISSUER, audience=AUDIENCE)


@pytest.fixture
def key_resolver(rsa_private_key: rsa.RSAPrivateKey) -> StaticKeyResolver:
    return StaticKeyResolver(rsa_private_key.public_key())


@pytest.fixture
def token_validator(auth_settings: AuthSettings, key_resolver: StaticKeyResolver) -> TokenValidator:
    return TokenValidator(auth_settings, key_resolver=key_resolver)


@pytest.fixture
def make_token(rsa_private_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """Mint RS256 tokens; keyword arguments override or add claims."""

    def _make_token(*, key: Any = None, **overrides: Any) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "sub": "user-123",
            "iss": ISSUER,
            "aud": AUDIENCE,
            "iat": now,
            "exp": now + 300,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, key or rsa_private_key, algorithm="RS256")

    return _make_token


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings for tests; keyword arguments replace whole groups."""

    def _make_settings(**groups: Any) -> Settings:
        defaults: dict[str, Any] = {
            "app": AppSettings(environment="testing"),
            "auth": AuthSettings(authority=ISSUER, audience=AUDIENCE),
            "cors": CorsSettings(allowed_origins=["https://frontend.test"]),
            "rate_limit": RateLimitSettings(permit_limit=1000, window_seconds=60, queue_limit=0),
            "cache": CacheSettings(),
            "compression": CompressionSettings(),
            "log": LogSettings(output="console"),
        }
        defaults.update(groups)
        return Settings(**defaults)

    return _make_settings


@pytest.fixture
def build_app(make_settings, token_validator) -> Callable[..., FastAPI]:
    """Build an isolated app; keyword arguments are settings groups."""

    def _build_app(**groups: Any) -> FastAPI:
        return create_app(make_settings(**groups), token_validator=token_validator)

    return _build_app


@pytest.fixture
def client(build_app) -> TestClient:
    """Test client for an app with default test settings."""
    return TestClient(build_app())
