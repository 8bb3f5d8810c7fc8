"""Tests for settings parsing and defaults."""

import pytest
from pydantic import ValidationError

from app.core.config import (
    AppSettings,
    AuthSettings,
    CorsSettings,
    RateLimitSettings,
    Settings,
    get_settings,
    parse_csv,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("a, b ,c", ["a", "b", "c"]),
        ("a,,a, b", ["a", "b"]),
        (["x", " y "], ["x", "y"]),
        ("", []),
        (None, []),
    ],
)
def test_parse_csv(value, expected) -> None:
    assert parse_csv(value) == expected


def test_defaults_match_documented_values() -> None:
    rate = RateLimitSettings()
    app = AppSettings()

    assert rate.permit_limit == 10
    assert rate.window_seconds == 60
    assert rate.queue_limit == 2
    assert app.max_request_body_bytes == 100_000_000


def test_csv_lists_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.test, https://b.test")
    monkeypatch.setenv("AUTH_VALID_AUDIENCES", "api,account")
    monkeypatch.setenv("APP_BLOCKED_IPS", "10.0.0.1")

    assert CorsSettings().allowed_origins == ["https://a.test", "https://b.test"]
    assert AuthSettings().valid_audiences == ["api", "account"]
    assert AppSettings().blocked_ips == ["10.0.0.1"]


def test_audiences_put_primary_first_without_duplicates() -> None:
    auth = AuthSettings(audience="my-dotnet-api", valid_audiences=["account", "my-dotnet-api"])

    assert auth.audiences == ["my-dotnet-api", "account"]


def test_settings_are_immutable() -> None:
    settings = Settings()

    with pytest.raises(ValidationError):
        settings.app = AppSettings(environment="production")

    with pytest.raises(ValidationError):
        settings.rate_limit.permit_limit = 100


@pytest.mark.parametrize(
    "kwargs",
    [{"permit_limit": 0}, {"window_seconds": 0}, {"queue_limit": -1}],
)
def test_invalid_rate_limit_values_rejected(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        RateLimitSettings(**kwargs)


@pytest.mark.parametrize(
    ("environment", "expected"),
    [("development", True), ("Development", True), ("production", False), ("testing", False)],
)
def test_is_development(environment: str, expected: bool) -> None:
    assert Settings(app=AppSettings(environment=environment)).is_development is expected


def test_get_settings_is_loaded_once() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
