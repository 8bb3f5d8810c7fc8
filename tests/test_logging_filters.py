"""Tests for sensitive data filtering and logging lifecycle."""

from __future__ import annotations

import json
import logging
from io import StringIO
from pathlib import Path

import pytest

from app.core.config import LogSettings
from app.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    configure_logging,
    set_request_id,
    shutdown_logging,
)


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_credentials():
    """Ensure SensitiveDataFilter redacts token and key fields."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "test_event",
        extra={
            "authorization": "Bearer eyJhbGciOi.secret",
            "access_token": "tok-123",
            "x-api-key": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "eyJhbGciOi" not in output
    assert "tok-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""

    logger, stream = _capture("test_safe_fields")

    logger.info(
        "request.completed",
        extra={
            "request_id": "req-123",
            "path": "/tasks/",
            "status": 200,
            "duration_ms": 150.5,
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["request_id"] == "req-123"
    assert payload["path"] == "/tasks/"
    assert payload["status"] == 200
    assert "[REDACTED]" not in stream.getvalue()


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "Authorization": "Bearer secret-token",
                "Cookie": "session=abc",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()

    assert "secret-token" not in output
    assert "session=abc" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_request_id_from_context_is_attached():
    logger, stream = _capture("test_request_id")

    set_request_id("ctx-42")
    try:
        logger.info("with_context")
    finally:
        clear_request_id()

    assert json.loads(stream.getvalue())["request_id"] == "ctx-42"


def test_exceptions_are_formatted():
    logger, stream = _capture("test_exception")

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("failed")

    payload = json.loads(stream.getvalue())
    assert payload["level"] == "error"
    assert "RuntimeError: boom" in payload["exception"]


class TestLoggingLifecycle:
    """configure_logging / shutdown_logging."""

    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        shutdown_logging()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_file_output_is_written_and_flushed(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "api-log.txt"
        configure_logging(LogSettings(output="file", file_path=str(log_file), level="DEBUG"))

        logging.getLogger("app.test").info("file_event", extra={"token": "hidden"})
        shutdown_logging()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        payload = json.loads(lines[-1])
        assert payload["message"] == "file_event"
        assert payload["token"] == "[REDACTED]"

    def test_reconfiguring_does_not_duplicate_handlers(self, tmp_path: Path) -> None:
        settings = LogSettings(output="both", file_path=str(tmp_path / "api.log"))

        configure_logging(settings)
        configure_logging(settings)

        assert len(logging.getLogger().handlers) == 2

    def test_shutdown_removes_installed_handlers(self) -> None:
        configure_logging(LogSettings(output="console"))

        shutdown_logging()

        assert logging.getLogger().handlers == []

    def test_unsupported_output_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            configure_logging(LogSettings(output="syslog"))
