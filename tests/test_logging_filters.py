"""Tests for sensitive data filtering and request correlation in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from rategate.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


@pytest.fixture
def capture() -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger("test_rategate_logging")
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


def test_redacts_api_keys_and_redis_credentials(capture) -> None:
    logger, stream = capture

    logger.info(
        "redis.connected",
        extra={
            "api_key": "sk-secret-123",
            "redis_url": "redis://:hunter2@cache:6379/0",
            "group": "login",
        },
    )

    output = stream.getvalue()
    assert "sk-secret-123" not in output
    assert "hunter2" not in output
    assert "[REDACTED]" in output
    assert "login" in output


def test_redacts_nested_headers(capture) -> None:
    logger, stream = capture

    logger.info("request", extra={"headers": {"X-API-Key": "secret-key", "user-agent": "pytest"}})

    output = stream.getvalue()
    assert "secret-key" not in output
    assert "pytest" in output


def test_limiter_fields_pass_through(capture) -> None:
    logger, stream = capture

    logger.warning(
        "rate_limit.exceeded",
        extra={"group": "login", "key_hash": "abcd1234", "remaining": -1, "window_s": 1.0},
    )

    record = json.loads(stream.getvalue())
    assert record["message"] == "rate_limit.exceeded"
    assert record["level"] == "warning"
    assert record["group"] == "login"
    assert record["remaining"] == -1
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_attached_from_context(capture) -> None:
    logger, stream = capture

    set_request_id("req-123")
    try:
        logger.info("blocker.blocked", extra={"cause": "abuse"})
    finally:
        clear_request_id()

    assert json.loads(stream.getvalue())["request_id"] == "req-123"
