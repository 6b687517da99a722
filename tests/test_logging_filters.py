"""Tests for sensitive data filtering and JSON formatting in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from app.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    set_request_id,
)


@pytest.fixture
def log_stream():
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_id()


def test_sensitive_filter_redacts_secrets_and_addresses(log_stream):
    logger, stream = log_stream

    logger.info(
        "rate_limit.remote_connect",
        extra={
            "redis_url": "redis://:hunter2@cache:6379/0",
            "client_ip": "203.0.113.7",
            "key_hash": "abc123",
        },
    )

    output = stream.getvalue()
    assert "hunter2" not in output
    assert "203.0.113.7" not in output
    assert "[REDACTED]" in output
    assert "abc123" in output


def test_sensitive_filter_redacts_nested_headers(log_stream):
    logger, stream = log_stream

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "X-Forwarded-For": "198.51.100.1",
                "user-agent": "pytest",
            },
        },
    )

    output = stream.getvalue()
    assert "198.51.100.1" not in output
    assert "pytest" in output


def test_rate_limit_event_fields_pass_through(log_stream):
    logger, stream = log_stream

    logger.warning(
        "rate_limit.exceeded",
        extra={"backend": "local", "limit": 100, "retry_after_s": 42},
    )

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "rate_limit.exceeded"
    assert payload["level"] == "warning"
    assert payload["backend"] == "local"
    assert payload["limit"] == 100
    assert payload["retry_after_s"] == 42


def test_request_id_from_context_is_attached(log_stream):
    logger, stream = log_stream
    set_request_id("req-123")

    logger.info("with_request_id")

    assert json.loads(stream.getvalue())["request_id"] == "req-123"
