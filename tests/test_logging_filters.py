"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

from app.core.logging import JsonFormatter, SensitiveDataFilter


def test_sensitive_filter_redacts_api_keys():
    """Ensure SensitiveDataFilter redacts API key fields."""
    
    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    
    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "x-api-key": "another-secret",
            "safe_field": "visible",
        },
    )
    
    output = stream.getvalue()
    
    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_client_identity():
    """Ensure raw client identifiers and proxy headers are redacted."""
    
    logger = logging.getLogger("test_identity_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    
    logger.info(
        "rate_limit_event",
        extra={
            "identifier": "contact|203.0.113.7:1a2b3c4d",
            "x-forwarded-for": "198.51.100.4",
            "identifier_hash": "0f0f0f0f0f0f0f0f",
        },
    )
    
    output = stream.getvalue()
    
    assert "203.0.113.7" not in output
    assert "198.51.100.4" not in output
    assert "[REDACTED]" in output
    assert "0f0f0f0f0f0f0f0f" in output


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""
    
    logger = logging.getLogger("test_safe_fields")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    
    logger.info(
        "safe_event",
        extra={
            "request_id": "req-123",
            "route": "/v1/contact",
            "status": 200,
            "duration_ms": 150.5,
        },
    )
    
    output = stream.getvalue()
    
    assert "req-123" in output
    assert "/v1/contact" in output
    assert "200" in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""
    
    logger = logging.getLogger("test_nested")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    
    logger.info(
        "nested_event",
        extra={
            "headers": {
                "x-api-key": "secret-key",
                "user-agent": "curl/8.0",
                "accept": "application/json",
            },
            "safe_data": {
                "count": 5,
                "type": "test",
            },
        },
    )
    
    output = stream.getvalue()
    
    assert "secret-key" not in output
    assert "[REDACTED]" in output
    assert "curl/8.0" not in output
    assert "application/json" in output
    assert "test" in output


def test_json_formatter_includes_exception_traceback():
    """Ensure logger.exception output keeps the traceback."""
    
    logger = logging.getLogger("test_exception_field")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    
    try:
        raise RuntimeError("sweep exploded")
    except RuntimeError:
        logger.exception("rate_limit.sweep_failed")
    
    record = json.loads(stream.getvalue())
    
    assert record["message"] == "rate_limit.sweep_failed"
    assert "RuntimeError: sweep exploded" in record["exception"]
