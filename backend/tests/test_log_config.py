"""
Tests for credential scrubbing and job tagging in log output.
"""

import pytest
from loguru import logger

from crossmarket import log_config
from crossmarket.log_config import SecretFilter, job_context, redact


@pytest.fixture
def captured():
    lines = []
    sink_id = logger.add(lambda message: lines.append(message.record), format="{message}", level="DEBUG")
    yield lines
    logger.remove(sink_id)


def test_redact_bearer_and_oracle_key(monkeypatch):
    monkeypatch.setattr(log_config.settings, "oracle_api_key", "sk-live-123")

    text = redact("POST failed: Authorization: Bearer abc.def-9 key=sk-live-123")

    assert "abc.def-9" not in text
    assert "sk-live-123" not in text
    assert text.count("[REDACTED]") == 2


def test_secret_filter_masks_fields_and_values(monkeypatch):
    monkeypatch.setattr(log_config.settings, "oracle_api_key", "sk-live-123")

    event = SecretFilter()(None, "info", {"event": "oracle_call", "api_key": "x", "detail": "used sk-live-123"})

    assert event["api_key"] == "[REDACTED]"
    assert event["detail"] == "used [REDACTED]"
    assert event["event"] == "oracle_call"


def test_job_context_tags_lines(captured):
    logger.info("outside")
    with job_context("run_detection", 7):
        logger.info("inside")

    assert captured[0]["extra"]["job"] == "-"
    assert captured[1]["extra"]["job"] == "run_detection#7"


def test_loguru_messages_are_scrubbed(captured):
    logger.warning("oracle said no: Bearer tok_42")
    assert captured[0]["message"] == "oracle said no: Bearer [REDACTED]"
