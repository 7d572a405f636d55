"""
Unit tests for structured log rendering and request context binding.
"""

import json
from datetime import datetime, timezone

import pytest
import structlog

from homebase_shared.logging import bind_subject_context, clear_context, render_processors, set_request_id


@pytest.fixture
def logger():
    clear_context()
    yield structlog.wrap_logger(structlog.ReturnLogger(), processors=render_processors("security"))
    clear_context()


class TestLogRendering:

    def test_timestamp_is_iso_utc(self, logger):
        line = json.loads(logger.info("Rate limit exceeded", endpoint="bills"))

        assert isinstance(line["timestamp"], str)
        assert line["timestamp"].endswith("Z")
        parsed = datetime.fromisoformat(line["timestamp"].replace("Z", "+00:00"))
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timezone.utc.utcoffset(None)

    def test_level_event_and_service(self, logger):
        line = json.loads(logger.warning("CSRF token missing"))

        assert line["event"] == "CSRF token missing"
        assert line["level"] == "warning"
        assert line["service"] == "security"

    def test_request_and_subject_context(self, logger):
        request_id = set_request_id("req-42")
        bind_subject_context("user-1", "household-1")

        line = json.loads(logger.info("HTTP request"))

        assert request_id == "req-42"
        assert line["request_id"] == "req-42"
        assert line["subject_id"] == "user-1"
        assert line["household_id"] == "household-1"

    def test_generated_request_id(self, logger):
        request_id = set_request_id()

        assert request_id
        assert json.loads(logger.info("HTTP request"))["request_id"] == request_id

    def test_clear_context(self, logger):
        set_request_id("req-42")
        bind_subject_context("user-1")
        clear_context()

        line = json.loads(logger.info("HTTP request"))

        assert "request_id" not in line
        assert "subject_id" not in line
