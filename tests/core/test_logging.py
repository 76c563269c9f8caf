"""Tests for structured logging helpers."""

import structlog
from structlog.testing import capture_logs

from throttled.core import logging as throttled_logging
from throttled.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestConfigureLogging:
    def teardown_method(self):
        structlog.reset_defaults()

    def test_json_renderer(self):
        configure_logging(level="INFO", json_format=True, service="test-worker")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert isinstance(processors[0], structlog.processors.TimeStamper)

    def test_console_renderer_without_timestamp(self):
        configure_logging(json_format=False, add_timestamp=False)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert not any(isinstance(p, structlog.processors.TimeStamper) for p in processors)

    def test_service_metadata(self):
        configure_logging(json_format=True, service="test-worker")
        event = throttled_logging._add_service_metadata(None, "info", {"event": "x"})
        assert event["service.name"] == "test-worker"


class TestGetLogger:
    def test_events_carry_fields(self):
        with capture_logs() as logs:
            get_logger("throttled.test").info("job_throttled", job_class="Foo", queue="default")
        assert logs == [{"event": "job_throttled", "job_class": "Foo", "queue": "default", "log_level": "info"}]


class TestLogContext:
    def teardown_method(self):
        clear_context()

    def test_binds_and_unbinds(self):
        with LogContext(job_class="Foo", job_id="j1"):
            assert structlog.contextvars.get_contextvars() == {"job_class": "Foo", "job_id": "j1"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_and_unbind_context(self):
        bind_context(queue="default", worker="w1")
        unbind_context("queue")
        assert structlog.contextvars.get_contextvars() == {"worker": "w1"}
