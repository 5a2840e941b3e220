"""
Unit Tests for Structured Logging and Error Tracking

Run with: pytest tests/test_logging_config.py -v
"""

import json
import logging

import pytest

from reconciliation_client import logging_config, sentry_integration
from reconciliation_client.logging_config import (
    BatchContextFilter,
    JSONFormatter,
    clear_batch_context,
    set_batch_context,
    setup_logging,
)
from reconciliation_client.sentry_integration import (
    capture_exception,
    filter_sensitive_data,
    init_sentry,
    redact_dict,
)


def make_record(msg="Polling batch b1", **extra):
    record = logging.LogRecord("reconciliation_client.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)
    logging_config._batch_context_filter = None


class TestJSONFormatter:
    """Test JSON log output."""

    def test_core_fields(self):
        formatter = JSONFormatter(service_name="reconciliation-client")

        data = json.loads(formatter.format(make_record()))

        assert data["message"] == "Polling batch b1"
        assert data["level"] == "INFO"
        assert data["service"] == "reconciliation-client"
        assert data["location"]["line"] == 10

    def test_extra_fields_included(self):
        formatter = JSONFormatter()

        data = json.loads(formatter.format(make_record(batch_id="b1")))

        assert data["extra"]["batch_id"] == "b1"


class TestBatchContext:
    """Test batch id stamping."""

    def test_filter_adds_batch_id(self):
        context = BatchContextFilter()
        context.set_batch_context("b7")
        record = make_record()

        assert context.filter(record) is True
        assert record.batch_id == "b7"

    def test_explicit_batch_id_wins(self):
        context = BatchContextFilter()
        context.set_batch_context("b7")
        record = make_record(batch_id="b1")

        context.filter(record)

        assert record.batch_id == "b1"

    def test_module_helpers_use_installed_filter(self, restore_root_logger):
        """Test setup_logging installs the filter used by set/clear helpers."""
        setup_logging(level="DEBUG", json_format=True)
        handler = restore_root_logger.handlers[0]

        set_batch_context("b3")
        record = make_record()
        handler.filter(record)
        assert record.batch_id == "b3"

        clear_batch_context()
        record = make_record()
        handler.filter(record)
        assert record.batch_id is None

    def test_setup_quiets_transport_loggers(self, restore_root_logger):
        setup_logging(level="DEBUG", json_format=False)

        assert logging.getLogger("httpx").level == logging.WARNING
        assert restore_root_logger.level == logging.DEBUG


class TestSentryIntegration:
    """Test error tracking helpers without a DSN."""

    def test_init_without_dsn_disabled(self, monkeypatch):
        monkeypatch.delenv("SENTRY_DSN", raising=False)

        assert init_sentry(dsn="") is False

    def test_capture_is_noop_when_disabled(self, monkeypatch):
        monkeypatch.setattr(sentry_integration, "_initialized", False)

        assert capture_exception(RuntimeError("boom"), path="/reconciliation/b1") is None

    def test_redact_nested(self):
        data = {"headers": {"Authorization": "Bearer x"}, "items": [{"api_key": "k", "id": 1}], "batchId": "b1"}

        redacted = redact_dict(data)

        assert redacted["headers"]["Authorization"] == "[REDACTED]"
        assert redacted["items"][0] == {"api_key": "[REDACTED]", "id": 1}
        assert redacted["batchId"] == "b1"

    def test_filter_sensitive_event(self):
        event = {"request": {"headers": {"Cookie": "session=1"}}, "extra": {"token": "t", "path": "/x"}}

        filtered = filter_sensitive_data(event, {})

        assert filtered["request"]["headers"]["Cookie"] == "[REDACTED]"
        assert filtered["extra"] == {"token": "[REDACTED]", "path": "/x"}
