"""Unit tests for specgen logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import asyncio
import json
import logging
import sys
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from specgen.specgen_logging import (
    JsonFormatter,
    ObservabilityHooks,
    PerformanceMonitor,
    log_error_with_context,
    log_operation,
    log_performance,
    log_persist_failed,
    log_spec_deleted,
    log_spec_updated,
    observability_hooks,
    performance_monitor,
    setup_logging,
)


@pytest.fixture(autouse=True)
def clear_metrics():
    performance_monitor.clear()
    yield
    performance_monitor.clear()


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()
        record = logging.getLogger("test").makeRecord("test", logging.INFO, "file.py", 10, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "line" in data

    def test_json_formatter_with_exception(self):
        formatter = JsonFormatter()
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = logging.getLogger("test").makeRecord(
                "test", logging.ERROR, "file.py", 10, "Failed", (), sys.exc_info()
            )

        data = json.loads(formatter.format(record))

        assert "ValueError: Test exception" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test that extra_fields are merged into the entry."""
        formatter = JsonFormatter()
        record = logging.getLogger("test").makeRecord("test", logging.INFO, "file.py", 10, "msg", (), None)
        record.extra_fields = {"spec_id": 3, "path": Path("x")}

        data = json.loads(formatter.format(record))

        assert data["spec_id"] == 3
        assert data["path"] == "x"


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_console_only(self):
        setup_logging("DEBUG")

        logger = logging.getLogger("specgen")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_with_log_file(self):
        """Test that the file handler writes JSON lines."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "logs" / "specgen.log"
            setup_logging(logging.INFO, log_file)
            logger = logging.getLogger("specgen.test")

            logger.info("hello", extra={"extra_fields": {"spec_id": 1}})
            for handler in logging.getLogger("specgen").handlers:
                handler.flush()

            lines = log_file.read_text().splitlines()
            entry = json.loads(lines[-1])
            assert entry["message"] == "hello"
            assert entry["spec_id"] == 1

            for handler in logging.getLogger("specgen").handlers:
                handler.close()
            logging.getLogger("specgen").handlers.clear()


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_and_get(self):
        monitor = PerformanceMonitor()
        monitor.record_metric("op_duration", 0.5, {"status": "success"})

        metrics = monitor.get_metrics("op_duration")

        assert metrics["op_duration"][0]["value"] == 0.5
        assert metrics["op_duration"][0]["tags"] == {"status": "success"}
        assert monitor.get_metrics("missing") == {"missing": []}

    def test_clear(self):
        monitor = PerformanceMonitor()
        monitor.record_metric("x", 1)
        monitor.clear()

        assert monitor.get_metrics() == {}


class TestLogPerformance:
    """Test cases for the log_performance decorator."""

    def test_sync_success(self):
        @log_performance("sync_op")
        def add(a, b):
            return a + b

        assert add(1, 2) == 3
        assert performance_monitor.get_metrics("sync_op_duration")["sync_op_duration"][0]["tags"]["status"] == "success"

    def test_async_success(self):
        """Test that coroutines are awaited inside the wrapper."""
        @log_performance("async_op")
        async def double(value):
            return value * 2

        assert asyncio.run(double(4)) == 8
        assert len(performance_monitor.get_metrics("async_op_duration")["async_op_duration"]) == 1

    def test_failure_is_recorded_and_reraised(self):
        @log_performance("failing_op")
        async def fail():
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            asyncio.run(fail())

        tags = performance_monitor.get_metrics("failing_op_duration")["failing_op_duration"][0]["tags"]
        assert tags == {"status": "error", "error_type": "RuntimeError"}


class TestLogOperation:
    """Test cases for the log_operation context manager."""

    def test_success_records_metric(self):
        with log_operation("ctx_op", spec_id=1):
            pass

        assert len(performance_monitor.get_metrics("ctx_op_duration")["ctx_op_duration"]) == 1

    def test_failure_reraises(self):
        with pytest.raises(KeyError):
            with log_operation("ctx_fail"):
                raise KeyError("missing")

        assert performance_monitor.get_metrics("ctx_fail_duration") == {"ctx_fail_duration": []}


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger(self):
        hooks = ObservabilityHooks()
        callback = MagicMock()
        hooks.register_hook("spec_created", callback)

        hooks.log_spec_event("spec_created", 5, title="T")

        callback.assert_called_once()
        kwargs = callback.call_args.kwargs
        assert kwargs["spec_id"] == 5
        assert kwargs["title"] == "T"
        assert "timestamp" in kwargs

    def test_failing_hook_does_not_propagate(self):
        hooks = ObservabilityHooks()
        after = MagicMock()
        hooks.register_hook("task_failed", MagicMock(side_effect=RuntimeError("hook bug")))
        hooks.register_hook("task_failed", after)

        hooks.trigger_hooks("task_failed", task_id="A-1")

        after.assert_called_once_with(task_id="A-1")

    def test_unregister(self):
        hooks = ObservabilityHooks()
        callback = MagicMock()
        hooks.register_hook("x", callback)
        hooks.unregister_hook("x", callback)
        hooks.unregister_hook("x", callback)

        hooks.trigger_hooks("x")

        callback.assert_not_called()

    def test_persist_failed_helper(self):
        """Test the event shape used by the execution engine."""
        callback = MagicMock()
        observability_hooks.register_hook("progress_persist_failed", callback)
        try:
            log_persist_failed(3, OSError("disk full"), task_id="A-1")
        finally:
            observability_hooks.unregister_hook("progress_persist_failed", callback)

        kwargs = callback.call_args.kwargs
        assert kwargs["error_type"] == "OSError"
        assert kwargs["error_message"] == "disk full"
        assert kwargs["task_id"] == "A-1"

    def test_update_and_delete_helpers(self):
        callback = MagicMock()
        observability_hooks.register_hook("spec_updated", callback)
        observability_hooks.register_hook("spec_deleted", callback)
        try:
            log_spec_updated(2, ["status"], status="done")
            log_spec_deleted(2, title="Old")
        finally:
            observability_hooks.unregister_hook("spec_updated", callback)
            observability_hooks.unregister_hook("spec_deleted", callback)

        updated, deleted = [call.kwargs for call in callback.call_args_list]
        assert (updated["spec_id"], updated["fields"], updated["status"]) == (2, ["status"], "done")
        assert (deleted["spec_id"], deleted["title"]) == (2, "Old")


class TestLogErrorWithContext:
    def test_logs_error(self, caplog):
        with caplog.at_level(logging.ERROR, logger="specgen.errors"):
            log_error_with_context(ValueError("bad"), {"operation": "update_spec"})

        assert "Error in update_spec: bad" in caplog.text
