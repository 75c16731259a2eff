"""Logging and observability utilities for specgen.

This module provides structured logging, performance monitoring,
and observability hooks for spec creation and plan execution.
"""

from __future__ import annotations

import inspect
import json
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

ROOT_LOGGER_NAME = "specgen"


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup structured logging for specgen.

    Console output uses a detailed text format. When ``log_file`` is given a
    second handler writes one JSON object per line at DEBUG level.
    """
    logger = std_logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.handlers.clear()

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = std_logging.FileHandler(log_file)
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.debug("specgen logging initialized")


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """In-memory record of operation durations."""

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        metric = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": name,
            "value": value,
            "tags": tags or {},
        }
        self.metrics.setdefault(name, []).append(metric)

        logger = std_logging.getLogger(f"{ROOT_LOGGER_NAME}.performance")
        logger.debug(f"Metric recorded: {name}={value}", extra={"extra_fields": metric})

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        if name:
            return {name: self.metrics.get(name, [])}
        return self.metrics.copy()

    def clear(self) -> None:
        self.metrics.clear()


# Global performance monitor instance
performance_monitor = PerformanceMonitor()


def _record_success(logger: std_logging.Logger, operation_name: str, start_time: float) -> None:
    duration = time.time() - start_time
    performance_monitor.record_metric(f"{operation_name}_duration", duration, {"status": "success"})
    logger.info(
        f"Completed operation: {operation_name} in {duration:.3f}s",
        extra={"extra_fields": {
            "operation": operation_name,
            "duration": duration,
            "status": "success",
        }},
    )


def _record_failure(logger: std_logging.Logger, operation_name: str, start_time: float, error: Exception) -> None:
    duration = time.time() - start_time
    performance_monitor.record_metric(
        f"{operation_name}_duration",
        duration,
        {"status": "error", "error_type": type(error).__name__},
    )
    logger.error(
        f"Failed operation: {operation_name} after {duration:.3f}s - {error}",
        extra={"extra_fields": {
            "operation": operation_name,
            "duration": duration,
            "status": "error",
            "error_type": type(error).__name__,
            "error_message": str(error),
        }},
        exc_info=True,
    )


def log_performance(operation_name: str):
    """Decorator to log performance metrics for sync or async operations."""
    def decorator(func):
        logger = std_logging.getLogger(f"{ROOT_LOGGER_NAME}.performance")

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                logger.debug(f"Starting operation: {operation_name}")
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record_failure(logger, operation_name, start_time, e)
                    raise
                _record_success(logger, operation_name, start_time)
                return result

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            logger.debug(f"Starting operation: {operation_name}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _record_failure(logger, operation_name, start_time, e)
                raise
            _record_success(logger, operation_name, start_time)
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager to log operations with custom fields."""
    logger = std_logging.getLogger(f"{ROOT_LOGGER_NAME}.operations")
    start_time = time.time()

    logger.info(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields,
    }})

    try:
        yield
    except Exception as e:
        duration = time.time() - start_time
        logger.error(f"Failed operation: {operation_name} after {duration:.3f}s - {e}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields,
        }}, exc_info=True)
        raise

    duration = time.time() - start_time
    performance_monitor.record_metric(f"{operation_name}_duration", duration, {"status": "success"})
    logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
        "operation": operation_name,
        "status": "completed",
        "duration": duration,
        **extra_fields,
    }})


class ObservabilityHooks:
    """Observability hooks for spec lifecycle events.

    Known events: ``spec_created``, ``spec_updated``, ``spec_deleted``,
    ``task_completed``, ``task_failed``, ``execution_completed`` and
    ``progress_persist_failed``. A failing hook is logged and never
    propagates to the caller.
    """

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger(f"{ROOT_LOGGER_NAME}.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        callbacks = self.hooks.get(event_type)
        if not callbacks:
            return
        self.logger.debug(f"Triggering {len(callbacks)} hooks for event: {event_type}")
        for hook in list(callbacks):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_spec_event(self, event_type: str, spec_id: Optional[int] = None, **data) -> None:
        """Log a spec event and trigger hooks."""
        event_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "spec_id": spec_id,
            **data,
        }
        self.logger.info(f"Spec event: {event_type}", extra={"extra_fields": {"event_type": event_type, **event_data}})
        self.trigger_hooks(event_type, **event_data)


# Global observability hooks instance
observability_hooks = ObservabilityHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields) -> None:
    """Log an error with rich context information."""
    logger = std_logging.getLogger(f"{ROOT_LOGGER_NAME}.errors")

    error_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields,
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
        exc_info=True,
    )


def log_spec_created(spec_id: int, title: str, **extra_fields) -> None:
    observability_hooks.log_spec_event("spec_created", spec_id, title=title, **extra_fields)


def log_task_completed(spec_id: int, task_id: str, **extra_fields) -> None:
    observability_hooks.log_spec_event("task_completed", spec_id, task_id=task_id, **extra_fields)


def log_task_failed(spec_id: int, task_id: str, error: Optional[str], **extra_fields) -> None:
    observability_hooks.log_spec_event("task_failed", spec_id, task_id=task_id, error=error, **extra_fields)


def log_execution_completed(spec_id: int, success: bool, **extra_fields) -> None:
    observability_hooks.log_spec_event("execution_completed", spec_id, success=success, **extra_fields)


def log_persist_failed(spec_id: int, error: Exception, **extra_fields) -> None:
    observability_hooks.log_spec_event(
        "progress_persist_failed",
        spec_id,
        error_type=type(error).__name__,
        error_message=str(error),
        **extra_fields,
    )


def log_spec_updated(spec_id: int, fields: List[str], **extra_fields) -> None:
    observability_hooks.log_spec_event("spec_updated", spec_id, fields=fields, **extra_fields)


def log_spec_deleted(spec_id: int, **extra_fields) -> None:
    observability_hooks.log_spec_event("spec_deleted", spec_id, **extra_fields)
