"""
Logging configuration for the AuditSync consumer.

This module provides:
- Structured logging with JSON output
- Console and rotating file handlers
- Per-record log context (event id, topic, partition, offset) so any
  failure can be replayed from the log line alone
- Stage performance logging
"""

import os
import sys
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from pathlib import Path
from contextvars import ContextVar
from pythonjsonlogger import jsonlogger

from ..config import LoggingConfig, Environment


# Context variables for per-record log correlation
event_id: ContextVar[Optional[str]] = ContextVar('event_id', default=None)
record_topic: ContextVar[Optional[str]] = ContextVar('record_topic', default=None)
record_partition: ContextVar[Optional[int]] = ContextVar('record_partition', default=None)
record_offset: ContextVar[Optional[int]] = ContextVar('record_offset', default=None)

_CONTEXT_FIELDS = {
    'event_id': event_id,
    'topic': record_topic,
    'partition': record_partition,
    'offset': record_offset,
}


class StructuredFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds service and record context fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname

        for name, var in _CONTEXT_FIELDS.items():
            value = var.get()
            if value is not None:
                log_record[name] = value

        log_record['service'] = 'auditsync-consumer'
        log_record['version'] = os.getenv('APP_VERSION', '1.0.0')
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')

        if hasattr(record, 'perf_duration_ms'):
            log_record['duration_ms'] = record.perf_duration_ms
        if hasattr(record, 'perf_operation'):
            log_record['operation'] = record.perf_operation


class RecordContextFilter(logging.Filter):
    """Copies the current record context onto plain-text log records."""

    def filter(self, record):
        for name, var in _CONTEXT_FIELDS.items():
            if not hasattr(record, name):
                setattr(record, name, var.get())
        return True


class LogContextManager:
    """Context manager that binds one stream record to the log context."""

    def __init__(
        self,
        event: Optional[str] = None,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        self.values = {
            'event_id': event,
            'topic': topic,
            'partition': partition,
            'offset': offset,
        }
        self.tokens = {}

    def __enter__(self):
        for name, value in self.values.items():
            self.tokens[name] = _CONTEXT_FIELDS[name].set(value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for name, token in self.tokens.items():
            _CONTEXT_FIELDS[name].reset(token)
        self.tokens.clear()


def record_context(**kwargs) -> LogContextManager:
    """Create a log context for one stream record."""
    return LogContextManager(**kwargs)


def bind_event_id(value: Optional[str]) -> None:
    """Attach the decoded event id to the current record context."""
    event_id.set(value)


def current_event_id() -> Optional[str]:
    return event_id.get()


def _build_formatter(config: LoggingConfig) -> logging.Formatter:
    if config.structured:
        return StructuredFormatter(fmt='%(timestamp)s %(level)s %(name)s %(message)s')
    return logging.Formatter(fmt=config.format, datefmt=config.date_format)


def _build_handlers(config: LoggingConfig) -> List[logging.Handler]:
    """Console handler, plus a rotating file handler when a path is configured."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.log_to_file and config.log_file_path:
        log_path = Path(config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding='utf-8',
        ))

    return handlers


def setup_logging(config: LoggingConfig, environment: Environment) -> None:
    """
    Set up logging for the process.

    Args:
        config: Logging configuration
        environment: Deployment environment
    """
    level = getattr(logging, config.level)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    for handler in _build_handlers(config):
        handler.setLevel(level)
        handler.setFormatter(_build_formatter(config))
        handler.addFilter(RecordContextFilter())
        root_logger.addHandler(handler)

    if environment == Environment.PRODUCTION:
        # Reduce noise from third-party libraries
        logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
        logging.getLogger('confluent_kafka').setLevel(logging.WARNING)
    elif environment == Environment.DEVELOPMENT:
        logging.getLogger('auditsync').setLevel(logging.DEBUG)


class PerformanceLogger:
    """Logger for pipeline stage timings."""

    def __init__(self, logger_name: str = 'auditsync.performance'):
        self.logger = logging.getLogger(logger_name)

    def log_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log operation performance."""
        level = logging.DEBUG if success else logging.WARNING

        extra_data = dict(extra or {})
        extra_data.update({
            'perf_operation': operation,
            'perf_duration_ms': duration_ms,
            'perf_success': success,
        })

        self.logger.log(
            level,
            f"Operation {operation} completed in {duration_ms:.2f}ms",
            extra=extra_data
        )


performance_logger = PerformanceLogger()


def log_performance(operation: str, duration_ms: float, success: bool = True, **extra) -> None:
    """Convenience function for performance logging."""
    performance_logger.log_operation(operation, duration_ms, success=success, extra=extra)
