"""
Keypool Structured Logging.

JSON and text formatters for the `keypool` logger hierarchy, plus a
small wrapper that attaches context fields (e.g. the migration version
being applied) to every record.
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_loggers: Dict[str, "StructuredLogger"] = {}

ROOT_LOGGER = "keypool"

# Standard LogRecord attributes; everything else on a record is "extra"
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per record with consistent field names.
    """

    def __init__(
        self,
        service_name: str = "keypool",
        include_traceback: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None,
    ):
        super().__init__()
        self.service_name = service_name
        self.include_traceback = include_traceback
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "source": {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }
            if self.include_traceback:
                log_entry["exception"]["traceback"] = traceback.format_exception(
                    *record.exc_info
                )

        extra = {}
        for key, value in _extra_fields(record).items():
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)
        if extra:
            log_entry["extra"] = extra

        if self.extra_fields:
            log_entry.update(self.extra_fields)

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Readable text formatter with optional context fields."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as readable text."""
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S.%f"
        )[:-3]
        parts = [
            f"{timestamp} {record.levelname:8s} [{record.name}] {record.getMessage()}"
        ]

        if self.include_context:
            context = _extra_fields(record)
            if context:
                parts.append(
                    "  context: " + ", ".join(f"{k}={v}" for k, v in context.items())
                )

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return "\n".join(parts)


class StructuredLogger:
    """
    Structured logger wrapper with context management.

    Context set on the wrapper is passed as `extra` on every record.
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)
        self._context: Dict[str, Any] = {}

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def set_context(self, **kwargs):
        """Set persistent context fields for all subsequent logs."""
        self._context.update(kwargs)

    def clear_context(self):
        """Clear all context fields."""
        self._context.clear()

    def with_context(self, **kwargs) -> "LogContext":
        """
        Create a context manager for temporary context.

        Usage:
            with logger.with_context(version="1.2.0"):
                logger.info("Applying migration")
        """
        return LogContext(self, kwargs)

    def _log(self, level: int, msg: str, *args, exc_info: bool = False, **kwargs):
        extra = {**self._context, **kwargs}
        self._logger.log(level, msg, *args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, exc_info: bool = False, **kwargs):
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


class LogContext:
    """Context manager for temporary logging context."""

    def __init__(self, logger: StructuredLogger, context: Dict[str, Any]):
        self._logger = logger
        self._context = context
        self._original_context: Dict[str, Any] = {}

    def __enter__(self) -> StructuredLogger:
        for key in self._context:
            if key in self._logger._context:
                self._original_context[key] = self._logger._context[key]
        self._logger.set_context(**self._context)
        return self._logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        for key in self._context:
            if key in self._original_context:
                self._logger._context[key] = self._original_context[key]
            else:
                self._logger._context.pop(key, None)
        return False


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    service_name: str = "keypool",
    output: str = "stderr",
    extra_fields: Optional[Dict[str, Any]] = None,
):
    """
    Setup logging for the keypool logger hierarchy.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "json" or "text"
        service_name: Service name for logs
        output: "stderr", "stdout", or a file path
        extra_fields: Additional fields to include in JSON logs
    """
    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    if output == "stderr":
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    elif output == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        handler = logging.FileHandler(output)

    if format_type.lower() == "json":
        formatter: logging.Formatter = JSONFormatter(
            service_name=service_name,
            extra_fields=extra_fields,
        )
    else:
        formatter = TextFormatter()

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance
    """
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]
