"""Structured logging with correlation IDs.

Every log record carries the correlation id of the request or job that
produced it, so one lesson's upload, encode attempts and deliveries can be
followed across the API and the worker.
"""

import json
import logging
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation_id"}

# Promoted to the top level of the JSON document so logs can be filtered on them.
_TOP_LEVEL_FIELDS = ("lesson_id", "user_id", "task_id")

# Capability tokens must never reach the logs in full.
_SECRET_FIELDS = frozenset({"token", "key", "authorization"})
_SECRET_PREFIX_LENGTH = 20


def get_correlation_id() -> str:
    """Current correlation ID, generating one on first use."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = str(uuid.uuid4())
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def _redact(value: Any) -> str:
    text = str(value)
    if len(text) <= _SECRET_PREFIX_LENGTH:
        return "***"
    return text[:_SECRET_PREFIX_LENGTH] + "..."


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Fields passed through ``extra`` end up under ``"extra"``; lesson, user
    and task ids are lifted to the top level.
    """

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        extra = {}
        for name, value in record.__dict__.items():
            if name in _RECORD_ATTRS:
                continue
            if name in _SECRET_FIELDS and value is not None:
                value = _redact(value)
            if name in _TOP_LEVEL_FIELDS:
                document[name] = _jsonable(value)
            else:
                extra[name] = _jsonable(value)
        if extra:
            document["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            document["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
            }
            if self.include_stack_trace and exc_tb is not None:
                document["exception"]["stack_trace"] = traceback.format_exception(
                    exc_type, exc_value, exc_tb
                )

        return json.dumps(document, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamp the current correlation ID onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Configure the root logger for the API process or the Celery worker.

    Args:
        level: Log level name
        json_format: Emit JSON documents instead of plain lines
        include_stack_trace: Include stack traces of logged exceptions
    """
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # Per-request access lines come from RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.app.trace").setLevel(logging.WARNING)


def _log(logger: logging.Logger, level: int, message: str, exc: Optional[BaseException], extra: dict) -> None:
    extra["correlation_id"] = get_correlation_id()
    logger.log(level, message, exc_info=exc, extra=extra)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **extra: Any,
) -> None:
    """Log an error with the correlation ID and, if given, the exception."""
    _log(logger, logging.ERROR, message, exception, extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.WARNING, message, None, extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    _log(logger, logging.INFO, message, None, extra)
