"""Structured logging configuration for appgen.

- JSON structured logging with StructuredFormatter
- Logger hierarchy under the ``appgen`` namespace
- Per-run correlation ids carried in a context variable
- Environment variable control (APPGEN_LOG_LEVEL, APPGEN_LOG_FORMAT)

Logs go to stderr: stdout belongs to the host (CLI output, stdio transports).
"""

import contextlib
import contextvars
import json
import logging
import os
import sys
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Optional

__all__ = [
    "CorrelationFilter",
    "StructuredFormatter",
    "TextFormatter",
    "configure_logging",
    "correlation_scope",
    "get_correlation_id",
    "new_correlation_id",
]

# Sensitive keys that should be redacted in log output
SENSITIVE_KEYS = {
    "password", "token", "secret", "apikey", "api_key", "access_token",
    "refresh_token", "id_token", "code_verifier", "authorization",
    "credential", "auth", "bearer", "body",
}

_HANDLER_MARK = "_appgen_handler"

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "appgen_correlation_id", default=None
)


def new_correlation_id() -> str:
    """Generate a short opaque id for one orchestration run."""
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> Optional[str]:
    """Return the correlation id bound to the current context, if any."""
    return _correlation_id.get()


@contextlib.contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    Context variables are task-local under asyncio, so concurrent runs never
    see each other's id.

    Example:
        >>> with correlation_scope("1a2b3c4d"):
        ...     logger.info("job_created")  # record carries correlation_id
    """
    # set() rather than reset(token): an async generator holding the scope may
    # be finalized from a different context than the one it started in
    previous = _correlation_id.get()
    _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.set(previous)


class CorrelationFilter(logging.Filter):
    """Stamp the current correlation id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter.

    Outputs logs in JSON format with:
    - timestamp: UTC ISO 8601 format with 'Z' suffix
    - level: Log level name (INFO, ERROR, etc.)
    - logger: Logger name (appgen hierarchy)
    - message: Log message
    - correlation_id: Id of the orchestration run, when inside one
    - context: Extras dict merged from LogRecord attributes

    Security: Sensitive keys (password, token, body, etc.) are automatically
    redacted so credentials and raw response bodies never reach the log sink.
    """

    STANDARD_FIELDS = {
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
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
        "correlation_id",
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: LogRecord to format

        Returns:
            JSON string with structured log data
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        extras = {
            k: ("[REDACTED]" if k.lower() in SENSITIVE_KEYS else v)
            for k, v in record.__dict__.items()
            if k not in self.STANDARD_FIELDS and not k.startswith("_")
        }

        if extras:
            log_data["context"] = extras

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development.

    Used when APPGEN_LOG_FORMAT=text for easier local debugging.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s]: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        # Records that skipped CorrelationFilter still format
        if not hasattr(record, "correlation_id"):
            record.correlation_id = None
        return super().format(record)


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structured logging for all appgen loggers.

    Args:
        level: Optional log level override. If not provided, uses APPGEN_LOG_LEVEL
               environment variable (default: INFO).
        log_format: Optional format override ("json" or "text"). If not provided,
               uses APPGEN_LOG_FORMAT (default: json).
    """
    if level is None:
        level = os.getenv("APPGEN_LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format is None:
        log_format = os.getenv("APPGEN_LOG_FORMAT", "json")

    if log_format.lower() == "text":
        formatter: logging.Formatter = TextFormatter()
    else:
        formatter = StructuredFormatter()

    logger = logging.getLogger("appgen")
    logger.setLevel(log_level)

    # Idempotent: reuse our own handler on repeated calls, only swap its
    # formatter. Handlers attached by others (test capture, host apps) are left
    # untouched.
    handler = next((h for h in logger.handlers if getattr(h, _HANDLER_MARK, False)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        setattr(handler, _HANDLER_MARK, True)
        handler.addFilter(CorrelationFilter())
        logger.addHandler(handler)
    handler.setFormatter(formatter)

    logger.propagate = False
