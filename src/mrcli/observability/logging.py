"""Logging setup for mrcli.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves. The CLI calls ``configure_logging`` once per
invocation to attach a single handler to the ``mrcli`` logger.

Fields pushed with ``log_context`` are attached to every record emitted
inside the context, so all lines of one write operation carry the same
``operation_id``:

    >>> with log_context(operation_id="a1b2c3", container="Companies"):
    ...     logger.info("Locked")  # includes operation_id, container
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, TextIO

ROOT_LOGGER = "mrcli"

# Attributes every LogRecord has; anything else came from ``extra``.
_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
    | {"message", "asctime", "context"}
)


# =============================================================================
# Log Context
# =============================================================================


class LogContext:
    """Thread-local context for structured logging.

    Fields added to the context are included in all logs within it.

    Example:
        >>> with log_context(operation_id="abc123"):
        ...     logger.info("Catching containers")
        ...     with log_context(container="Companies"):
        ...         logger.info("Locked")  # includes both fields
    """

    _local = threading.local()

    @classmethod
    def get_current(cls) -> dict[str, Any]:
        """Get current context fields."""
        if not hasattr(cls._local, "stack"):
            cls._local.stack = [{}]
        result: dict[str, Any] = {}
        for ctx in cls._local.stack:
            result.update(ctx)
        return result

    @classmethod
    def push(cls, **fields: Any) -> None:
        if not hasattr(cls._local, "stack"):
            cls._local.stack = [{}]
        cls._local.stack.append(fields)

    @classmethod
    def pop(cls) -> dict[str, Any]:
        if hasattr(cls._local, "stack") and len(cls._local.stack) > 1:
            return cls._local.stack.pop()
        return {}

    @classmethod
    def clear(cls) -> None:
        cls._local.stack = [{}]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Context manager for adding fields to log context.

    Args:
        **fields: Key-value pairs to add to context.
    """
    LogContext.push(**fields)
    try:
        yield
    finally:
        LogContext.pop()


class ContextFilter(logging.Filter):
    """Copies the current ``LogContext`` fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = LogContext.get_current()
        return True


def _fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = dict(getattr(record, "context", None) or {})
    for key, value in vars(record).items():
        if key not in _RESERVED:
            fields[key] = value
    return fields


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Example output:
        {"timestamp":"2026-01-15T10:30:00+00:00","level":"info","logger":"mrcli.stores","message":"Locked",...}
    """

    def __init__(self, *, sort_keys: bool = False) -> None:
        super().__init__()
        self._sort_keys = sort_keys

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(_fields(record))
        if record.exc_info:
            data["exception"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(data, sort_keys=self._sort_keys, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter.

    Example output:
        2026-01-15 10:30:00 INFO  [mrcli.stores.concurrency.locks] Locked Companies operation_id=a1b2
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        *,
        color: bool = True,
        show_timestamp: bool = True,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
        stream: TextIO | None = None,
    ) -> None:
        super().__init__()
        isatty = getattr(stream or sys.stderr, "isatty", None)
        self._color = color and bool(isatty and isatty())
        self._show_timestamp = show_timestamp
        self._timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        parts = []
        if self._show_timestamp:
            ts = datetime.fromtimestamp(record.created).strftime(self._timestamp_format)
            parts.append(ts)

        level = record.levelname.ljust(5)
        if self._color:
            level = f"{self.COLORS.get(record.levelno, '')}{level}{self.RESET}"
        parts.append(level)
        parts.append(f"[{record.name}]")
        parts.append(record.getMessage())

        fields = _fields(record)
        if fields:
            parts.append(" ".join(f"{k}={v}" for k, v in fields.items()))

        result = " ".join(parts)
        if record.exc_info:
            result = f"{result}\n{''.join(traceback.format_exception(*record.exc_info))}"
        return result


# =============================================================================
# Configuration
# =============================================================================

_FORMATS = ("console", "json")
_handler: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.WARNING,
    format: str = "console",
    stream: TextIO | None = None,
) -> logging.Handler:
    """Install the mrcli log handler, replacing any earlier one.

    Args:
        level: Level name or number for the ``mrcli`` logger.
        format: Output format ("console" or "json").
        stream: Destination; standard error when omitted.

    Returns:
        The installed handler.

    Raises:
        ValueError: If the format or level name is unknown.
    """
    global _handler

    if format not in _FORMATS:
        raise ValueError(f"Unknown log format: {format}. Use one of: {', '.join(_FORMATS)}")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    handler = logging.StreamHandler(stream or sys.stderr)
    if format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(stream=stream))
    handler.addFilter(ContextFilter())

    root = logging.getLogger(ROOT_LOGGER)
    with _lock:
        if _handler is not None:
            root.removeHandler(_handler)
        root.addHandler(handler)
        root.setLevel(level)
        _handler = handler
    return handler
