"""Observability for mrcli: logging setup and context propagation."""

from mrcli.observability.logging import (
    ConsoleFormatter,
    ContextFilter,
    JSONFormatter,
    LogContext,
    configure_logging,
    log_context,
)

__all__ = [
    "ConsoleFormatter",
    "ContextFilter",
    "JSONFormatter",
    "LogContext",
    "configure_logging",
    "log_context",
]
