"""CLI error handling utilities.

Every mrcli command exits ``0`` on success and ``-1`` on failure, printing
``SUCCESS: ...`` or ``ERROR: ...``. ``error_boundary`` turns exceptions
that escape a command into that form.
"""

from __future__ import annotations

import functools
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, TypeVar

import typer

from mrcli.config import ConfigError
from mrcli.stores.base import StoreError

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = -1


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode(Enum):
    """CLI error categories, shown with ``--verbose``."""

    GENERAL_ERROR = "general_error"
    INVALID_INPUT = "invalid_input"


# =============================================================================
# Exception Classes
# =============================================================================


class CLIError(Exception):
    """Base exception for CLI errors.

    Attributes:
        message: Error message
        code: Error category
        details: Additional error details
        hint: Helpful hint for resolution
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.GENERAL_ERROR,
        details: dict[str, Any] | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.hint = hint

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        return "\n".join(parts)


class InputError(CLIError):
    """Error when a command-line value cannot be used."""

    def __init__(self, message: str, option: str | None = None, hint: str | None = None) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_INPUT,
            details={"option": option},
            hint=hint,
        )
        self.option = option


# =============================================================================
# Reporting
# =============================================================================


def echo_error(message: str, hint: str | None = None) -> None:
    typer.echo(typer.style(f"ERROR: {message}", fg="red"), err=True)
    if hint:
        typer.echo(typer.style(f"Hint: {hint}", fg="yellow"), err=True)


def fail(message: str, hint: str | None = None) -> None:
    """Print an error and exit with the failure code."""
    echo_error(message, hint)
    raise typer.Exit(EXIT_FAILURE)


# =============================================================================
# Decorator
# =============================================================================


F = TypeVar("F", bound=Callable[..., Any])


def error_boundary(func: F) -> F:
    """Convert exceptions escaping a command into ``ERROR:`` and exit -1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except CLIError as e:
            logger.debug("%s: %s", e.code.name, e.details)
            fail(e.message, e.hint)
        except ConfigError as e:
            fail(str(e), "Run 'mrcli setup' or check the configuration file.")
        except StoreError as e:
            fail(f"Object store failure: {e}")
        except Exception as e:
            logger.exception("Unexpected error")
            fail(str(e))

    return wrapper  # type: ignore


# =============================================================================
# Input Helpers
# =============================================================================


def parse_json_option(value: str, option: str) -> Any:
    """Parse a JSON option value; ``@path`` reads the JSON from a file.

    Raises:
        InputError: If the file is missing or the value is not JSON.
    """
    text = value
    if value.startswith("@"):
        path = Path(value[1:]).expanduser()
        if not path.exists():
            raise InputError(f"File not found: {path}", option)
        text = path.read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except ValueError as e:
        raise InputError(
            f"{option} expects JSON: {e}",
            option,
            hint='Quote the value, e.g. --update \'{"description": "..."}\'',
        ) from e
