"""Shared CLI infrastructure: errors, output and the invocation context."""

from mrcli.cli_modules.common.context import AppContext, get_app_context
from mrcli.cli_modules.common.errors import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    CLIError,
    ErrorCode,
    InputError,
    error_boundary,
    fail,
    parse_json_option,
)
from mrcli.cli_modules.common.output import (
    OUTPUT_FORMATS,
    ColorTheme,
    ConsoleOutput,
    JsonOutput,
    render_result,
)

__all__ = [
    "AppContext",
    "get_app_context",
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "CLIError",
    "ErrorCode",
    "InputError",
    "error_boundary",
    "fail",
    "parse_json_option",
    "OUTPUT_FORMATS",
    "ColorTheme",
    "ConsoleOutput",
    "JsonOutput",
    "render_result",
]
