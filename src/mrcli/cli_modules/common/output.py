"""Output formatting utilities for CLI commands.

Objects are shown as a rich table by default or as JSON with
``--output json``. Results from the core are rendered by ``render_result``,
which prints ``SUCCESS:`` / ``ERROR:`` and sets the exit code.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

import typer
from rich.console import Console
from rich.table import Table

from mrcli.cli_modules.common.errors import EXIT_FAILURE, echo_error
from mrcli.result import Result

OUTPUT_FORMATS = ("table", "json")


# =============================================================================
# Color Theme
# =============================================================================


@dataclass(frozen=True)
class ColorTheme:
    """Color theme for terminal output."""

    success: str = "green"
    error: str = "red"
    warning: str = "yellow"
    header: str = "bold"
    key: str = "cyan"
    muted: str = "dim"


DEFAULT_THEME = ColorTheme()

# Columns shown per container in table output.
TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "Companies": ("name", "company_type", "role", "region", "industry"),
    "Interactions": ("name", "interaction_type", "status", "content_type", "region"),
    "Studies": ("name", "description", "status"),
}


# =============================================================================
# Console Output
# =============================================================================


class ConsoleOutput:
    """Human-readable output.

    Example:
        >>> out = ConsoleOutput()
        >>> out.objects("Companies", [{"name": "Acme", "region": "AMER"}])
        >>> out.success("Created [1] [Companies] object(s).")
    """

    def __init__(
        self,
        theme: ColorTheme = DEFAULT_THEME,
        no_color: bool = False,
        verbose: bool = False,
    ) -> None:
        self.theme = theme
        self.no_color = no_color
        self.verbose = verbose

    def _console(self) -> Console:
        # Resolved per call so redirected stdout (e.g. under test) is honoured.
        return Console(no_color=self.no_color, highlight=False, soft_wrap=False)

    def success(self, message: str) -> None:
        typer.echo(typer.style(f"SUCCESS: {message}", fg=self.theme.success))

    def error(self, message: str, details: dict[str, Any] | None = None) -> None:
        echo_error(message)
        if self.verbose and details:
            typer.echo("Details:", err=True)
            for key, value in details.items():
                typer.echo(f"  {key}: {value}", err=True)

    def warning(self, message: str) -> None:
        typer.echo(typer.style(f"WARNING: {message}", fg=self.theme.warning), err=True)

    def table(self, title: str, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        table = Table(title=title, show_header=True, header_style=self.theme.header)
        for i, header in enumerate(headers):
            table.add_column(header, style=self.theme.key if i == 0 else None)
        for row in rows:
            table.add_row(*("" if cell is None else str(cell) for cell in row))
        self._console().print(table)

    def objects(self, container: str, objects: list[dict[str, Any]]) -> None:
        """Show objects as a table with the container's summary columns."""
        columns = TABLE_COLUMNS.get(container, ("name", "description"))
        headers = [c.replace("_", " ").title() for c in columns]
        self.table(container, headers, [[obj.get(c) for c in columns] for obj in objects])


# =============================================================================
# JSON Output
# =============================================================================


class JsonOutput:
    """Machine-readable output."""

    def __init__(self, pretty: bool = True, indent: int = 2) -> None:
        self.indent = indent if pretty else None

    def format(self, data: Any) -> str:
        return json.dumps(data, indent=self.indent, default=str, ensure_ascii=False)

    def write_data(self, data: Any) -> None:
        typer.echo(self.format(data))


# =============================================================================
# Rendering
# =============================================================================


def render_result(
    result: Result[Any],
    output_format: str = "table",
    container: str | None = None,
    verbose: bool = False,
) -> None:
    """Print a core result and exit -1 if it is an error.

    Object lists are printed as a table (or JSON); every other success
    value is summarised by its message.
    """
    if output_format == "json":
        payload: dict[str, Any] = {"status": result.status.to_dict()}
        if result.ok:
            payload["data"] = result.value
        else:
            payload["error"] = result.kind.name
            payload["details"] = result.details
        JsonOutput().write_data(payload)
        if not result.ok:
            raise typer.Exit(EXIT_FAILURE)
        return

    console = ConsoleOutput(verbose=verbose)
    if not result.ok:
        console.error(result.message, result.details)
        raise typer.Exit(EXIT_FAILURE)

    value = result.value
    if isinstance(value, list) and all(isinstance(v, dict) for v in value) and container:
        console.objects(container, value)
        if value:
            return
    console.success(result.message or "OK")
