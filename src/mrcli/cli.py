"""Command-line interface for mrcli."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from mrcli import __version__
from mrcli.cli_modules import register_all
from mrcli.cli_modules.common.context import AppContext
from mrcli.cli_modules.common.errors import EXIT_FAILURE, echo_error
from mrcli.cli_modules.common.output import OUTPUT_FORMATS
from mrcli.observability.logging import configure_logging

app = typer.Typer(
    name="mrcli",
    help="Manage Companies, Interactions and Studies kept in a Mediumroast GitHub repository",
    add_completion=False,
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"mrcli {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    conf_file: Annotated[
        Optional[Path],
        typer.Option("--conf_file", "-c", help="Configuration file (default ~/.mediumroast/config.ini)"),
    ] = None,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help="Output format (table, json)"),
    ] = "table",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show debug logs and error details"),
    ] = False,
    log_format: Annotated[
        str,
        typer.Option("--log-format", help="Log format (console, json)"),
    ] = "console",
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version"),
    ] = False,
) -> None:
    """Mediumroast command line tools."""
    output = output.lower()
    if output not in OUTPUT_FORMATS:
        echo_error(f"Unknown output format: {output}. Use one of: {', '.join(OUTPUT_FORMATS)}")
        raise typer.Exit(EXIT_FAILURE)
    try:
        configure_logging(level="DEBUG" if verbose else "WARNING", format=log_format)
    except ValueError as e:
        echo_error(str(e))
        raise typer.Exit(EXIT_FAILURE)

    # Tests hand in a prepared context holding an in-memory backend.
    app_ctx = ctx.obj if isinstance(ctx.obj, AppContext) else AppContext()
    app_ctx.config_file = conf_file or app_ctx.config_file
    app_ctx.output = output
    app_ctx.verbose = verbose
    ctx.obj = app_ctx


register_all(app)


def main() -> None:
    """Entry point for the ``mrcli`` console script."""
    app()


if __name__ == "__main__":
    main()
