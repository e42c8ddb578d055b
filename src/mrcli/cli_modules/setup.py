"""Setup command - write the configuration and create the containers.

Examples:
    mrcli setup --org acme --token gho_...
    mrcli setup --backend filesystem --store-path ~/mrstore
    mrcli -c ./config.ini setup --process-name mrcli-laptop
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

import typer

from mrcli.cli_modules.common.context import get_app_context
from mrcli.cli_modules.common.errors import InputError, error_boundary
from mrcli.cli_modules.common.output import ConsoleOutput, render_result
from mrcli.config import BACKENDS, DEFAULT_CONFIG_FILE, load_config, save_config
from mrcli.repository import create_containers


@error_boundary
def setup_cmd(
    ctx: typer.Context,
    org: Annotated[
        Optional[str],
        typer.Option("--org", help="GitHub organization owning <org>_discovery"),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option("--token", help="GitHub access token to cache in the configuration"),
    ] = None,
    token_expiry: Annotated[
        Optional[str],
        typer.Option("--token-expiry", help="ISO-8601 expiry of the token"),
    ] = None,
    client_id: Annotated[
        Optional[str],
        typer.Option("--client-id", help="GitHub application client id"),
    ] = None,
    backend: Annotated[
        Optional[str],
        typer.Option("--backend", help=f"Object store backend ({', '.join(BACKENDS)})"),
    ] = None,
    store_path: Annotated[
        Optional[str],
        typer.Option("--store-path", help="Root directory of the filesystem backend"),
    ] = None,
    process_name: Annotated[
        Optional[str],
        typer.Option("--process-name", help="Name used for this installation's lock files"),
    ] = None,
) -> None:
    """Write the configuration file and create any missing containers."""
    app_ctx = get_app_context(ctx)
    config = app_ctx.config or load_config(app_ctx.config_file, required=False)

    github_changes = {}
    if org is not None:
        github_changes["org"] = org
    if token is not None:
        github_changes["token"] = token
    if client_id is not None:
        github_changes["client_id"] = client_id
    if token_expiry is not None:
        try:
            expiry = datetime.fromisoformat(token_expiry.replace("Z", "+00:00"))
        except ValueError as e:
            raise InputError(f"--token-expiry is not an ISO-8601 timestamp: {token_expiry}", "--token-expiry") from e
        github_changes["token_expiry"] = expiry if expiry.tzinfo else expiry.replace(tzinfo=timezone.utc)

    changes = {}
    if github_changes:
        changes["github"] = replace(config.github, **github_changes)
    if backend is not None:
        changes["backend"] = backend.strip().lower()
    if store_path is not None:
        changes["store_path"] = store_path
    if process_name is not None:
        changes["process_name"] = process_name
    config = config.with_overrides(**changes) if changes else config

    path = save_config(config, app_ctx.config_file or config.source or DEFAULT_CONFIG_FILE)
    app_ctx.config = config.with_overrides(source=Path(path))
    out = ConsoleOutput(verbose=app_ctx.verbose)
    if app_ctx.output != "json":
        out.success(f"Wrote configuration to [{path}].")

    store = app_ctx.get_backend()
    ensure_repository = getattr(store, "ensure_repository", None)
    if ensure_repository is not None and ensure_repository():
        if app_ctx.output != "json":
            out.success(f"Created the repository for [{config.github.org}].")

    render_result(create_containers(store), app_ctx.output, verbose=app_ctx.verbose)


def register_commands(app: typer.Typer) -> None:
    app.command(name="setup")(setup_cmd)
