"""User, billing and storage commands.

These read live from the GitHub API rather than from containers, so they
need the ``github`` backend.

Examples:
    mrcli user
    mrcli user --all
    mrcli billing --actions
    mrcli storage
"""

from __future__ import annotations

from typing import Annotated, Any

import typer

from mrcli.cli_modules.common.context import AppContext, get_app_context
from mrcli.cli_modules.common.errors import EXIT_FAILURE, CLIError, InputError, error_boundary
from mrcli.cli_modules.common.output import ConsoleOutput, JsonOutput
from mrcli.result import Result
from mrcli.stores.backends import GitHubObjectStore

USER_COLUMNS = ("login", "name", "type", "role_name", "html_url")
ACTIONS_COLUMNS = ("total_minutes_used", "total_paid_minutes_used", "included_minutes")
STORAGE_COLUMNS = (
    "days_left_in_billing_cycle",
    "estimated_paid_storage_for_month",
    "estimated_storage_for_month",
)


def _github(app_ctx: AppContext, command: str) -> GitHubObjectStore:
    backend = app_ctx.get_backend()
    if not isinstance(backend, GitHubObjectStore):
        raise CLIError(
            f"The [{command}] command needs the github backend, not [{backend.name}].",
            hint="Run 'mrcli setup --backend github' to switch.",
        )
    return backend


def _show(app_ctx: AppContext, title: str, columns: tuple[str, ...], results: list[Result[Any]]) -> None:
    """Print one row per record from ``results``; exit -1 if any failed."""
    failed = [r for r in results if not r.ok]
    records: list[dict[str, Any]] = []
    for result in results:
        if result.ok:
            value = result.value
            records.extend(value if isinstance(value, list) else [value])

    if app_ctx.output == "json":
        payload: dict[str, Any] = {"data": records}
        if failed:
            payload["errors"] = [{"error": r.kind.name, "message": r.message} for r in failed]
        JsonOutput().write_data(payload)
    else:
        out = ConsoleOutput(verbose=app_ctx.verbose)
        if records:
            headers = [c.replace("_", " ").title() for c in columns]
            out.table(title, headers, [[record.get(c) for c in columns] for record in records])
        for result in failed:
            out.error(result.message, result.details)
        if not failed:
            out.success("; ".join(r.message for r in results) + ".")

    if failed:
        raise typer.Exit(EXIT_FAILURE)


@error_boundary
def user_cmd(
    ctx: typer.Context,
    all_users: Annotated[
        bool,
        typer.Option("--all", help="List every collaborator on the discovery repository"),
    ] = False,
) -> None:
    """Show the authenticated user, or every repository collaborator."""
    app_ctx = get_app_context(ctx)
    store = _github(app_ctx, "user")
    result = store.get_all_users() if all_users else store.get_user()
    _show(app_ctx, "Users", USER_COLUMNS, [result])


@error_boundary
def billing_cmd(
    ctx: typer.Context,
    actions: Annotated[
        bool,
        typer.Option("--actions", "-a", help="Only actions billing"),
    ] = False,
    storage: Annotated[
        bool,
        typer.Option("--storage", "-s", help="Only storage billing"),
    ] = False,
) -> None:
    """Report actions minutes and shared storage consumed by the organization."""
    if actions and storage:
        raise InputError("Use only one of --actions, --storage", "--actions")
    app_ctx = get_app_context(ctx)
    store = _github(app_ctx, "billing")
    if actions:
        _show(app_ctx, "Actions billing", ACTIONS_COLUMNS, [store.get_actions_billing()])
    elif storage:
        _show(app_ctx, "Storage billing", STORAGE_COLUMNS, [store.get_storage_billing()])
    else:
        _show(
            app_ctx,
            "Billing",
            ("kind",) + ACTIONS_COLUMNS + STORAGE_COLUMNS,
            [
                store.get_actions_billing().map(lambda data: {"kind": "actions", **data}),
                store.get_storage_billing().map(lambda data: {"kind": "storage", **data}),
            ],
        )


@error_boundary
def storage_cmd(ctx: typer.Context) -> None:
    """Report shared storage consumed by the organization."""
    app_ctx = get_app_context(ctx)
    store = _github(app_ctx, "storage")
    _show(app_ctx, "Storage billing", STORAGE_COLUMNS, [store.get_storage_billing()])


def register_commands(app: typer.Typer) -> None:
    app.command(name="user")(user_cmd)
    app.command(name="billing")(billing_cmd)
    app.command(name="storage")(storage_cmd)
