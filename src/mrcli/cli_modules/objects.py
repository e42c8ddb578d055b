"""Object commands - ``mrcli company``, ``mrcli interaction``, ``mrcli study``.

Each command lists every object of its container when called without
options, or performs exactly one of the find, add, update or delete
actions.

Examples:
    mrcli company
    mrcli company --find_by_name "Acme"
    mrcli company --find_by_x '{"region": "AMER"}'
    mrcli company --add '{"name": "Acme", "linked_interactions": ["Call notes"]}'
    mrcli company --update '{"name": "Acme", "description": "Maker of anvils"}'
    mrcli company --delete "Acme" --allow_orphans
"""

from __future__ import annotations

from typing import Annotated, Any, Callable, Optional

import typer

from mrcli.cli_modules.common.context import get_app_context
from mrcli.cli_modules.common.errors import InputError, error_boundary, parse_json_option
from mrcli.cli_modules.common.output import render_result
from mrcli.repository import ContainerRepository, LINK_FIELDS

# command name -> (container, help)
OBJECT_COMMANDS: dict[str, tuple[str, str]] = {
    "company": ("Companies", "List, find, add, update or delete Company objects."),
    "interaction": ("Interactions", "List, find, add, update or delete Interaction objects."),
    "study": ("Studies", "List, find, add, update or delete Study objects."),
}


# =============================================================================
# Option parsing
# =============================================================================


def parse_find_by_x(value: str) -> tuple[str, Any]:
    """Parse ``{"attribute": value}`` into ``(attribute, value)``."""
    query = parse_json_option(value, "--find_by_x")
    if not isinstance(query, dict) or len(query) != 1:
        raise InputError(
            "--find_by_x expects exactly one attribute, e.g. '{\"region\": \"AMER\"}'",
            "--find_by_x",
        )
    return next(iter(query.items()))


def parse_update(value: str) -> tuple[str, dict[str, Any]]:
    """Parse an update request into ``(name, fields)``.

    Accepts ``{"name": ..., "field": value, ...}`` or the single-field form
    ``{"name": ..., "key": "field", "value": value}``.
    """
    request = parse_json_option(value, "--update")
    if not isinstance(request, dict) or not isinstance(request.get("name"), str):
        raise InputError("--update expects a JSON object with a [name]", "--update")
    fields = {k: v for k, v in request.items() if k != "name"}
    if set(fields) == {"key", "value"} and isinstance(fields["key"], str):
        fields = {fields["key"]: fields["value"]}
    if not fields:
        raise InputError("--update names no fields to change", "--update")
    return request["name"], fields


def parse_add(value: str) -> list[dict[str, Any]]:
    """Parse objects to add; ``linked_*`` lists of names become link maps."""
    data = parse_json_option(value, "--add")
    objs = data if isinstance(data, list) else [data]
    if not objs or not all(isinstance(obj, dict) for obj in objs):
        raise InputError("--add expects a JSON object or a list of objects", "--add")

    converted = []
    for obj in objs:
        obj = dict(obj)
        for link_field in LINK_FIELDS.values():
            names = obj.get(link_field)
            if isinstance(names, list):
                obj[link_field] = ContainerRepository.link_obj({"name": str(n)} for n in names)
        converted.append(obj)
    return converted


# =============================================================================
# Command
# =============================================================================


def make_object_command(container: str) -> Callable[..., None]:
    """Build the command function for ``container``."""

    @error_boundary
    def object_cmd(
        ctx: typer.Context,
        find_by_name: Annotated[
            Optional[str],
            typer.Option("--find_by_name", help="Find objects by name (case-insensitive)"),
        ] = None,
        find_by_x: Annotated[
            Optional[str],
            typer.Option("--find_by_x", help='Find objects by one attribute, e.g. \'{"region": "AMER"}\''),
        ] = None,
        add: Annotated[
            Optional[str],
            typer.Option("--add", help="Add objects from JSON, or @file.json"),
        ] = None,
        update: Annotated[
            Optional[str],
            typer.Option("--update", help='Update an object, e.g. \'{"name": "Acme", "description": "..."}\''),
        ] = None,
        delete: Annotated[
            Optional[str],
            typer.Option("--delete", help="Delete the object with this name"),
        ] = None,
        allow_orphans: Annotated[
            bool,
            typer.Option("--allow_orphans", help="With --delete, leave linked objects in place"),
        ] = False,
    ) -> None:
        app_ctx = get_app_context(ctx)
        chosen = [
            flag for flag, value in (
                ("--find_by_name", find_by_name),
                ("--find_by_x", find_by_x),
                ("--add", add),
                ("--update", update),
                ("--delete", delete),
            )
            if value is not None
        ]
        if len(chosen) > 1:
            raise InputError(f"Use only one of {', '.join(chosen)}")
        if allow_orphans and delete is None:
            raise InputError("--allow_orphans only applies to --delete", "--allow_orphans")

        repo = app_ctx.repository(container)
        if find_by_name is not None:
            result = repo.find_by_name(find_by_name)
        elif find_by_x is not None:
            attribute, value = parse_find_by_x(find_by_x)
            result = repo.find_by_x(attribute, value)
        elif add is not None:
            result = repo.create_obj(parse_add(add))
        elif update is not None:
            name, fields = parse_update(update)
            result = repo.update_obj(name, fields)
        elif delete is not None:
            result = repo.delete_obj(delete, allow_orphans=allow_orphans)
        else:
            result = repo.get_all()

        render_result(result, app_ctx.output, container=container, verbose=app_ctx.verbose)

    return object_cmd


def register_commands(app: typer.Typer) -> None:
    """Register the object commands with the root app."""
    for name, (container, help_text) in OBJECT_COMMANDS.items():
        app.command(name=name, help=help_text)(make_object_command(container))
