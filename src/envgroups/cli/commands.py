"""CLI command implementations."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Annotated

import typer

from envgroups.cli import groups_app, trash_app, vars_app
from envgroups.cli.errors import handle_error
from envgroups.core.models import TabType

if TYPE_CHECKING:
    from rich.console import Console, RenderableType

    from envgroups.config import Workspace
    from envgroups.core.models import GroupVariable

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

Yes = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Skip interactive confirmation."),
]

Search = Annotated[
    str,
    typer.Option("--search", "-s", help="Only show entries containing this text."),
]

EnvPairs = Annotated[
    list[str] | None,
    typer.Option("--env", "-e", help="Variable as KEY=VALUE. Repeatable."),
]

Tab = Annotated[
    TabType,
    typer.Argument(help="Which history: 'groups' or 'user-vars'."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _console(color: bool) -> Console:
    from rich.console import Console

    return Console(no_color=not color, highlight=False)


def _print(renderable: RenderableType, *, color: bool) -> None:
    _console(color).print(renderable)


def _workspace(ctx: typer.Context) -> Workspace:
    from envgroups.config import load_settings, open_workspace

    config = (ctx.obj or {}).get("config")
    return open_workspace(load_settings(config))


def _parse_pairs(pairs: list[str]) -> list[GroupVariable]:
    """Turn ``KEY=VALUE`` strings into group variables."""
    from envgroups.core.errors import ValidationError
    from envgroups.core.models import GroupVariable

    errors = [f"Expected KEY=VALUE, got '{p}'" for p in pairs if "=" not in p]
    if errors:
        raise ValidationError(errors)
    result = []
    for pair in pairs:
        key, _, value = pair.partition("=")
        result.append(GroupVariable(name=key.strip(), value=value))
    return result


def _confirm(message: str, *, yes: bool) -> None:
    if yes:
        return
    try:
        typer.confirm(message, abort=True)
    except typer.Abort as e:
        typer.echo("Canceled.", err=True)
        raise typer.Exit(1) from e


# ---------------------------------------------------------------------------
# groups
# ---------------------------------------------------------------------------


@groups_app.command("list")
def list_groups(
    ctx: typer.Context,
    search: Search = "",
    system: Annotated[
        bool,
        typer.Option("--system", help="Also list live variables as read-only groups."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """List groups, with their activation state checked against the OS."""
    from envgroups.cli.formatting import groups_table
    from envgroups.engine.groups import filter_groups

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        groups = ws.groups.load_groups()
        if system:
            groups += ws.groups.system_variable_groups()
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    groups = filter_groups(groups, search)
    if not groups:
        typer.echo("No groups found.")
        return
    _print(groups_table(groups), color=color)


@groups_app.command("show")
def show_group(
    ctx: typer.Context,
    group_id: Annotated[str, typer.Argument(help="Group id.")],
    no_color: NoColor = False,
) -> None:
    """Show one group and its variables."""
    from envgroups.cli.formatting import group_detail

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        ws.groups.load_groups()
        group = ws.groups.get_group(group_id)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _print(group_detail(group), color=color)


@groups_app.command("create")
def create_group(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Group name.")],
    env: EnvPairs = None,
    description: Annotated[
        str,
        typer.Option("--description", "-d", help="Free-text description."),
    ] = "",
    no_color: NoColor = False,
) -> None:
    """Create an inactive group."""
    from envgroups.cli.formatting import styler
    from envgroups.engine.groups import GroupInput

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        data = GroupInput(name=name, description=description, variables=_parse_pairs(env or []))
        group = ws.groups.create_group(data)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)(f"Created group '{group.name}' ({group.id}).", fg="green"))


@groups_app.command("edit")
def edit_group(
    ctx: typer.Context,
    group_id: Annotated[str, typer.Argument(help="Group id.")],
    name: Annotated[str | None, typer.Option("--name", help="New name.")] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", "-d", help="New description."),
    ] = None,
    env: EnvPairs = None,
    remove: Annotated[
        list[str] | None,
        typer.Option("--remove", "-r", help="Drop a variable by name. Repeatable."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Edit a group. ``-e`` sets or overrides variables; other variables are kept."""
    from envgroups.cli.formatting import styler
    from envgroups.engine.groups import GroupInput

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        existing = ws.groups.get_group(group_id)
        overrides = {v.name: v for v in _parse_pairs(env or [])}
        drop = set(remove or [])

        variables = []
        for var in existing.variables:
            if var.name in drop:
                continue
            variables.append(overrides.pop(var.name, var))
        variables.extend(v for v in overrides.values() if v.name not in drop)

        data = GroupInput(
            name=existing.name if name is None else name,
            description=existing.description if description is None else description,
            variables=variables,
        )
        group = ws.groups.update_group(group_id, data)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)(f"Updated group '{group.name}'.", fg="green"))
    if group.is_active:
        typer.echo("The group is active; toggle it off and on to apply the new values.")


def _switch(ctx: typer.Context, group_id: str, active: bool | None, *, color: bool) -> None:
    """Activate, deactivate (or toggle when *active* is None) and print the report."""
    from envgroups.cli.formatting import format_operation_report

    try:
        ws = _workspace(ctx)
        ws.groups.load_groups()
        group = ws.groups.get_group(group_id)
        if active is None:
            report = ws.groups.toggle_group_active(group_id)
        else:
            report = ws.groups.set_group_active(group_id, active)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_operation_report(report, group.name, color=color))


@groups_app.command("toggle")
def toggle_group(
    ctx: typer.Context,
    group_id: Annotated[str, typer.Argument(help="Group id.")],
    no_color: NoColor = False,
) -> None:
    """Activate an inactive group or deactivate an active one."""
    _switch(ctx, group_id, None, color=_use_color(no_color))


@groups_app.command("activate")
def activate_group(
    ctx: typer.Context,
    group_id: Annotated[str, typer.Argument(help="Group id.")],
    no_color: NoColor = False,
) -> None:
    """Write every variable of the group to the user environment."""
    _switch(ctx, group_id, True, color=_use_color(no_color))


@groups_app.command("deactivate")
def deactivate_group(
    ctx: typer.Context,
    group_id: Annotated[str, typer.Argument(help="Group id.")],
    no_color: NoColor = False,
) -> None:
    """Remove every variable of the group from the user environment."""
    _switch(ctx, group_id, False, color=_use_color(no_color))


@groups_app.command("delete")
def delete_groups(
    ctx: typer.Context,
    group_ids: Annotated[list[str], typer.Argument(help="Group ids.")],
    yes: Yes = False,
    no_color: NoColor = False,
) -> None:
    """Delete groups, deactivating active ones first. Deleted groups go to the trash."""
    from envgroups.cli.formatting import format_batch_report

    color = _use_color(no_color)
    _confirm(f"Delete {len(group_ids)} group(s)?", yes=yes)
    try:
        ws = _workspace(ctx)
        ws.groups.load_groups()
        batch = ws.groups.delete_groups(group_ids)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_batch_report(batch, color=color))
    if batch.failed and not batch.deleted:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# vars
# ---------------------------------------------------------------------------


@vars_app.command("list")
def list_vars(
    ctx: typer.Context,
    search: Search = "",
    no_color: NoColor = False,
) -> None:
    """List user-scope variables."""
    from envgroups.cli.formatting import variables_table
    from envgroups.engine.catalog import filter_variables

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        variables = filter_variables(ws.variables.reconcile(), search)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not variables:
        typer.echo("No variables found.")
        return
    _print(variables_table(variables), color=color)


@vars_app.command("system")
def list_system_vars(
    ctx: typer.Context,
    search: Search = "",
    no_color: NoColor = False,
) -> None:
    """List system-scope variables (read-only)."""
    from envgroups.cli.formatting import entries_table

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        entries = ws.variables.list_system()
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    q = search.lower()
    entries = [e for e in entries if q in e.name.lower() or q in e.value.lower()]
    if not entries:
        typer.echo("No variables found.")
        return
    _print(entries_table(entries), color=color)


@vars_app.command("set")
def set_var(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Variable name.")],
    value: Annotated[str, typer.Argument(help="New value.")],
    no_color: NoColor = False,
) -> None:
    """Create or overwrite a user variable."""
    from envgroups.cli.formatting import styler
    from envgroups.core.errors import NotFoundError

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        if ws.backend is not None:
            ws.variables.reconcile()
        try:
            prior = ws.variables.get(name.strip())
        except NotFoundError:
            prior = None
        var = ws.variables.save(name, value, is_new=prior is None, prior=prior)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    verb = "Created" if prior is None else "Updated"
    typer.echo(styler(color)(f"{verb} {var.name}.", fg="green"))


@vars_app.command("path")
def edit_path(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Path list variable, e.g. PATH.")],
    add: Annotated[
        list[str] | None,
        typer.Option("--add", "-a", help="Append a segment. Repeatable."),
    ] = None,
    remove: Annotated[
        list[str] | None,
        typer.Option("--remove", "-r", help="Drop a segment. Repeatable."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Show or edit a PATH-like variable one segment at a time."""
    from envgroups.cli.formatting import path_table
    from envgroups.core.errors import NotFoundError, ValidationError
    from envgroups.engine.pathlist import edit_path_segments

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        if not ws.variables.is_path(name):
            raise ValidationError([f"{name} is not a path list variable"])
        if ws.backend is not None:
            ws.variables.reconcile()
        try:
            prior = ws.variables.get(name)
        except NotFoundError:
            prior = None
        segments = ws.variables.path_segments(prior) if prior is not None else []

        if add or remove:
            segments = edit_path_segments(segments, add=add or [], remove=remove or [])
            ws.variables.save_path_segments(name, segments, prior=prior)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _print(path_table(name, segments), color=color)


@vars_app.command("delete")
def delete_var(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Variable name.")],
    yes: Yes = False,
    no_color: NoColor = False,
) -> None:
    """Remove a user variable. It goes to the trash."""
    from envgroups.cli.formatting import styler

    color = _use_color(no_color)
    try:
        ws = _workspace(ctx)
        if ws.backend is not None:
            ws.variables.reconcile()
        var = ws.variables.get(name)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm(f"Delete variable {var.name}?", yes=yes)
    try:
        ws.variables.delete(var)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)(f"Deleted {var.name}.", fg="green"))


# ---------------------------------------------------------------------------
# trash
# ---------------------------------------------------------------------------


@trash_app.command("list")
def list_trash(
    ctx: typer.Context,
    tab: Tab,
    no_color: NoColor = False,
) -> None:
    """List trash records, newest first. Expired records are pruned first."""
    from envgroups.cli.formatting import trash_table

    color = _use_color(no_color)
    try:
        log = _workspace(ctx).trash(tab)
        pruned = log.open()
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if pruned:
        typer.echo(f"Pruned {pruned} record(s) older than {log.settings.auto_cleanup_days} days.")
    if not log.records:
        typer.echo("Trash is empty.")
        return
    _print(trash_table(log.records, title=f"Trash: {tab.value}"), color=color)


@trash_app.command("restore")
def restore_trash(
    ctx: typer.Context,
    tab: Tab,
    record_id: Annotated[str, typer.Argument(help="Trash record id.")],
    no_color: NoColor = False,
) -> None:
    """Undo a delete or edit and drop the record."""
    from envgroups.cli.formatting import styler

    color = _use_color(no_color)
    try:
        restored = _workspace(ctx).restore(tab, record_id)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(styler(color)(f"Restored '{restored.name}'.", fg="green"))


@trash_app.command("delete")
def delete_trash(
    ctx: typer.Context,
    tab: Tab,
    record_id: Annotated[str, typer.Argument(help="Trash record id.")],
    no_color: NoColor = False,
) -> None:
    """Permanently remove a trash record."""
    color = _use_color(no_color)
    try:
        log = _workspace(ctx).trash(tab)
        record = log.get(record_id)
        log.delete(record.id)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(f"Deleted trash record {record.id}.")


@trash_app.command("clean")
def clean_trash(
    ctx: typer.Context,
    tab: Tab,
    no_color: NoColor = False,
) -> None:
    """Remove records older than the retention window."""
    color = _use_color(no_color)
    try:
        log = _workspace(ctx).trash(tab)
        log.load()
        removed = log.clear_old_records()
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(f"Removed {removed} record(s) older than {log.settings.auto_cleanup_days} days.")


@trash_app.command("settings")
def trash_settings(
    ctx: typer.Context,
    tab: Tab,
    days: Annotated[
        int | None,
        typer.Option("--days", help="Keep records this many days."),
    ] = None,
    no_color: NoColor = False,
) -> None:
    """Show or change the retention window."""
    color = _use_color(no_color)
    try:
        log = _workspace(ctx).trash(tab)
        log.load()
        settings = log.settings if days is None else log.update_settings(auto_cleanup_days=days)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(f"{tab.value}: records are kept {settings.auto_cleanup_days} days.")
