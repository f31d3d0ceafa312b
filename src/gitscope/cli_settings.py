"""Project settings CLI commands."""

import click

from .cli_utils import get_runtime, handle_errors, print_table
from .storage.project_store import SCORE_FIELDS

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def register_settings_commands(cli_group: click.Group) -> None:
    """Register the ``settings`` group on the main CLI group."""
    cli_group.add_command(settings)


def _parse_weekdays(value: str) -> list[int]:
    days = []
    for part in value.split(","):
        name = part.strip().lower()[:3]
        if name not in WEEKDAY_NAMES:
            raise click.BadParameter(f"unknown weekday '{part}'", param_hint="--days")
        days.append(WEEKDAY_NAMES.index(name))
    return days


@click.group()
def settings() -> None:
    """Score weights, working hours, auto-update and path filters."""


@settings.command(name="score")
@click.argument("project_id")
@click.option("--additions", type=int, default=None)
@click.option("--deletions", type=int, default=None)
@click.option("--commits", type=int, default=None)
@click.option("--pull-requests", "pull_requests", type=int, default=None)
@click.option("--comments", type=int, default=None)
@click.pass_context
@handle_errors
def settings_score(ctx: click.Context, project_id: str, **weights) -> None:
    """Show or change the score weights."""
    runtime = get_runtime(ctx)
    changes = {name: value for name, value in weights.items() if value is not None}
    if changes:
        current = runtime.projects.update_score_settings(project_id, **changes)
    else:
        current = runtime.projects.get_score_settings(project_id)
    print_table(
        "Score weights",
        ["Metric", "Weight"],
        [[name, getattr(current, name)] for name in SCORE_FIELDS],
    )


@settings.command(name="working-hours")
@click.argument("project_id")
@click.option("--start", "start_hour", type=int, default=None, help="First included hour (UTC)")
@click.option("--end", "end_hour", type=int, default=None, help="First excluded hour (UTC)")
@click.option("--days", default="mon,tue,wed,thu,fri", show_default=True)
@click.option("--clear", is_flag=True, help="Remove the working-hours filter")
@click.pass_context
@handle_errors
def settings_working_hours(
    ctx: click.Context, project_id: str, start_hour, end_hour, days: str, clear: bool
) -> None:
    """Show, set or clear the working-hours window applied to commits."""
    runtime = get_runtime(ctx)
    if clear:
        runtime.projects.clear_working_hours(project_id)
        click.echo("✅ Working-hours filter removed")
        return
    if start_hour is not None or end_hour is not None:
        if start_hour is None or end_hour is None:
            raise click.UsageError("--start and --end must be given together")
        runtime.projects.set_working_hours(
            project_id, start_hour, end_hour, _parse_weekdays(days)
        )

    current = runtime.projects.get_working_hours(project_id)
    if current is None:
        click.echo("No working-hours filter: every commit counts")
        return
    enabled = sorted(current.enabled_weekdays())
    click.echo(
        f"{current.start_hour:02d}:00-{current.end_hour:02d}:00 UTC on "
        + ",".join(WEEKDAY_NAMES[d] for d in enabled)
    )


@settings.command(name="auto-update")
@click.argument("project_id")
@click.option("--enable/--disable", default=None)
@click.option("--hour", type=int, default=None, help="Server-local hour (0-23)")
@click.pass_context
@handle_errors
def settings_auto_update(ctx: click.Context, project_id: str, enable, hour) -> None:
    """Show or change the hourly auto-update of a project."""
    runtime = get_runtime(ctx)
    current = runtime.projects.get_update_settings(project_id)
    if enable is not None or hour is not None:
        current = runtime.projects.set_update_settings(
            project_id,
            current.auto_update_enabled if enable is None else enable,
            current.auto_update_hour if hour is None else hour,
        )
    state = "enabled" if current.auto_update_enabled else "disabled"
    click.echo(f"Auto-update {state} at {current.auto_update_hour:02d}:00")


def _filter_command(name: str, kind: str):
    @settings.command(name=name, help=f"List, add or remove excluded {kind}s.")
    @click.argument("project_id")
    @click.option("--add", "to_add", multiple=True, help=f"{kind.capitalize()} to exclude")
    @click.option("--remove", "to_remove", multiple=True, help=f"{kind.capitalize()} to include again")
    @click.pass_context
    @handle_errors
    def command(ctx: click.Context, project_id: str, to_add, to_remove) -> None:
        projects = get_runtime(ctx).projects
        add = getattr(projects, f"add_excluded_{kind}")
        remove = getattr(projects, f"remove_excluded_{kind}")
        listing = getattr(projects, f"list_excluded_{kind}s")
        for value in to_add:
            add(project_id, value)
        for value in to_remove:
            remove(project_id, value)
        values = listing(project_id)
        click.echo("\n".join(values) if values else f"No excluded {kind}s")

    return command


settings_exclude_ext = _filter_command("exclude-ext", "extension")
settings_exclude_folder = _filter_command("exclude-folder", "folder")
