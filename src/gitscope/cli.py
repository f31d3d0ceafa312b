"""Command-line interface for gitscope."""

import logging
import os
from pathlib import Path
from typing import Optional

import click

from ._version import __version__
from .cli_identity import register_identity_commands
from .cli_settings import register_settings_commands
from .cli_utils import console, format_timestamp, get_runtime, handle_errors, print_table
from .models.database import JobStatus
from .utils.date_utils import Grain

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="gitscope")
@click.help_option("-h", "--help")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    envvar="GITSCOPE_CONFIG",
    help="Path to YAML configuration file",
)
@click.option(
    "--log",
    type=click.Choice(["none", "DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (default: from configuration)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], log: Optional[str]) -> None:
    """gitscope - GitHub repository analytics for engineering teams.

    \b
    Typical flow:
      gitscope init-db
      gitscope project create "Platform team"
      gitscope repo add <project-id> acme/api
      gitscope enqueue update-all <project-id>
      gitscope serve
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["log"] = log


@cli.command(name="init-db")
@click.pass_context
@handle_errors
def init_db(ctx: click.Context) -> None:
    """Create the database schema."""
    runtime = get_runtime(ctx)
    runtime.db.create_all()
    click.echo(f"✅ Database ready at {runtime.db.url}")


@cli.command()
@click.pass_context
@handle_errors
def serve(ctx: click.Context) -> None:
    """Run the workers and the scheduler until SIGINT/SIGTERM."""
    runtime = get_runtime(ctx)
    workers = runtime.config.workers
    recovered = runtime.recover_abandoned()
    if recovered:
        click.echo(f"⚠️  Failed {len(recovered)} jobs left running by a previous process")
    click.echo(
        "🚀 Workers: "
        + ", ".join(f"{name}={count}" for name, count in sorted(workers.concurrency.items()))
    )
    runtime.supervisor.run_forever()
    click.echo("👋 Stopped")


# -- projects ---------------------------------------------------------------


@cli.group()
def project() -> None:
    """Create, list and delete projects."""


@project.command(name="create")
@click.argument("name")
@click.option("--owner", default=lambda: os.environ.get("USER", "local"), help="Owner id")
@click.pass_context
@handle_errors
def project_create(ctx: click.Context, name: str, owner: str) -> None:
    runtime = get_runtime(ctx)
    created = runtime.projects.create_project(name, owner)
    click.echo(f"✅ Created project {created.name}: {created.id}")


@project.command(name="list")
@click.option("--owner", default=None, help="Only projects of this owner")
@click.pass_context
@handle_errors
def project_list(ctx: click.Context, owner: Optional[str]) -> None:
    runtime = get_runtime(ctx)
    rows = [
        [p.id, p.name, p.owner_id, format_timestamp(p.created_at)]
        for p in runtime.projects.list_projects(owner)
    ]
    print_table("Projects", ["ID", "Name", "Owner", "Created"], rows)


@project.command(name="delete")
@click.argument("project_id")
@click.confirmation_option(prompt="Delete the project with its jobs and statistics?")
@click.pass_context
@handle_errors
def project_delete(ctx: click.Context, project_id: str) -> None:
    runtime = get_runtime(ctx)
    runtime.projects.delete_project(project_id)
    click.echo(f"🗑️  Deleted project {project_id}")


# -- repositories -----------------------------------------------------------


@cli.group()
def repo() -> None:
    """Attach GitHub repositories to projects."""


@repo.command(name="add")
@click.argument("project_id")
@click.argument("full_name", metavar="OWNER/REPO")
@click.option("--untracked", is_flag=True, help="Attach without tracking")
@click.pass_context
@handle_errors
def repo_add(ctx: click.Context, project_id: str, full_name: str, untracked: bool) -> None:
    """Look up OWNER/REPO on GitHub and attach it to a project."""
    runtime = get_runtime(ctx)
    info = runtime.github.get_repository(full_name)
    runtime.projects.upsert_github_repository(
        info.github_repo_id, info.full_name, info.clone_url, info.default_branch, info.private
    )
    membership = runtime.projects.add_repository(
        project_id, info.github_repo_id, tracked=not untracked
    )
    click.echo(f"✅ Attached {info.full_name}: {membership.id}")


@repo.command(name="import")
@click.argument("project_id")
@click.option("--track", is_flag=True, help="Track every imported repository")
@click.pass_context
@handle_errors
def repo_import(ctx: click.Context, project_id: str, track: bool) -> None:
    """Attach every repository visible to the configured token."""
    runtime = get_runtime(ctx)
    runtime.projects.get_project(project_id)
    repositories = runtime.github.list_user_repositories()
    for info in repositories:
        runtime.projects.upsert_github_repository(
            info.github_repo_id, info.full_name, info.clone_url, info.default_branch, info.private
        )
        runtime.projects.add_repository(project_id, info.github_repo_id, tracked=track)
    click.echo(f"✅ Imported {len(repositories)} repositories")


@repo.command(name="track")
@click.argument("project_repo_id")
@click.pass_context
@handle_errors
def repo_track(ctx: click.Context, project_repo_id: str) -> None:
    get_runtime(ctx).projects.set_tracked(project_repo_id, True)
    click.echo(f"✅ Tracking {project_repo_id}")


@repo.command(name="untrack")
@click.argument("project_repo_id")
@click.pass_context
@handle_errors
def repo_untrack(ctx: click.Context, project_repo_id: str) -> None:
    get_runtime(ctx).projects.set_tracked(project_repo_id, False)
    click.echo(f"✅ No longer tracking {project_repo_id}")


@repo.command(name="list")
@click.argument("project_id")
@click.option("--tracked-only", is_flag=True)
@click.pass_context
@handle_errors
def repo_list(ctx: click.Context, project_id: str, tracked_only: bool) -> None:
    runtime = get_runtime(ctx)
    rows = []
    for membership in runtime.projects.list_repositories(project_id, tracked_only):
        upstream = runtime.projects.get_github_repository(membership.github_repo_id)
        rows.append(
            [
                membership.id,
                upstream.full_name,
                "yes" if membership.is_tracked else "no",
                "yes" if membership.is_cloned else "no",
                format_timestamp(membership.last_fetched_at),
                format_timestamp(membership.last_analyzed_at),
            ]
        )
    print_table(
        "Repositories",
        ["ID", "Repository", "Tracked", "Cloned", "Fetched", "Analyzed"],
        rows,
    )


# -- jobs -------------------------------------------------------------------


@cli.group()
def enqueue() -> None:
    """Enqueue analysis jobs."""


@enqueue.command(name="clone")
@click.argument("project_id")
@click.argument("project_repo_id")
@click.pass_context
@handle_errors
def enqueue_clone(ctx: click.Context, project_id: str, project_repo_id: str) -> None:
    """Clone a repository and ingest its commits."""
    jobs = get_runtime(ctx).pipeline.enqueue_clone(project_id, project_repo_id)
    click.echo(f"📋 Enqueued {', '.join(f'{j.job_type}:{j.id}' for j in jobs)}")


@enqueue.command(name="fetch")
@click.argument("project_id")
@click.argument("project_repo_id")
@click.pass_context
@handle_errors
def enqueue_fetch(ctx: click.Context, project_id: str, project_repo_id: str) -> None:
    """Fetch pull requests and reviews from GitHub."""
    job = get_runtime(ctx).pipeline.enqueue_fetch_github(project_id, project_repo_id)
    click.echo(f"📋 Enqueued {job.job_type}:{job.id}")


@enqueue.command(name="analyze")
@click.argument("project_id")
@click.argument("project_repo_id")
@click.pass_context
@handle_errors
def enqueue_analyze(ctx: click.Context, project_id: str, project_repo_id: str) -> None:
    """Recompute the statistics of a repository."""
    job = get_runtime(ctx).pipeline.enqueue_analyze(project_id, project_repo_id)
    click.echo(f"📋 Enqueued {job.job_type}:{job.id}")


@enqueue.command(name="update-all")
@click.argument("project_id")
@click.pass_context
@handle_errors
def enqueue_update_all(ctx: click.Context, project_id: str) -> None:
    """Run the full clone, commit, pull request and stats chain on every tracked repository."""
    jobs = get_runtime(ctx).pipeline.enqueue_update_all(project_id)
    click.echo(f"📋 Enqueued {len(jobs)} jobs")


@cli.group()
def jobs() -> None:
    """Inspect and retry jobs."""


@jobs.command(name="list")
@click.argument("project_id")
@click.option(
    "--status",
    type=click.Choice([s.value for s in JobStatus]),
    default=None,
    help="Only jobs in this state",
)
@click.pass_context
@handle_errors
def jobs_list(ctx: click.Context, project_id: str, status: Optional[str]) -> None:
    runtime = get_runtime(ctx)
    rows = [
        [
            job.id,
            job.job_type,
            job.status,
            job.project_repository_id or "-",
            job.depends_on or "-",
            format_timestamp(job.created_at),
            job.error_message or "",
        ]
        for job in runtime.pipeline.jobs_for_project(
            project_id, JobStatus(status) if status else None
        )
    ]
    print_table(
        "Jobs", ["ID", "Type", "Status", "Repository", "Depends on", "Created", "Error"], rows
    )


@jobs.command(name="retry")
@click.argument("job_id")
@click.pass_context
@handle_errors
def jobs_retry(ctx: click.Context, job_id: str) -> None:
    """Replace a failed job, and the jobs waiting on it, with new pending jobs."""
    created = get_runtime(ctx).pipeline.retry_job(job_id)
    click.echo(f"🔁 Created {len(created)} replacement jobs: {created[0].id}")


# -- github -----------------------------------------------------------------


@cli.group()
def github() -> None:
    """Check the GitHub token and look up accounts."""


@github.command(name="rate-limit")
@click.pass_context
@handle_errors
def github_rate_limit(ctx: click.Context) -> None:
    """Show the remaining REST quota of the configured token."""
    quota = get_runtime(ctx).github.get_rate_limit()
    click.echo(
        f"{quota.remaining}/{quota.limit} requests left, resets {format_timestamp(quota.reset_at)}"
    )


@github.command(name="user")
@click.argument("login")
@click.pass_context
@handle_errors
def github_user(ctx: click.Context, login: str) -> None:
    """Show the GitHub account LOGIN."""
    user = get_runtime(ctx).github.get_user(login)
    print_table(
        user.login,
        ["Id", "Type", "Name", "Email"],
        [[user.github_user_id, user.type, user.name or "-", user.email or "-"]],
    )


# -- statistics -------------------------------------------------------------


@cli.command()
@click.argument("project_id")
@click.option(
    "--grain",
    type=click.Choice([g.value for g in Grain]),
    default=Grain.ALL.value,
    help="Period granularity",
)
@click.option("--key", default=None, help="Period key, e.g. 2024-03-11, 2024-W11, 2024-03, 2024")
@click.option("--repository", "repository_id", default=None, help="Only this project repository")
@click.option("--periods", is_flag=True, help="List the periods that have data")
@click.option("--person", default=None, help="Show the detailed view of one account (username or id)")
@click.pass_context
@handle_errors
def stats(
    ctx: click.Context,
    project_id: str,
    grain: str,
    key: Optional[str],
    repository_id: Optional[str],
    periods: bool,
    person: Optional[str],
) -> None:
    """Show stored per-person statistics of a project."""
    runtime = get_runtime(ctx)
    if person:
        _print_person_report(runtime.pipeline.person_report(project_id, person))
        return
    if periods:
        for period in runtime.pipeline.available_periods(project_id, grain):
            click.echo(period)
        return

    totals = runtime.pipeline.read_stats(project_id, grain, key, repository_id)
    if not totals:
        console.print("[yellow]No statistics for this period[/yellow]")
        return
    print_table(
        f"Statistics ({grain}{' ' + key if key else ''})",
        ["Account", "Additions", "Deletions", "Commits", "PRs", "Reviews", "Comments", "Score"],
        [
            [
                t.username,
                t.additions,
                t.deletions,
                t.commits,
                t.prs_authored,
                t.prs_reviewed,
                t.comments,
                t.score,
            ]
            for t in totals
        ],
    )


def _fmt(value: Optional[float], suffix: str = "") -> str:
    return "n/a" if value is None else f"{value:.1f}{suffix}"


def _print_person_report(report) -> None:
    details = report.details
    averages = report.averages
    console.print(f"[bold]{report.username}[/bold] ({report.github_person_id})")
    if details.first_activity is None:
        console.print("[yellow]No statistics for this account[/yellow]")
        return

    click.echo(
        f"Active {details.first_activity} → {details.last_activity} ({details.active_days} days), "
        f"peak month {details.peak_month or 'n/a'}, consistency {details.consistency}%"
    )
    click.echo(
        f"Commit size {_fmt(details.commit_size)} lines, refactor ratio "
        f"{_fmt(details.refactor_ratio, '%')}, engagement {_fmt(details.engagement)}/month"
    )
    print_table(
        "Totals and weekly averages",
        ["", "Commits", "Additions", "Deletions", "PRs", "Comments", "Score"],
        [
            [
                "total",
                details.commits,
                details.additions,
                details.deletions,
                details.pull_requests,
                details.comments,
                details.score,
            ],
            [
                "per week",
                _fmt(averages.commits),
                _fmt(averages.additions),
                _fmt(averages.deletions),
                _fmt(averages.pull_requests),
                _fmt(averages.comments),
                "",
            ],
        ],
    )
    print_table(
        "Score by month", ["Month", "Score"], [[m.month, m.score] for m in report.score_history]
    )
    print_table(
        "Top repositories",
        ["Repository", "Score"],
        [[r.name, r.score] for r in report.top_repositories],
    )
    print_table(
        "Top languages",
        ["Language", "Changed lines"],
        [[share.language, share.changes] for share in report.top_languages],
    )
    print_table(
        "Largest commits",
        ["SHA", "Repository", "Date", "+", "-", "Message"],
        [
            [c.sha[:8], c.repository, c.committed_at.date(), c.additions, c.deletions, c.message]
            for c in report.top_commits
        ],
    )
    print_table(
        "Most discussed pull requests",
        ["Repository", "#", "Title", "State", "Comments", "Created"],
        [
            [p.repository, p.number, p.title, p.state, p.comments, p.created_at.date()]
            for p in report.top_pull_requests
        ],
    )


register_identity_commands(cli)
register_settings_commands(cli)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
