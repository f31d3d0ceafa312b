"""Identity CLI commands: email merges and account associations."""

import logging
from typing import Optional

import click

from .cli_utils import format_timestamp, get_runtime, handle_errors, print_table

logger = logging.getLogger(__name__)


def register_identity_commands(cli_group: click.Group) -> None:
    """Register the ``identity`` group on the main CLI group."""
    cli_group.add_command(identity)


@click.group()
def identity() -> None:
    """Merge commit emails and bind them to GitHub accounts."""


@identity.command(name="merge")
@click.argument("project_id")
@click.argument("source_email")
@click.argument("target_email")
@click.pass_context
@handle_errors
def identity_merge(ctx: click.Context, project_id: str, source_email: str, target_email: str) -> None:
    """Count SOURCE_EMAIL commits as TARGET_EMAIL within a project.

    \b
    EXAMPLES:
      gitscope identity merge <project-id> john@gmail.com john@work.com
    """
    merge = get_runtime(ctx).identity.create_merge(project_id, source_email, target_email)
    click.echo(f"✅ Merged {merge.source_email} into {merge.target_email}")


@identity.command(name="unmerge")
@click.argument("project_id")
@click.argument("source_email")
@click.pass_context
@handle_errors
def identity_unmerge(ctx: click.Context, project_id: str, source_email: str) -> None:
    if get_runtime(ctx).identity.delete_merge(project_id, source_email):
        click.echo(f"✅ Removed merge of {source_email}")
    else:
        click.echo(f"⚠️  No merge for {source_email}")


@identity.command(name="associate")
@click.argument("project_id")
@click.argument("username")
@click.argument("email")
@click.pass_context
@handle_errors
def identity_associate(ctx: click.Context, project_id: str, username: str, email: str) -> None:
    """Bind the GitHub account USERNAME to the person behind EMAIL."""
    get_runtime(ctx).identity.associate_by_username(project_id, username, email)
    click.echo(f"✅ {username} is now {email}")


@identity.command(name="dissociate")
@click.argument("project_id")
@click.argument("username")
@click.pass_context
@handle_errors
def identity_dissociate(ctx: click.Context, project_id: str, username: str) -> None:
    runtime = get_runtime(ctx)
    accounts = {a.username.lower(): a for a in runtime.identity.platform_accounts(project_id)}
    account = accounts.get(username.lower())
    if account is None or not runtime.identity.dissociate(project_id, account.github_person_id):
        click.echo(f"⚠️  {username} has no association")
        return
    click.echo(f"✅ Removed association of {username}")


@identity.command(name="emails")
@click.argument("project_id")
@click.pass_context
@handle_errors
def identity_emails(ctx: click.Context, project_id: str) -> None:
    """List commit emails with merges applied."""
    rows = [
        [
            item.email,
            item.commit_count,
            format_timestamp(item.first_commit),
            format_timestamp(item.last_commit),
            ", ".join(item.merged_emails),
            "yes" if item.bound else "",
        ]
        for item in get_runtime(ctx).identity.email_overview(project_id)
    ]
    print_table("Emails", ["Email", "Commits", "First", "Last", "Merged", "Bound"], rows)


@identity.command(name="accounts")
@click.argument("project_id")
@click.pass_context
@handle_errors
def identity_accounts(ctx: click.Context, project_id: str) -> None:
    """List GitHub accounts seen on the project's pull requests."""
    rows = [
        [account.username, account.type, account.bound_email or "-"]
        for account in get_runtime(ctx).identity.platform_accounts(project_id)
    ]
    print_table("Accounts", ["Username", "Type", "Email"], rows)


@identity.command(name="suggest")
@click.argument("project_id")
@click.argument("username")
@click.option("--limit", type=int, default=None, help="Maximum number of suggestions")
@click.pass_context
@handle_errors
def identity_suggest(ctx: click.Context, project_id: str, username: str, limit: Optional[int]) -> None:
    """Rank unbound emails by similarity to USERNAME."""
    rows = [
        [suggestion.email, f"{suggestion.score:.3f}"]
        for suggestion in get_runtime(ctx).identity.suggest_emails(project_id, username, limit)
    ]
    print_table(f"Suggestions for {username}", ["Email", "Score"], rows)
