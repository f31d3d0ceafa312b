"""Tests for the click CLI."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from click.testing import CliRunner

from gitscope.cli import cli
from gitscope.config.loader import ConfigLoader
from gitscope.models.database import Database, Job, JobStatus, JobType
from gitscope.storage.activity_store import ActivityStore
from gitscope.records import RateLimitInfo, RepositoryInfo, UserInfo
from gitscope.supervisor import ShutdownSupervisor


@pytest.fixture
def runner(tmp_path, monkeypatch):
    for name in ConfigLoader.ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("GITSCOPE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GITSCOPE_DATABASE_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("GITSCOPE_WORKSPACE", str(tmp_path / "workspace"))
    monkeypatch.setenv("COLUMNS", "200")
    return CliRunner()


@pytest.fixture
def fake_github(monkeypatch):
    github = Mock()
    github.get_repository.return_value = RepositoryInfo(
        github_repo_id=4242,
        full_name="acme/api",
        clone_url="https://github.com/acme/api.git",
        default_branch="main",
    )
    monkeypatch.setattr("gitscope.runtime.GitHubFacade", lambda **kwargs: github)
    return github


def invoke(runner, *args):
    return runner.invoke(cli, ["--log", "none", *args], obj={})


def _create_project(runner, name="Platform"):
    result = invoke(runner, "project", "create", name, "--owner", "owner-1")
    assert result.exit_code == 0, result.output
    return result.output.strip().rsplit(": ", 1)[-1]


class TestProjects:
    def test_init_db(self, runner, tmp_path):
        result = invoke(runner, "init-db")

        assert result.exit_code == 0, result.output
        assert "Database ready" in result.output
        assert (tmp_path / "cli.db").exists()

    def test_create_and_list(self, runner):
        project_id = _create_project(runner)

        result = invoke(runner, "project", "list")

        assert result.exit_code == 0, result.output
        assert "Platform" in result.output
        assert len(project_id) == 36

    def test_delete_asks_for_confirmation(self, runner):
        project_id = _create_project(runner)

        aborted = runner.invoke(
            cli, ["--log", "none", "project", "delete", project_id], input="n\n", obj={}
        )
        assert aborted.exit_code != 0

        result = invoke(runner, "project", "delete", project_id, "--yes")
        assert result.exit_code == 0, result.output
        assert "Platform" not in invoke(runner, "project", "list").output


class TestRepositoriesAndJobs:
    def test_add_repository_and_enqueue(self, runner, fake_github):
        project_id = _create_project(runner)

        added = invoke(runner, "repo", "add", project_id, "acme/api")
        assert added.exit_code == 0, added.output
        membership_id = added.output.strip().rsplit(": ", 1)[-1]
        fake_github.get_repository.assert_called_once_with("acme/api")

        enqueued = invoke(runner, "enqueue", "clone", project_id, membership_id)
        assert enqueued.exit_code == 0, enqueued.output
        assert "clone:" in enqueued.output and "commit:" in enqueued.output

        duplicate = invoke(runner, "enqueue", "clone", project_id, membership_id)
        assert duplicate.exit_code == 1
        assert "[conflict]" in duplicate.output

        listed = invoke(runner, "jobs", "list", project_id, "--status", "pending")
        assert listed.exit_code == 0, listed.output
        assert "clone" in listed.output

    def test_analyze_without_identities(self, runner, fake_github):
        project_id = _create_project(runner)
        added = invoke(runner, "repo", "add", project_id, "acme/api")
        membership_id = added.output.strip().rsplit(": ", 1)[-1]

        result = invoke(runner, "enqueue", "analyze", project_id, membership_id)

        assert result.exit_code == 1
        assert "[no_identities]" in result.output

    def test_serve_fails_jobs_left_running(self, runner, fake_github, tmp_path, monkeypatch):
        project_id = _create_project(runner)
        added = invoke(runner, "repo", "add", project_id, "acme/api")
        membership_id = added.output.strip().rsplit(": ", 1)[-1]
        assert invoke(runner, "enqueue", "clone", project_id, membership_id).exit_code == 0
        db = Database(tmp_path / "cli.db")
        with db.session_scope() as session:
            session.query(Job).filter(Job.job_type == JobType.CLONE.value).update(
                {
                    Job.status: JobStatus.IN_PROGRESS.value,
                    Job.started_at: datetime(2024, 3, 8, 9, 0, tzinfo=timezone.utc),
                },
                synchronize_session=False,
            )
        db.dispose()
        monkeypatch.setattr(ShutdownSupervisor, "run_forever", lambda self: None)

        result = invoke(runner, "serve")

        assert result.exit_code == 0, result.output
        assert "Failed 1 jobs left running" in result.output
        failed = invoke(runner, "jobs", "list", project_id, "--status", "failed")
        assert "clone" in failed.output

    def test_unknown_project(self, runner):
        result = invoke(runner, "enqueue", "update-all", "missing")

        assert result.exit_code == 1
        assert "[not_found]" in result.output


class TestGitHub:
    def test_rate_limit(self, runner, fake_github):
        fake_github.get_rate_limit.return_value = RateLimitInfo(
            limit=5000, remaining=4321, reset_at=datetime(2024, 3, 11, 10, 0, tzinfo=timezone.utc)
        )

        result = invoke(runner, "github", "rate-limit")

        assert result.exit_code == 0, result.output
        assert "4321/5000 requests left, resets 2024-03-11 10:00" in result.output

    def test_user(self, runner, fake_github):
        fake_github.get_user.return_value = UserInfo(
            github_user_id=99, login="octocat", type="User", name="Mona"
        )

        result = invoke(runner, "github", "user", "octocat")

        assert result.exit_code == 0, result.output
        fake_github.get_user.assert_called_once_with("octocat")
        assert "Mona" in result.output and "99" in result.output


class TestStatsAndSettings:
    def test_empty_statistics(self, runner):
        project_id = _create_project(runner)

        result = invoke(runner, "stats", project_id)

        assert result.exit_code == 0, result.output
        assert "No statistics" in result.output

    def test_person_view(self, runner, tmp_path):
        project_id = _create_project(runner)
        db = Database(tmp_path / "cli.db")
        ActivityStore(db).get_or_create_github_person(UserInfo(github_user_id=7, login="octocat"))
        db.dispose()

        result = invoke(runner, "stats", project_id, "--person", "octocat")
        missing = invoke(runner, "stats", project_id, "--person", "ghost")

        assert result.exit_code == 0, result.output
        assert "octocat" in result.output
        assert "No statistics for this account" in result.output
        assert missing.exit_code == 1
        assert "[not_found]" in missing.output

    def test_invalid_period_key(self, runner):
        project_id = _create_project(runner)

        result = invoke(runner, "stats", project_id, "--grain", "month", "--key", "2024-13")

        assert result.exit_code == 1
        assert "[invalid_input]" in result.output

    def test_working_hours_and_filters(self, runner):
        project_id = _create_project(runner)

        hours = invoke(runner, "settings", "working-hours", project_id, "--start", "9", "--end", "18")
        assert hours.exit_code == 0, hours.output
        assert "09:00-18:00 UTC on mon,tue,wed,thu,fri" in hours.output

        excluded = invoke(runner, "settings", "exclude-ext", project_id, "--add", "md", "--add", ".LOCK")
        assert excluded.exit_code == 0, excluded.output
        assert excluded.output.split() == [".lock", ".md"]

    def test_auto_update(self, runner):
        project_id = _create_project(runner)

        result = invoke(runner, "settings", "auto-update", project_id, "--enable", "--hour", "3")

        assert result.exit_code == 0, result.output
        assert "Auto-update enabled at 03:00" in result.output

    def test_bad_weekday(self, runner):
        project_id = _create_project(runner)

        result = invoke(
            runner,
            "settings",
            "working-hours",
            project_id,
            "--start",
            "9",
            "--end",
            "18",
            "--days",
            "funday",
        )

        assert result.exit_code == 2
