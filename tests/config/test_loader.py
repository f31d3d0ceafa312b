"""Tests for configuration loading."""

import os
import textwrap
from pathlib import Path

import pytest

from gitscope.config.errors import (
    ConfigurationError,
    EnvironmentVariableError,
    InvalidValueError,
)
from gitscope.config.loader import WORKER_TYPES, ConfigLoader


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate each test from the caller's environment and working directory."""
    for name in ConfigLoader.ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    for worker_type in WORKER_TYPES:
        monkeypatch.delenv(f"{worker_type.upper()}_WORKERS", raising=False)
    monkeypatch.chdir(tmp_path)


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content))
    return path


class TestDefaults:
    def test_without_a_file(self, tmp_path):
        config = ConfigLoader.load()

        assert config.config_path is None
        assert config.database.path == tmp_path / "gitscope.db"
        assert config.workspace.path == tmp_path / "workspace"
        assert config.workers.concurrency == {"clone": 2, "commit": 4, "pull_request": 2, "stats": 4}
        assert config.workers.hard_timeout == config.workers.soft_timeout * 2
        assert config.scheduler.enabled is True
        assert config.stats.max_commit_changes == 20000
        assert config.logging.level == "INFO"

    def test_empty_file(self, tmp_path):
        path = _write(tmp_path / "gitscope.yaml", "")
        assert ConfigLoader.load(path).config_path == path.resolve()


class TestYaml:
    def test_sections_and_relative_paths(self, tmp_path):
        config_dir = tmp_path / "etc"
        config_dir.mkdir()
        path = _write(
            config_dir / "gitscope.yaml",
            """
            database:
              path: data/gitscope.db
            workspace:
              path: /srv/repos
              clone_timeout: 60
            github:
              base_url: https://github.example.com/api/v3/
              per_page: 50
            workers:
              concurrency:
                commit: 8
              soft_timeout: 120
            scheduler:
              enabled: "no"
            stats:
              exclude_merge_commits: false
            logging:
              level: debug
            """,
        )

        config = ConfigLoader.load(path)

        assert config.database.path == config_dir.resolve() / "data" / "gitscope.db"
        assert config.workspace.path == Path("/srv/repos")
        assert config.workspace.clone_timeout == 60
        assert config.github.base_url == "https://github.example.com/api/v3"
        assert config.github.per_page == 50
        assert config.workers.concurrency["commit"] == 8
        assert config.workers.concurrency["clone"] == 2
        assert config.workers.hard_timeout == 240
        assert config.scheduler.enabled is False
        assert config.stats.exclude_merge_commits is False
        assert config.logging.level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader.load(tmp_path / "missing.yaml")

    def test_invalid_yaml_reports_location(self, tmp_path):
        path = _write(tmp_path / "bad.yaml", "database:\n  path: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ConfigLoader.load(path)

    def test_top_level_must_be_a_mapping(self, tmp_path):
        path = _write(tmp_path / "list.yaml", "- one\n- two\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigLoader.load(path)

    @pytest.mark.parametrize(
        "content, key",
        [
            ("server:\n  port: 70000\n", "server.port"),
            ("github:\n  per_page: 0\n", "github.per_page"),
            ("workers:\n  concurrency:\n    indexing: 2\n", "workers.concurrency.indexing"),
            ("workers:\n  concurrency:\n    clone: many\n", "workers.concurrency.clone"),
            ("scheduler:\n  enabled: maybe\n", "scheduler.enabled"),
            ("logging:\n  level: loud\n", "logging.level"),
        ],
    )
    def test_invalid_values(self, tmp_path, content, key):
        path = _write(tmp_path / "gitscope.yaml", content)

        with pytest.raises(InvalidValueError) as excinfo:
            ConfigLoader.load(path)
        assert f"{excinfo.value.section}.{excinfo.value.key}" == key


class TestEnvironment:
    def test_references_and_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GITSCOPE_TEST_TOKEN", "ghp_test")
        path = _write(
            tmp_path / "gitscope.yaml",
            """
            github:
              token: ${GITSCOPE_TEST_TOKEN}
              client_id: ${GITSCOPE_TEST_CLIENT:-fallback}
            """,
        )

        config = ConfigLoader.load(path)

        assert config.github.token == "ghp_test"
        assert config.github.client_id == "fallback"

    def test_missing_reference(self, tmp_path):
        path = _write(tmp_path / "gitscope.yaml", "github:\n  token: ${GITSCOPE_UNSET_VAR}\n")

        with pytest.raises(EnvironmentVariableError) as excinfo:
            ConfigLoader.load(path)
        assert excinfo.value.env_var == "GITSCOPE_UNSET_VAR"

    def test_overrides_win_over_the_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GITSCOPE_DATABASE_PATH", "/var/lib/gitscope.db")
        monkeypatch.setenv("GITSCOPE_SCHEDULER_TICK", "15")
        monkeypatch.setenv("STATS_WORKERS", "9")
        path = _write(tmp_path / "gitscope.yaml", "database:\n  path: local.db\n")

        config = ConfigLoader.load(path)

        assert config.database.path == Path("/var/lib/gitscope.db")
        assert config.scheduler.tick_interval == 15.0
        assert config.workers.concurrency["stats"] == 9

    def test_dotenv_next_to_the_config(self, tmp_path):
        (tmp_path / ".env").write_text("GITSCOPE_DOTENV_TOKEN=from-dotenv\n")
        path = _write(tmp_path / "gitscope.yaml", "github:\n  token: ${GITSCOPE_DOTENV_TOKEN}\n")

        try:
            config = ConfigLoader.load(path)
        finally:
            os.environ.pop("GITSCOPE_DOTENV_TOKEN", None)

        assert config.github.token == "from-dotenv"
