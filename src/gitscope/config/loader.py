"""YAML configuration loading and environment variable expansion.

Precedence, lowest first: dataclass defaults, the YAML file, then the
process environment (after ``.env`` files have been loaded into it).
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError, EnvironmentVariableError, InvalidValueError, handle_yaml_error
from .schema import (
    Config,
    DatabaseConfig,
    GitHubConfig,
    LoggingConfig,
    SchedulerConfig,
    ServerConfig,
    StatsConfig,
    WorkerConfig,
    WorkspaceConfig,
)

logger = logging.getLogger(__name__)

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

WORKER_TYPES = ("clone", "commit", "pull_request", "stats")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigLoader:
    """Load and validate configuration from YAML files and the environment."""

    # Environment variable -> (section, key)
    ENV_OVERRIDES: dict[str, tuple[str, str]] = {
        "GITSCOPE_DATABASE_PATH": ("database", "path"),
        "GITSCOPE_WORKSPACE": ("workspace", "path"),
        "GITSCOPE_LOG_LEVEL": ("logging", "level"),
        "GITSCOPE_SERVER_PORT": ("server", "port"),
        "GITSCOPE_SESSION_SECRET": ("server", "session_secret"),
        "GITSCOPE_SCHEDULER_TICK": ("scheduler", "tick_interval"),
        "GITHUB_TOKEN": ("github", "token"),
        "GITHUB_CLIENT_ID": ("github", "client_id"),
        "GITHUB_CLIENT_SECRET": ("github", "client_secret"),
        "GITHUB_CALLBACK_URL": ("github", "callback_url"),
    }

    @classmethod
    def load(cls, config_path: Optional[Union[Path, str]] = None) -> Config:
        """Load configuration.

        Args:
            config_path: Optional path to a YAML configuration file

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If the file cannot be read or a value is invalid
        """
        path = Path(config_path).expanduser().resolve() if config_path else None
        cls._load_environment(path)

        data: dict[str, Any] = {}
        if path is not None:
            data = cls._load_yaml(path)
            data = cls._expand_env(data, path)

        cls._apply_env_overrides(data)
        base_dir = path.parent if path is not None else Path.cwd()

        config = Config(
            server=cls._process_server_config(data.get("server") or {}, path),
            database=cls._process_database_config(data.get("database") or {}, base_dir, path),
            github=cls._process_github_config(data.get("github") or {}, path),
            workspace=cls._process_workspace_config(data.get("workspace") or {}, base_dir, path),
            workers=cls._process_worker_config(data.get("workers") or {}, path),
            scheduler=cls._process_scheduler_config(data.get("scheduler") or {}, path),
            stats=cls._process_stats_config(data.get("stats") or {}, path),
            logging=cls._process_logging_config(data.get("logging") or {}, path),
            config_path=path,
        )
        logger.debug(f"Configuration loaded from {path or 'environment'}")
        return config

    @classmethod
    def _load_environment(cls, config_path: Optional[Path]) -> None:
        """Load ``.env`` files next to the config file and in the CWD.

        Values already present in the process environment win.
        """
        search_dirs: list[Path] = []
        if config_path is not None:
            search_dirs.append(config_path.parent)
        cwd = Path.cwd()
        if cwd not in search_dirs:
            search_dirs.append(cwd)

        for directory in search_dirs:
            env_file = directory / ".env"
            if env_file.exists():
                load_dotenv(env_file, override=False)
                logger.debug(f"Loaded environment variables from {env_file}")

    @staticmethod
    def _load_yaml(config_path: Path) -> dict[str, Any]:
        if not config_path.exists():
            raise ConfigurationError("Configuration file not found", config_path)
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise handle_yaml_error(e, config_path) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError("Top level of the configuration must be a mapping", config_path)
        return data

    @classmethod
    def _expand_env(cls, value: Any, config_path: Optional[Path]) -> Any:
        """Recursively expand ``${VAR}`` and ``${VAR:-default}`` references."""
        if isinstance(value, dict):
            return {k: cls._expand_env(v, config_path) for k, v in value.items()}
        if isinstance(value, list):
            return [cls._expand_env(item, config_path) for item in value]
        if not isinstance(value, str):
            return value

        def _replace(match: "re.Match[str]") -> str:
            name, default = match.group(1), match.group(2)
            resolved = os.environ.get(name)
            if resolved is None or resolved == "":
                if default is None:
                    raise EnvironmentVariableError(name, config_path)
                return default
            return resolved

        return _ENV_REF.sub(_replace, value)

    @classmethod
    def _apply_env_overrides(cls, data: dict[str, Any]) -> None:
        for env_var, (section, key) in cls.ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                data.setdefault(section, {})
                if data[section] is None:
                    data[section] = {}
                data[section][key] = value

        for worker_type in WORKER_TYPES:
            value = os.environ.get(f"{worker_type.upper()}_WORKERS")
            if value:
                workers = data.setdefault("workers", {}) or {}
                data["workers"] = workers
                concurrency = workers.setdefault("concurrency", {}) or {}
                workers["concurrency"] = concurrency
                concurrency[worker_type] = value

    # -- value coercion -------------------------------------------------

    @staticmethod
    def _coerce(
        section: str,
        key: str,
        value: Any,
        convert: Callable[[Any], Any],
        config_path: Optional[Path],
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ) -> Any:
        try:
            result = convert(value)
        except (TypeError, ValueError) as e:
            raise InvalidValueError(section, key, value, str(e), config_path) from e
        if minimum is not None and result < minimum:
            raise InvalidValueError(section, key, value, f"must be >= {minimum}", config_path)
        if maximum is not None and result > maximum:
            raise InvalidValueError(section, key, value, f"must be <= {maximum}", config_path)
        return result

    @staticmethod
    def _to_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
        if isinstance(value, int):
            return bool(value)
        raise ValueError("expected a boolean")

    @staticmethod
    def _resolve_path(value: Any, base_dir: Path) -> Path:
        path = Path(str(value)).expanduser()
        if "://" in str(value):
            return Path(str(value))
        return path if path.is_absolute() else base_dir / path

    # -- section processors -----------------------------------------------

    @classmethod
    def _process_server_config(cls, data: dict[str, Any], path: Optional[Path]) -> ServerConfig:
        defaults = ServerConfig()
        return ServerConfig(
            port=cls._coerce("server", "port", data.get("port", defaults.port), int, path, 1, 65535),
            session_secret=data.get("session_secret", defaults.session_secret),
        )

    @classmethod
    def _process_database_config(
        cls, data: dict[str, Any], base_dir: Path, path: Optional[Path]
    ) -> DatabaseConfig:
        defaults = DatabaseConfig()
        raw = data.get("path", defaults.path)
        db_path: Union[Path, str]
        if "://" in str(raw):
            db_path = str(raw)
        else:
            db_path = cls._resolve_path(raw, base_dir)
        return DatabaseConfig(
            path=db_path,  # type: ignore[arg-type]
            echo=cls._coerce("database", "echo", data.get("echo", defaults.echo), cls._to_bool, path),
        )

    @classmethod
    def _process_github_config(cls, data: dict[str, Any], path: Optional[Path]) -> GitHubConfig:
        defaults = GitHubConfig()
        return GitHubConfig(
            token=data.get("token") or None,
            client_id=data.get("client_id") or None,
            client_secret=data.get("client_secret") or None,
            callback_url=data.get("callback_url") or None,
            base_url=str(data.get("base_url", defaults.base_url)).rstrip("/"),
            request_timeout=cls._coerce(
                "github", "request_timeout", data.get("request_timeout", defaults.request_timeout),
                int, path, 1,
            ),
            max_retries=cls._coerce(
                "github", "max_retries", data.get("max_retries", defaults.max_retries), int, path, 0
            ),
            backoff_base=cls._coerce(
                "github", "backoff_base", data.get("backoff_base", defaults.backoff_base),
                float, path, 0,
            ),
            backoff_cap=cls._coerce(
                "github", "backoff_cap", data.get("backoff_cap", defaults.backoff_cap),
                float, path, 0,
            ),
            per_page=cls._coerce(
                "github", "per_page", data.get("per_page", defaults.per_page), int, path, 1, 100
            ),
        )

    @classmethod
    def _process_workspace_config(
        cls, data: dict[str, Any], base_dir: Path, path: Optional[Path]
    ) -> WorkspaceConfig:
        defaults = WorkspaceConfig()
        return WorkspaceConfig(
            path=cls._resolve_path(data.get("path", defaults.path), base_dir),
            clone_timeout=cls._coerce(
                "workspace", "clone_timeout", data.get("clone_timeout", defaults.clone_timeout),
                int, path, 1,
            ),
            clone_retries=cls._coerce(
                "workspace", "clone_retries", data.get("clone_retries", defaults.clone_retries),
                int, path, 0,
            ),
        )

    @classmethod
    def _process_worker_config(cls, data: dict[str, Any], path: Optional[Path]) -> WorkerConfig:
        defaults = WorkerConfig()
        concurrency = dict(defaults.concurrency)
        raw_concurrency = data.get("concurrency") or {}
        if not isinstance(raw_concurrency, dict):
            raise InvalidValueError(
                "workers", "concurrency", raw_concurrency, "expected a mapping", path
            )
        for worker_type, value in raw_concurrency.items():
            if worker_type not in WORKER_TYPES:
                raise InvalidValueError(
                    "workers", f"concurrency.{worker_type}", value,
                    f"unknown worker type, expected one of {', '.join(WORKER_TYPES)}", path,
                )
            concurrency[worker_type] = cls._coerce(
                "workers", f"concurrency.{worker_type}", value, int, path, 1
            )

        return WorkerConfig(
            concurrency=concurrency,
            poll_interval=cls._coerce(
                "workers", "poll_interval", data.get("poll_interval", defaults.poll_interval),
                float, path, 0.01,
            ),
            soft_timeout=cls._coerce(
                "workers", "soft_timeout", data.get("soft_timeout", defaults.soft_timeout),
                float, path, 1,
            ),
            shutdown_deadline=cls._coerce(
                "workers", "shutdown_deadline",
                data.get("shutdown_deadline", defaults.shutdown_deadline), float, path, 0,
            ),
        )

    @classmethod
    def _process_scheduler_config(
        cls, data: dict[str, Any], path: Optional[Path]
    ) -> SchedulerConfig:
        defaults = SchedulerConfig()
        return SchedulerConfig(
            enabled=cls._coerce(
                "scheduler", "enabled", data.get("enabled", defaults.enabled), cls._to_bool, path
            ),
            tick_interval=cls._coerce(
                "scheduler", "tick_interval", data.get("tick_interval", defaults.tick_interval),
                float, path, 1,
            ),
        )

    @classmethod
    def _process_stats_config(cls, data: dict[str, Any], path: Optional[Path]) -> StatsConfig:
        defaults = StatsConfig()
        return StatsConfig(
            exclude_merge_commits=cls._coerce(
                "stats", "exclude_merge_commits",
                data.get("exclude_merge_commits", defaults.exclude_merge_commits),
                cls._to_bool, path,
            ),
            max_commit_changes=cls._coerce(
                "stats", "max_commit_changes",
                data.get("max_commit_changes", defaults.max_commit_changes), int, path, 0,
            ),
            max_deletion_only=cls._coerce(
                "stats", "max_deletion_only",
                data.get("max_deletion_only", defaults.max_deletion_only), int, path, 0,
            ),
        )

    @classmethod
    def _process_logging_config(cls, data: dict[str, Any], path: Optional[Path]) -> LoggingConfig:
        level = str(data.get("level", LoggingConfig().level)).upper()
        if level not in LOG_LEVELS:
            raise InvalidValueError(
                "logging", "level", level, f"expected one of {', '.join(LOG_LEVELS)}", path
            )
        return LoggingConfig(level=level)
