"""Configuration dataclasses and their defaults."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class ServerConfig:
    """Settings consumed by the (external) HTTP layer."""

    port: int = 8080
    session_secret: Optional[str] = None


@dataclass
class DatabaseConfig:
    """Database location."""

    path: Path = Path("gitscope.db")
    echo: bool = False


@dataclass
class GitHubConfig:
    """GitHub API access and retry policy."""

    token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    callback_url: Optional[str] = None
    base_url: str = "https://api.github.com"
    request_timeout: int = 30
    max_retries: int = 5
    backoff_base: float = 1.0
    backoff_cap: float = 60.0
    per_page: int = 100


@dataclass
class WorkspaceConfig:
    """Location of shared working copies and clone behaviour."""

    path: Path = Path("workspace")
    clone_timeout: int = 300
    clone_retries: int = 2


def _default_concurrency() -> dict[str, int]:
    return {"clone": 2, "commit": 4, "pull_request": 2, "stats": 4}


@dataclass
class WorkerConfig:
    """Worker pool sizing and timeouts."""

    concurrency: dict[str, int] = field(default_factory=_default_concurrency)
    poll_interval: float = 2.0
    soft_timeout: float = 1800.0
    shutdown_deadline: float = 2.0

    @property
    def hard_timeout(self) -> float:
        return self.soft_timeout * 2


@dataclass
class SchedulerConfig:
    """Periodic auto-update timer."""

    enabled: bool = True
    tick_interval: float = 60.0


@dataclass
class StatsConfig:
    """Commit filtering applied by the statistics engine."""

    exclude_merge_commits: bool = True
    max_commit_changes: int = 20000
    max_deletion_only: int = 5000


@dataclass
class LoggingConfig:
    """Log level applied by the CLI."""

    level: str = "INFO"


@dataclass
class Config:
    """Complete gitscope configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    config_path: Optional[Path] = None
