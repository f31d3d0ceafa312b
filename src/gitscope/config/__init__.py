"""Configuration loading for gitscope."""

from .errors import ConfigurationError, EnvironmentVariableError, InvalidValueError
from .loader import ConfigLoader
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

__all__ = [
    "Config",
    "ConfigLoader",
    "ConfigurationError",
    "DatabaseConfig",
    "EnvironmentVariableError",
    "GitHubConfig",
    "InvalidValueError",
    "LoggingConfig",
    "SchedulerConfig",
    "ServerConfig",
    "StatsConfig",
    "WorkerConfig",
    "WorkspaceConfig",
]
