"""Configuration error types."""

from pathlib import Path
from typing import Any, Optional


class ConfigurationError(Exception):
    """Base exception for configuration problems."""

    def __init__(self, message: str, config_path: Optional[Path] = None):
        self.config_path = config_path
        if config_path is not None:
            message = f"{message} (in {config_path})"
        super().__init__(message)


class EnvironmentVariableError(ConfigurationError):
    """Raised when a referenced environment variable is not set."""

    def __init__(self, env_var: str, config_path: Optional[Path] = None):
        self.env_var = env_var
        super().__init__(
            f"Environment variable '{env_var}' is referenced but not set", config_path
        )


class InvalidValueError(ConfigurationError):
    """Raised when a configuration value has the wrong type or range."""

    def __init__(
        self, section: str, key: str, value: Any, reason: str, config_path: Optional[Path] = None
    ):
        self.section = section
        self.key = key
        self.value = value
        super().__init__(f"Invalid value {value!r} for '{section}.{key}': {reason}", config_path)


def handle_yaml_error(error: Exception, config_path: Path) -> ConfigurationError:
    """Wrap a YAML parse failure into a ConfigurationError with location info."""
    mark = getattr(error, "problem_mark", None)
    location = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
    problem = getattr(error, "problem", None) or str(error)
    return ConfigurationError(f"Invalid YAML{location}: {problem}", config_path)
