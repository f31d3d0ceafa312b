"""Shared helpers of the gitscope CLI commands."""

import functools
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.table import Table

from .config import ConfigLoader, ConfigurationError
from .errors import GitScopeError

console = Console()

LOG_FORMAT = "[%(levelname)s] %(threadName)s %(filename)s:%(lineno)d - %(message)s"


def setup_logging(level: str, module_name: str = __name__) -> logging.Logger:
    """Configure logging once for a CLI invocation.

    Args:
        level: Log level name, or "none" to silence logging
        module_name: ``__name__`` of the caller

    Returns:
        Logger for the calling module
    """
    if level.upper() != "NONE":
        log_level = getattr(logging, level.upper())
        logging.basicConfig(
            level=log_level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stderr)],
            force=True,
        )
        logging.getLogger("gitscope").setLevel(log_level)
        module_logger = logging.getLogger(module_name)
        module_logger.debug(f"Logging enabled at {level.upper()} level")
    else:
        logging.getLogger().setLevel(logging.CRITICAL)
        logging.getLogger("gitscope").setLevel(logging.CRITICAL)
        module_logger = logging.getLogger(module_name)
    return module_logger


def get_runtime(ctx: click.Context):
    """Build (once per invocation) the runtime for the selected configuration."""
    from .runtime import build_runtime

    state = ctx.ensure_object(dict)
    if state.get("runtime") is None:
        config_path: Optional[Path] = state.get("config_path")
        config = ConfigLoader.load(config_path)
        setup_logging(state.get("log") or config.logging.level, __name__)
        state["runtime"] = build_runtime(config)
        ctx.call_on_close(state["runtime"].close)
    return state["runtime"]


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report domain and configuration errors as one line and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except GitScopeError as e:
            click.echo(f"❌ Error: [{e.code}] {e.message}", err=True)
            sys.exit(1)
        except ConfigurationError as e:
            click.echo(f"❌ Configuration error: {e}", err=True)
            sys.exit(1)

    return wrapper


def print_table(title: str, columns: list[str], rows: list[list[Any]]) -> None:
    table = Table(title=title, show_lines=False)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*["" if value is None else str(value) for value in row])
    console.print(table)


def format_timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"
