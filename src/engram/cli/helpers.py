"""Shared utilities for Engram CLI commands.

This module contains helpers used across multiple CLI command modules:
- Output level management
- Logging configuration from global options
- Engine config, store and engine construction from global options
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console

from engram.core.config import EngineConfig
from engram.core.logging import configure_logging, get_logger
from engram.learning.engine import LearningEngine
from engram.learning.exceptions import EngramError
from engram.learning.project_context import ProjectContext
from engram.learning.store import PatternStore

from .output import console, output_error

# =============================================================================
# Module-level logger
# =============================================================================

_logger = get_logger("cli")


# =============================================================================
# Error message constants
# =============================================================================


class ErrorMessages:
    """Constants for CLI error messages."""

    CONFIG_LOAD_ERROR = "Error loading config"
    PATTERN_NOT_FOUND = "Pattern not found"
    STORE_ERROR = "Pattern store error"


# =============================================================================
# Output level management
# =============================================================================


class OutputLevel(str, Enum):
    """Output verbosity level."""

    QUIET = "quiet"  # Minimal output (errors only)
    NORMAL = "normal"  # Default output
    VERBOSE = "verbose"  # Detailed output


_output_level: OutputLevel = OutputLevel.NORMAL


def get_output_level() -> OutputLevel:
    return _output_level


def set_output_level(level: OutputLevel) -> None:
    global _output_level
    _output_level = level


def is_verbose() -> bool:
    return _output_level == OutputLevel.VERBOSE


def is_quiet() -> bool:
    return _output_level == OutputLevel.QUIET


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """CLI logging options collected from global callbacks."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    configured: bool = False
    # Set when any --log-* option was given; those win over the config file
    explicit: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]
    _log_config.explicit = True


def set_log_file(path: Path | None) -> None:
    """Set the log file path.

    Rich CLI output (tables, panels) is separate from structured logging and
    still goes to the console.
    """
    _log_config.file = path
    _log_config.explicit = True


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]
    _log_config.explicit = True


def configure_global_logging(console: Console) -> None:
    """Configure logging from global CLI options, once per session.

    Raises:
        typer.Exit: If logging configuration fails.
    """
    if _log_config.configured:
        return

    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        # e.g. format="both" without a log file
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_logging_state() -> None:
    """Reset logging state so tests can reconfigure it."""
    _log_config.configured = False
    _log_config.explicit = False


# =============================================================================
# Store and engine construction
# =============================================================================


@dataclass
class CliStoreOptions:
    """Store-related global options."""

    db_path: Path | None = None
    config_path: Path | None = None


_store_options = CliStoreOptions()


def set_db_path(path: Path | None) -> None:
    _store_options.db_path = path


def set_config_path(path: Path | None) -> None:
    _store_options.config_path = path


def reset_store_options() -> None:
    _store_options.db_path = None
    _store_options.config_path = None


def load_engine_config(json_output: bool = False) -> EngineConfig:
    """Load the engine config from ``--config`` and apply ``--db``.

    Raises:
        typer.Exit: If the config file cannot be read or is invalid.
    """
    config_path = _store_options.config_path
    try:
        config = EngineConfig.from_yaml(config_path) if config_path else EngineConfig()
    except (OSError, yaml.YAMLError, ValidationError) as e:
        output_error(
            f"{ErrorMessages.CONFIG_LOAD_ERROR}: {e}",
            error_code="E101",
            hints=["Check the YAML syntax and field names of the config file."],
            json_output=json_output,
        )
        raise typer.Exit(1) from None

    if config_path and not _log_config.explicit:
        log = config.logging
        configure_logging(
            level=log.level,
            format=log.format,
            file_path=log.file_path,
            max_file_size_mb=log.max_file_size_mb,
            backup_count=log.backup_count,
        )

    if _store_options.db_path is not None:
        config = config.model_copy(update={"store_path": _store_options.db_path})

    _logger.debug("engine_config_loaded", store_path=str(config.store_path))
    return config


def open_store(config: EngineConfig, json_output: bool = False) -> PatternStore:
    """Open the pattern store named by the config.

    Raises:
        typer.Exit: If the database cannot be opened.
    """
    try:
        return PatternStore(config.store_path, config.confidence)
    except EngramError as e:
        output_error(
            f"{ErrorMessages.STORE_ERROR}: {e}",
            error_code="E201",
            json_output=json_output,
        )
        raise typer.Exit(1) from None


def build_engine(
    project_root: Path | None = None,
    json_output: bool = False,
) -> LearningEngine:
    """Build a learning engine for a project from the global options."""
    config = load_engine_config(json_output)
    store = open_store(config, json_output)
    project = ProjectContext(project_root or Path.cwd())
    project.analyze()
    return LearningEngine(store=store, project_context=project, config=config)


def fail(message: str, json_output: bool = False, error_code: str | None = None) -> None:
    """Report a command failure and exit with status 1."""
    output_error(message, error_code=error_code, json_output=json_output)
    raise typer.Exit(1)


__all__ = [
    "CliLoggingConfig",
    "CliStoreOptions",
    "ErrorMessages",
    "OutputLevel",
    "build_engine",
    "configure_global_logging",
    "console",
    "fail",
    "get_output_level",
    "is_quiet",
    "is_verbose",
    "load_engine_config",
    "open_store",
    "reset_logging_state",
    "reset_store_options",
    "set_config_path",
    "set_db_path",
    "set_log_file",
    "set_log_format",
    "set_log_level",
    "set_output_level",
]
