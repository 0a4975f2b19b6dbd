"""Engram CLI.

The CLI is built using Typer: global options are collected by the app
callback, and each command lives in a module under ``commands/``.

Package structure:
    cli/
    ├── __init__.py           # App assembly and global options
    ├── helpers.py            # Output level, logging, store and engine construction
    ├── output.py             # Rich formatting
    └── commands/
        ├── __init__.py       # Command exports
        ├── lookup.py         # lookup command
        ├── learn.py          # learn, extract, ingest commands
        └── patterns.py       # patterns-list, pattern-insights, validate-pattern, stats
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from engram import __version__

# Re-export helpers module for direct access to internal state (conftest.py needs this)
from . import helpers as helpers
from .commands import (
    extract,
    ingest,
    learn,
    lookup,
    pattern_insights,
    patterns_list,
    stats,
    validate_pattern,
)
from .helpers import (
    OutputLevel,
    configure_global_logging,
    set_config_path,
    set_db_path,
    set_log_file,
    set_log_format,
    set_log_level,
    set_output_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="engram",
    help="Local pattern learning and retrieval for coding agents",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Engram v{__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.VERBOSE)


def quiet_callback(value: bool) -> None:
    if value:
        set_output_level(OutputLevel.QUIET)


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


def db_callback(value: Path | None) -> Path | None:
    """Override the pattern database path."""
    if value:
        set_db_path(value)
    return value


def config_callback(value: Path | None) -> Path | None:
    if value:
        set_config_path(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        is_eager=True,
        help="Show detailed output with additional information",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        callback=quiet_callback,
        is_eager=True,
        help="Show minimal output (errors only)",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="ENGRAM_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="ENGRAM_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="ENGRAM_LOG_FORMAT",
        ),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option(
            "--db",
            callback=db_callback,
            help="Pattern database path (overrides the config file)",
            envvar="ENGRAM_DB",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-C",
            callback=config_callback,
            help="Engine config YAML file",
            envvar="ENGRAM_CONFIG",
        ),
    ] = None,
) -> None:
    """Engram - local pattern learning and retrieval for coding agents."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

# Execution decisions and learning
app.command()(lookup)
app.command()(learn)
app.command()(extract)
app.command()(ingest)

# Pattern inspection
app.command(name="patterns-list")(patterns_list)
app.command(name="pattern-insights")(pattern_insights)
app.command(name="validate-pattern")(validate_pattern)
app.command()(stats)


# =============================================================================
# Public API
# =============================================================================

__all__ = [
    "app",
    "main",
    "console",
    "OutputLevel",
]
