"""Rich output formatting for the Engram CLI.

Centralizes console, colors, tables, and error/JSON output so commands
render consistently.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Literal

from rich.console import Console
from rich.table import Table

from engram.learning.store.models import Outcome, PatternRecord

# =============================================================================
# Shared console instance
# =============================================================================

# Quiet/JSON modes are handled by guards in each command, not by the console.
console = Console()


# =============================================================================
# Color schemes
# =============================================================================


class StatusColors:
    """Color mappings for outcomes and confidence bands."""

    OUTCOME: dict[Outcome, str] = {
        Outcome.SUCCESS: "green",
        Outcome.FAILURE: "red",
        Outcome.PARTIAL: "yellow",
    }

    @classmethod
    def get_outcome_color(cls, outcome: Outcome) -> str:
        return cls.OUTCOME.get(outcome, "white")

    @staticmethod
    def get_confidence_color(confidence: float) -> str:
        if confidence >= 0.7:
            return "green"
        if confidence > 0.3:
            return "yellow"
        return "red"


# =============================================================================
# Formatters
# =============================================================================


def format_timestamp(ms: int | None) -> str:
    """Format epoch milliseconds as a UTC timestamp."""
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_confidence(confidence: float | None) -> str:
    if confidence is None:
        return "-"
    color = StatusColors.get_confidence_color(confidence)
    return f"[{color}]{confidence:.2f}[/{color}]"


def format_outcome(outcome: Outcome) -> str:
    color = StatusColors.get_outcome_color(outcome)
    return f"[{color}]{outcome.value}[/{color}]"


def pattern_to_dict(pattern: PatternRecord) -> dict[str, Any]:
    return {
        "id": pattern.id,
        "text": pattern.text,
        "context": pattern.context,
        "confidence": pattern.confidence,
        "timestamp": pattern.timestamp,
        "metadata": pattern.metadata,
    }


# =============================================================================
# Table builders
# =============================================================================


def create_patterns_table(title: str = "Learned Patterns") -> Table:
    """Create a styled table for pattern listings."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", justify="right", width=6)
    table.add_column("Pattern", style="cyan", no_wrap=False)
    table.add_column("Context", style="dim", no_wrap=False)
    table.add_column("Confidence", justify="right", width=10)
    return table


def create_simple_table(show_header: bool = False) -> Table:
    """Create a simple key-value table without box styling."""
    table = Table(show_header=show_header, box=None)
    table.add_column("Field", style="dim", width=20)
    table.add_column("Value", style="bold")
    return table


# =============================================================================
# JSON and error output
# =============================================================================


def output_json(data: Any) -> None:
    """Print data as JSON without Rich markup, highlighting, or wrapping."""
    console.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def output_error(
    message: str,
    *,
    error_code: str | None = None,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
    console_instance: Console | None = None,
) -> None:
    """Output a formatted error or warning, as Rich markup or JSON.

    Args:
        message: The error message to display.
        error_code: Optional error code (e.g., "E101").
        hints: Optional list of hint strings for the user.
        severity: "error" (red) or "warning" (yellow).
        json_output: If True, output as JSON instead of Rich markup.
        console_instance: Console to print to. Defaults to module console.
    """
    out = console_instance or console

    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if error_code:
            result["error_code"] = error_code
        if hints:
            result["hints"] = hints
        out.print(json.dumps(result, indent=2), markup=False, highlight=False, soft_wrap=True)
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    prefix = f"[{color}]{label} [{error_code}]:[/{color}] " if error_code else f"[{color}]{label}:[/{color}] "
    out.print(prefix, end="")
    out.print(message, markup=False, highlight=False)

    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {hint}", markup=False)
