"""Lookup command: ask whether a task can run from learned patterns."""

from __future__ import annotations

import typer
from rich.markup import escape
from rich.panel import Panel

from ..helpers import is_quiet, load_engine_config, open_store
from ..output import (
    console,
    create_simple_table,
    format_confidence,
    format_timestamp,
    output_json,
    pattern_to_dict,
)


def lookup(
    task: str = typer.Argument(..., help="Task description to match"),
    context: str | None = typer.Option(
        None,
        "--context",
        "-c",
        help="Context hint, e.g. a framework or project label",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Find the best learned pattern for a task and decide local vs remote.

    Examples:
        engram lookup "create component Card" --context react
        engram lookup "fix failing test" --json
    """
    from engram.learning.engine import LearningEngine
    from engram.learning.project_context import ProjectContext

    config = load_engine_config(json_output)
    store = open_store(config, json_output)
    # Lookups never touch the project, so it is not scanned
    engine = LearningEngine(store=store, project_context=ProjectContext("."), config=config)
    decision = engine.decide(task, context)

    if json_output:
        output_json({
            "mode": decision.mode.value,
            "pattern": pattern_to_dict(decision.pattern) if decision.pattern else None,
        })
        return

    if is_quiet():
        console.print(decision.mode.value)
        return

    if decision.pattern is None:
        console.print(
            "[yellow]No trusted pattern found.[/yellow] Task should be delegated (remote)."
        )
        return

    pattern = decision.pattern
    table = create_simple_table()
    table.add_row("ID", str(pattern.id))
    table.add_row("Pattern", escape(pattern.text))
    table.add_row("Context", escape(pattern.context or "-"))
    table.add_row("Confidence", format_confidence(pattern.confidence))
    table.add_row("Learned", format_timestamp(pattern.timestamp))
    console.print(Panel(table, title="Local execution", border_style="green"))
