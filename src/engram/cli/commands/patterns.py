"""Pattern inspection commands.

Commands:
- patterns-list: View learned patterns with filtering
- pattern-insights: Show evolution lineage and usage history of a pattern
- validate-pattern: Record an applicability check of a pattern
- stats: Store-wide counts
"""

from __future__ import annotations

from dataclasses import asdict

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from engram.learning.exceptions import PatternNotFoundError

from ..helpers import ErrorMessages, fail, is_quiet, is_verbose, load_engine_config, open_store
from ..output import (
    console,
    create_patterns_table,
    create_simple_table,
    format_confidence,
    format_outcome,
    format_timestamp,
    output_json,
    pattern_to_dict,
)


def patterns_list(
    context: str | None = typer.Option(
        None,
        "--context",
        "-c",
        help="Only patterns with exactly this context",
    ),
    command: str | None = typer.Option(
        None,
        "--command",
        help="Only patterns whose first word is this command (e.g. 'create')",
    ),
    min_confidence: float = typer.Option(
        0.0,
        "--min-confidence",
        "-m",
        min=0.0,
        max=1.0,
        help="Minimum confidence to include",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        min=1,
        help="Maximum number of patterns to display",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """View learned patterns, highest confidence first.

    Examples:
        engram patterns-list
        engram patterns-list --command create --min-confidence 0.7
        engram patterns-list --json
    """
    store = open_store(load_engine_config(json_output), json_output)
    patterns = store.list_patterns(
        context=context,
        command=command,
        min_confidence=min_confidence,
        limit=limit,
    )

    if json_output:
        output_json([pattern_to_dict(p) for p in patterns])
        return

    if not patterns:
        console.print("[dim]No patterns found.[/dim]")
        return

    table = create_patterns_table()
    if is_verbose():
        table.add_column("Learned", style="dim")
    for pattern in patterns:
        context_text = (pattern.context or "-").splitlines()[0] if pattern.context else "-"
        row = [
            str(pattern.id),
            escape(pattern.text[:60]),
            escape(context_text[:40]),
            format_confidence(pattern.confidence),
        ]
        if is_verbose():
            row.append(format_timestamp(pattern.timestamp))
        table.add_row(*row)

    console.print(table)
    if not is_quiet():
        console.print(f"\n[dim]Showing {len(patterns)} pattern(s)[/dim]")


def pattern_insights(
    pattern_id: int = typer.Argument(..., help="Pattern ID"),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show the evolution lineage and usage history of a pattern.

    Examples:
        engram pattern-insights 12
        engram pattern-insights 12 --json
    """
    store = open_store(load_engine_config(json_output), json_output)
    pattern = store.get_pattern(pattern_id)
    if pattern is None:
        fail(f"{ErrorMessages.PATTERN_NOT_FOUND}: {pattern_id}", json_output, error_code="E202")
        return

    insights = store.get_pattern_insights(pattern_id)

    if json_output:
        output_json({
            "pattern": pattern_to_dict(pattern),
            "history": asdict(insights.history),
            "evolution": [
                {
                    "changes": e.changes,
                    "outcome": e.outcome.value,
                    "timestamp": e.timestamp,
                }
                for e in insights.evolution
            ],
        })
        return

    console.print(Panel(
        f"[bold]{escape(pattern.text)}[/bold]\n"
        f"[dim]Confidence:[/dim] {format_confidence(pattern.confidence)}",
        title=f"Pattern {pattern_id}",
        border_style="cyan",
    ))

    history = insights.history
    table = create_simple_table()
    table.add_row("Successes", str(history.successes))
    table.add_row("Failures", str(history.failures))
    table.add_row("Adaptations", str(len(history.adaptations)))
    console.print(table)

    if history.adaptations:
        console.print("\n[bold]Adaptations[/bold]")
        for adaptation in history.adaptations:
            console.print(f"  - {escape(adaptation)}")

    if insights.evolution:
        console.print("\n[bold]Evolution[/bold]")
        evolution_table = Table(show_header=True, header_style="bold")
        evolution_table.add_column("When", style="dim")
        evolution_table.add_column("Outcome")
        evolution_table.add_column("Changes")
        for evolution in insights.evolution:
            evolution_table.add_row(
                format_timestamp(evolution.timestamp),
                format_outcome(evolution.outcome),
                escape("; ".join(evolution.changes)),
            )
        console.print(evolution_table)


def validate_pattern(
    pattern_id: int = typer.Argument(..., help="Pattern ID"),
    success: bool = typer.Option(
        True,
        "--success/--failure",
        help="Whether the pattern applied cleanly",
    ),
    context: str = typer.Option(
        "",
        "--context",
        "-c",
        help="Where the pattern was checked",
    ),
    changes: list[str] | None = typer.Option(
        None,
        "--change",
        help="Change made to the pattern during the check (repeatable)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Record an explicit applicability check of a pattern.

    Validations are an audit trail and do not change confidence.

    Examples:
        engram validate-pattern 12 --context "repo: web"
        engram validate-pattern 12 --failure --change "renamed prop"
    """
    store = open_store(load_engine_config(json_output), json_output)
    try:
        store.validate_and_track_pattern(pattern_id, success, context, changes or None)
    except PatternNotFoundError:
        fail(f"{ErrorMessages.PATTERN_NOT_FOUND}: {pattern_id}", json_output, error_code="E202")
        return

    if json_output:
        output_json({
            "pattern_id": pattern_id,
            "success": success,
            "changes": len(changes or []),
        })
        return

    if not is_quiet():
        label = "[green]passed[/green]" if success else "[red]failed[/red]"
        console.print(f"Validation of pattern {pattern_id} recorded: {label}")


def stats(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show pattern store statistics.

    Examples:
        engram stats
        engram stats --json
    """
    store = open_store(load_engine_config(json_output), json_output)
    data = store.get_stats()

    if json_output:
        output_json(data)
        return

    console.print("[bold]Pattern Store[/bold]")
    table = create_simple_table()
    table.add_row("Patterns", str(data["total_patterns"]))
    table.add_row("Avg confidence", format_confidence(data["avg_confidence"]))
    table.add_row("Learning patterns", str(data["learning_patterns"]))
    table.add_row("Usage events", str(data["usage_events"]))
    table.add_row("Evolution events", str(data["evolution_events"]))
    table.add_row("Validations", str(data["validations"]))
    console.print(table)

    if data["outcomes"]:
        console.print("\n[bold]Outcomes[/bold]")
        for outcome, count in sorted(data["outcomes"].items()):
            console.print(f"  {outcome}: {count}")

    if data["categories"]:
        console.print("\n[bold]Categories[/bold]")
        for category, count in sorted(data["categories"].items()):
            console.print(f"  {category}: {count}")
