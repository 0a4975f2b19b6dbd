"""Learning commands.

Commands:
- learn: Record the outcome of a finished task
- extract: Learn from a transcript file
- ingest: Learn from an agent storage directory of task transcripts
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from engram.learning.exceptions import EngramError

from ..helpers import build_engine, fail, is_quiet
from ..output import console, output_json

_PROJECT_OPTION_HELP = "Project root used for the project fingerprint (default: cwd)"


def learn(
    task: str = typer.Argument(..., help="Task description that was executed"),
    status: str = typer.Option(
        "success",
        "--status",
        "-s",
        help="Execution status: success or error",
    ),
    error: str | None = typer.Option(None, "--error", "-e", help="Error text"),
    feedback: str | None = typer.Option(None, "--feedback", "-f", help="User feedback"),
    created: list[str] | None = typer.Option(
        None, "--created", help="File created by the task (repeatable)"
    ),
    modified: list[str] | None = typer.Option(
        None, "--modified", help="File modified by the task (repeatable)"
    ),
    deleted: list[str] | None = typer.Option(
        None, "--deleted", help="File deleted by the task (repeatable)"
    ),
    project: Path | None = typer.Option(
        None, "--project", "-p", exists=True, file_okay=False, help=_PROJECT_OPTION_HELP
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Record the outcome of a finished task so future lookups improve.

    Examples:
        engram learn "create component Button" --created src/Button.tsx
        engram learn "fix login bug" --status error --error "TypeError: ..."
    """
    from engram.learning.engine import ExecutionResult
    from engram.learning.project_context import FileChange, FileChangeType

    if status not in ("success", "error"):
        fail(f"--status must be 'success' or 'error', got '{status}'", json_output)

    changes = [
        FileChange(file_path=path, type=kind)
        for kind, paths in (
            (FileChangeType.CREATED, created),
            (FileChangeType.MODIFIED, modified),
            (FileChangeType.DELETED, deleted),
        )
        for path in paths or []
    ]
    result = ExecutionResult(
        status=status,
        file_changes=changes,
        error=error,
        user_feedback=feedback,
    )

    engine = build_engine(project, json_output)
    try:
        pattern_id = engine.learn_from_execution(task, result)
    except EngramError as e:
        fail(f"Learning failed: {e}", json_output, error_code="E301")
        return
    pattern = engine.store.get_pattern(pattern_id)

    if json_output:
        output_json({
            "pattern_id": pattern_id,
            "confidence": pattern.confidence if pattern else None,
        })
        return

    if not is_quiet():
        confidence = pattern.confidence if pattern and pattern.confidence is not None else 0.0
        console.print(
            f"[green]Learned pattern {pattern_id}[/green] "
            f"(confidence {confidence:.2f})"
        )


def extract(
    transcript: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Transcript JSON file (array of messages)",
    ),
    project: Path | None = typer.Option(
        None, "--project", "-p", exists=True, file_okay=False, help=_PROJECT_OPTION_HELP
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Learn patterns from an agent transcript.

    Examples:
        engram extract ui_messages.json
        engram extract ui_messages.json --project ~/code/app --json
    """
    try:
        messages = json.loads(transcript.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        fail(f"Cannot read transcript {transcript}: {e}", json_output, error_code="E102")
        return
    if not isinstance(messages, list):
        fail("Transcript must be a JSON array of messages", json_output, error_code="E102")
        return

    engine = build_engine(project, json_output)
    try:
        pattern_ids = engine.extract_patterns(m for m in messages if isinstance(m, dict))
    except EngramError as e:
        fail(f"Extraction failed: {e}", json_output, error_code="E301")
        return

    if json_output:
        output_json({"pattern_ids": pattern_ids, "count": len(pattern_ids)})
        return

    if not is_quiet():
        if pattern_ids:
            ids = ", ".join(str(i) for i in pattern_ids)
            console.print(f"[green]Extracted {len(pattern_ids)} pattern(s):[/green] {ids}")
        else:
            console.print("[yellow]No task episodes found in transcript.[/yellow]")


def ingest(
    storage: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Agent storage directory containing tasks/<task_id>/ui_messages.json",
    ),
    task_id: str | None = typer.Option(
        None,
        "--task",
        "-t",
        help="Only ingest this task",
    ),
    project: Path | None = typer.Option(
        None, "--project", "-p", exists=True, file_okay=False, help=_PROJECT_OPTION_HELP
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Learn from stored task transcripts.

    Tasks that fail to process are reported in the log and skipped.

    Examples:
        engram ingest ~/.agent/storage
        engram ingest ~/.agent/storage --task 1718000000000
    """
    from engram.learning.service import PatternService

    engine = build_engine(project, json_output)
    service = PatternService(engine.extractor)

    if task_id is not None:
        pattern_ids = service.process_task_logs(task_id, storage)
        if pattern_ids is None:
            fail(f"Task {task_id} could not be processed", json_output, error_code="E302")
            return
        if json_output:
            output_json({"task_id": task_id, "pattern_ids": pattern_ids})
        elif not is_quiet():
            console.print(f"[green]Task {task_id}:[/green] {len(pattern_ids)} pattern(s) learned")
        return

    processed = service.process_pending_tasks(storage)
    if json_output:
        output_json({"processed": processed})
    elif not is_quiet():
        console.print(f"[green]Processed {processed} task(s)[/green]")
