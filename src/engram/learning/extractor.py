"""Log pattern extraction: transcript chunks to stored learning patterns.

For each valid chunk of a transcript the extractor derives:

1. the outcome (successful completion, else failure on any error, else partial)
2. the tool calls made, tolerating unparsable payloads
3. file changes implied by file-writing tools
4. the last error and last user feedback
5. relative import/require dependencies of written content
6. the project fingerprint, from the project context summary
7. a task type and pattern category from the chunk's intent
8. an initial confidence

and persists the result with its first usage event in one transaction. A
chunk that fails at any step is abandoned and the error propagates; nothing
partial is written for it.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from typing import Any

from engram.core.config import ExtractorConfig
from engram.core.logging import get_logger
from engram.learning.chunker import (
    CheckpointType,
    Message,
    MessageChunker,
    TaskChunk,
    parse_tool_payload,
)
from engram.learning.exceptions import ParseError
from engram.learning.project_context import (
    FileChange,
    FileChangeType,
    ProjectContextProvider,
    parse_context_summary,
)
from engram.learning.store import PatternStore
from engram.learning.store.base import now_ms
from engram.learning.store.models import (
    ExecutionData,
    LearningPattern,
    Operation,
    Outcome,
    PatternCategory,
    PatternUsage,
    ProjectFingerprint,
)

_logger = get_logger("learning.extractor")

_QUOTED = re.compile(r"""['"`](.*?)['"`]""")


@dataclass
class ToolUsage:
    """A parsed tool call from a ``tool_usage`` checkpoint."""

    tool: str
    params: dict[str, Any]
    timestamp: int
    success: bool
    raw: str | None = None


@dataclass
class ChunkAnalysis:
    """Everything derived from one chunk before it is persisted."""

    intent: str
    outcome: Outcome
    tool_usage: list[ToolUsage]
    file_changes: list[FileChange]
    error: str | None
    feedback: str | None
    error_patterns: list[str]
    adjustments: list[str]
    task_type: str
    category: PatternCategory
    file_dependencies: list[str] = field(default_factory=list)


def determine_outcome(chunk: TaskChunk) -> Outcome:
    completion = chunk.completion
    if completion is not None and completion.success is True:
        return Outcome.SUCCESS
    if chunk.checkpoints_of(CheckpointType.ERROR):
        return Outcome.FAILURE
    return Outcome.PARTIAL


def derive_intent(chunk: TaskChunk) -> str:
    """The task the chunk is about: its first message that is not JSON."""
    if chunk.intent:
        return chunk.intent
    if not chunk.messages:
        return "No messages in chunk"
    for message in chunk.messages:
        text = (message.text or "").strip()
        if text and not (text.startswith("{") and text.endswith("}")):
            return text
    return "Some JSON-based task"


def determine_task_type(intent: str) -> str:
    """Coarse task type: update, fix, create, delete, or other."""
    lower = intent.lower()
    if "update" in lower:
        return "update"
    if "fix" in lower:
        return "fix"
    if any(word in lower for word in ("create", "implement", "add", "generate")):
        return "create"
    if "delete" in lower or "remove" in lower:
        return "delete"
    return "other"


_CATEGORY_BY_TASK_TYPE = {
    "fix": PatternCategory.DEBUGGING,
    "update": PatternCategory.REFACTORING,
    "delete": PatternCategory.REFACTORING,
    "create": PatternCategory.CODE_GENERATION,
    "other": PatternCategory.CODE_GENERATION,
}


def categorize(task_type: str, intent: str) -> PatternCategory:
    lower = intent.lower()
    if "optimiz" in lower or "performance" in lower:
        return PatternCategory.OPTIMIZATION
    if "refactor" in lower:
        return PatternCategory.REFACTORING
    return _CATEGORY_BY_TASK_TYPE.get(task_type, PatternCategory.CODE_GENERATION)


def extract_import_dependencies(content: str) -> list[str]:
    """Relative modules referenced by import/require lines, in order."""
    dependencies = []
    for line in content.splitlines():
        stripped = line.strip()
        if not (
            stripped.startswith(("import ", "export "))
            or "require(" in stripped
        ):
            continue
        match = _QUOTED.search(stripped)
        if match and match.group(1).startswith("."):
            dependencies.append(match.group(1))
    return dependencies


class LogPatternExtractor:
    """Turns agent transcripts into stored learning patterns.

    Attributes:
        store: Where learning patterns are persisted.
        project_context: Source of the project fingerprint.
        chunker: Splits transcripts into task chunks.
        config: Confidence weights and tool classification.
    """

    def __init__(
        self,
        store: PatternStore,
        project_context: ProjectContextProvider,
        chunker: MessageChunker | None = None,
        config: ExtractorConfig | None = None,
    ) -> None:
        self.store = store
        self.project_context = project_context
        self.chunker = chunker or MessageChunker()
        self.config = config or ExtractorConfig()

    def extract_patterns(self, messages: Iterable[Message | dict[str, Any]]) -> list[int]:
        """Learn from a transcript.

        Drops request bookkeeping messages, chunks the rest, and stores one
        learning pattern per valid chunk.

        Args:
            messages: Transcript entries as Message objects or raw dicts.

        Returns:
            IDs of the stored patterns, in chunk order.

        Raises:
            StorageError: If persisting a chunk fails. Chunks processed
                before the failing one stay stored.
        """
        relevant = []
        for item in messages:
            message = item if isinstance(item, Message) else Message.from_dict(item)
            if message.say in self.config.ignored_says:
                continue
            relevant.append(message)

        chunks = self.chunker.chunk_messages(relevant)
        pattern_ids = [self.process_chunk(chunk) for chunk in chunks]

        _logger.info(
            "patterns_extracted",
            messages=len(relevant),
            chunks=len(chunks),
            patterns=len(pattern_ids),
        )
        return pattern_ids

    def analyze_chunk(self, chunk: TaskChunk) -> ChunkAnalysis:
        intent = derive_intent(chunk)
        tool_usage = self.extract_tool_usage(chunk)
        file_changes = self.extract_file_changes(tool_usage)
        task_type = determine_task_type(intent)

        errors = chunk.checkpoints_of(CheckpointType.ERROR)
        feedback = chunk.checkpoints_of(CheckpointType.FEEDBACK)

        file_dependencies: list[str] = []
        for change in file_changes:
            file_dependencies.extend(extract_import_dependencies(change.content or ""))

        return ChunkAnalysis(
            intent=intent,
            outcome=determine_outcome(chunk),
            tool_usage=tool_usage,
            file_changes=file_changes,
            error=errors[-1].message if errors else None,
            feedback=feedback[-1].message if feedback else None,
            error_patterns=[m.text for m in chunk.messages if m.say == "error" and m.text],
            adjustments=self.extract_adjustments(chunk),
            task_type=task_type,
            category=categorize(task_type, intent),
            file_dependencies=file_dependencies,
        )

    def process_chunk(self, chunk: TaskChunk) -> int:
        """Derive a learning pattern from one chunk and persist it.

        Returns:
            The stored pattern's ID.
        """
        try:
            analysis = self.analyze_chunk(chunk)
            pattern = self.build_pattern(chunk, analysis)
            usage = PatternUsage(
                pattern_id=0,
                outcome=analysis.outcome,
                timestamp=now_ms(),
                feedback=analysis.feedback,
                adjustments=analysis.adjustments,
            )
            pattern_id = self.store.store_learning_pattern(pattern, usage=usage)
        except Exception as e:
            _logger.error(
                "chunk_processing_failed",
                start_ts=chunk.start_ts,
                error=f"{type(e).__name__}: {e}",
            )
            raise

        _logger.info(
            "chunk_learned",
            pattern_id=pattern_id,
            outcome=analysis.outcome.value,
            category=analysis.category.value,
            tool_calls=len(analysis.tool_usage),
        )
        return pattern_id

    def build_pattern(self, chunk: TaskChunk, analysis: ChunkAnalysis) -> LearningPattern:
        summary = self.project_context.get_current_context()
        dependencies, file_types = parse_context_summary(summary)
        tool_usage = [asdict(usage) for usage in analysis.tool_usage]
        file_changes = [
            {"filePath": c.file_path, "type": FileChangeType(c.type).value, "content": c.content}
            for c in analysis.file_changes
        ]

        return LearningPattern(
            text=analysis.intent,
            context=summary,
            timestamp=chunk.start_ts,
            metadata={
                "outcome": {
                    "status": analysis.outcome.value,
                    "error": analysis.error,
                    "feedback": analysis.feedback,
                },
                "fileChanges": file_changes,
                "toolUsage": tool_usage,
                "errorPatterns": analysis.error_patterns,
                "dependencies": analysis.file_dependencies,
                "projectState": {"dependencies": dependencies, "fileTypes": file_types},
                "taskType": analysis.task_type,
            },
            confidence=self.calculate_confidence(chunk, analysis.outcome),
            project_context=ProjectFingerprint(
                fingerprint=summary,
                file_types=file_types,
                dependencies=[*dependencies, *analysis.file_dependencies],
            ),
            execution=ExecutionData(
                operations=[
                    Operation(type=u.tool, params=u.params, timestamp=u.timestamp)
                    for u in analysis.tool_usage
                ],
                outcome=analysis.outcome,
            ),
            category=analysis.category,
        )

    def extract_tool_usage(self, chunk: TaskChunk) -> list[ToolUsage]:
        usages = []
        for checkpoint in chunk.checkpoints_of(CheckpointType.TOOL_USAGE):
            try:
                payload = parse_tool_payload(checkpoint.message)
                raw = None
            except ParseError:
                _logger.warning("tool_payload_unparsable", ts=checkpoint.ts)
                payload = {"tool": "unknown", "params": {}}
                raw = checkpoint.message

            tool = payload.get("tool") or payload.get("type") or "unknown"
            params = payload.get("params")
            if not isinstance(params, dict):
                params = {k: v for k, v in payload.items() if k not in ("tool", "type")}
            usages.append(
                ToolUsage(
                    tool=str(tool),
                    params=params,
                    timestamp=checkpoint.ts,
                    success=bool(checkpoint.success),
                    raw=raw,
                )
            )
        return usages

    def extract_file_changes(self, tool_usage: list[ToolUsage]) -> list[FileChange]:
        changes = []
        for usage in tool_usage:
            if usage.tool in self.config.created_tools:
                kind = FileChangeType.CREATED
            elif usage.tool in self.config.modified_tools:
                kind = FileChangeType.MODIFIED
            else:
                continue
            content = usage.params.get("content") or usage.params.get("diff") or ""
            changes.append(
                FileChange(
                    file_path=str(usage.params.get("path", "")),
                    type=kind,
                    content=content if isinstance(content, str) else json.dumps(content),
                )
            )
        return changes

    @staticmethod
    def extract_adjustments(chunk: TaskChunk) -> list[str]:
        """Tool calls made after the first error: the recovery steps."""
        adjustments = []
        had_error = False
        for checkpoint in chunk.checkpoints:
            if checkpoint.type == CheckpointType.ERROR:
                had_error = True
            elif had_error and checkpoint.type == CheckpointType.TOOL_USAGE:
                adjustments.append(checkpoint.message)
        return adjustments

    def calculate_confidence(self, chunk: TaskChunk, outcome: Outcome) -> float:
        confidence = self.config.base_confidence
        if outcome == Outcome.SUCCESS:
            confidence += self.config.success_bonus
        elif outcome == Outcome.FAILURE:
            confidence -= self.config.failure_penalty
        else:
            confidence += self.config.partial_bonus
        if chunk.checkpoints_of(CheckpointType.TOOL_USAGE):
            confidence += self.config.tool_usage_bonus
        return max(0.0, min(1.0, confidence))
