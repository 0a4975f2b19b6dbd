"""Learning engine: the two calls a task dispatcher makes into Engram.

Before running a task, the dispatcher asks ``decide()`` whether a learned
pattern is trustworthy enough to execute locally. After the task ran, it
reports back with ``learn_from_execution()`` (a structured result) or
``extract_patterns()`` (a raw transcript).

Lookups never raise: storage problems degrade to "no match". Learning
failures are logged and re-raised so the caller can decide whether to retry.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from engram.core.config import EngineConfig
from engram.core.logging import get_logger
from engram.learning.chunker import Message, MessageChunker
from engram.learning.exceptions import EngramError
from engram.learning.extractor import LogPatternExtractor
from engram.learning.matcher import SimilarityMatcher
from engram.learning.project_context import (
    FileChange,
    FileChangeType,
    ProjectContext,
    ProjectContextProvider,
)
from engram.learning.store import PatternStore
from engram.learning.store.base import now_ms
from engram.learning.store.models import Outcome, PatternRecord, PatternUsage

_logger = get_logger("learning.engine")


class ExecutionMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class Decision:
    """Where a task should run, and the pattern that justified running it locally."""

    mode: ExecutionMode
    pattern: PatternRecord | None = None

    @property
    def is_local(self) -> bool:
        return self.mode == ExecutionMode.LOCAL


@dataclass
class ExecutionResult:
    """Outcome of a finished task as reported by the dispatcher.

    Attributes:
        status: "success" or "error".
        file_changes: Files the task created, modified or deleted.
        error: Error text when the task failed.
        user_feedback: Free-text feedback the user gave on the result.
    """

    status: str
    file_changes: list[FileChange] = field(default_factory=list)
    error: str | None = None
    user_feedback: str | None = None

    def __post_init__(self) -> None:
        if self.status not in ("success", "error"):
            raise ValueError(f"status must be 'success' or 'error', got {self.status!r}")

    @property
    def outcome(self) -> Outcome:
        return Outcome.from_success(self.status == "success")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionResult:
        """Build a result from the dispatcher's JSON shape."""
        changes = [
            FileChange(
                file_path=str(change["filePath"]),
                type=FileChangeType(change["type"]),
                content=change.get("content"),
            )
            for change in data.get("fileChanges") or []
        ]
        return cls(
            status=str(data.get("status", "")),
            file_changes=changes,
            error=data.get("error"),
            user_feedback=data.get("userFeedback"),
        )


def describe_execution(result: ExecutionResult) -> str:
    """Render the context text stored with a learned execution."""
    lines = [f"Status: {result.status}"]
    if result.file_changes:
        lines.append("Files:")
        lines.extend(
            f"{FileChangeType(c.type).value}: {c.file_path}" for c in result.file_changes
        )
    if result.error:
        lines.append(f"Error: {result.error}")
    return "\n".join(lines)


class LearningEngine:
    """Facade over the store, matcher and extractor.

    Attributes:
        config: Engine configuration.
        store: The pattern store.
        project_context: Project the engine learns in.
        matcher: Similarity matcher over the store.
        extractor: Transcript learning pipeline over the store.
    """

    def __init__(
        self,
        store: PatternStore | None = None,
        project_context: ProjectContextProvider | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store or PatternStore(self.config.store_path, self.config.confidence)
        self.project_context = project_context or ProjectContext(Path.cwd())
        self.matcher = SimilarityMatcher(self.store, self.config.matcher)
        self.extractor = LogPatternExtractor(
            self.store,
            self.project_context,
            chunker=MessageChunker(self.config.chunker),
            config=self.config.extractor,
        )

    def lookup(self, task: str, context_hint: str | None = None) -> PatternRecord | None:
        """Find the best learned pattern for a task. Never raises."""
        try:
            return self.matcher.find_similar_pattern(task, context_hint)
        except EngramError as e:
            _logger.warning(
                "lookup_failed",
                task=task[:80],
                error=f"{type(e).__name__}: {e}",
            )
            return None

    def decide(self, task: str, context_hint: str | None = None) -> Decision:
        """Decide between executing from memory and delegating remotely.

        Local execution requires a match whose confidence is strictly above
        ``local_confidence_floor``.
        """
        pattern = self.lookup(task, context_hint)
        floor = self.config.local_confidence_floor
        if pattern is not None and (pattern.confidence or 0.0) > floor:
            decision = Decision(ExecutionMode.LOCAL, pattern)
        else:
            decision = Decision(ExecutionMode.REMOTE)

        _logger.info(
            "execution_decided",
            mode=decision.mode.value,
            pattern_id=pattern.id if pattern else None,
            confidence=pattern.confidence if pattern else None,
            floor=floor,
        )
        return decision

    def learn_from_execution(self, task: str, result: ExecutionResult) -> int:
        """Learn from a finished task.

        Stores a pattern for the task whose context describes the result and
        records a usage event with the result's outcome. User feedback is
        kept as a separate pattern tagged ``type: feedback``. All of it is
        written in one transaction; the project context then absorbs the
        file changes.

        Returns:
            The ID of the main (non-feedback) pattern.
        """
        outcome = result.outcome
        try:
            with self.store.batch_connection():
                pattern_id = self.store.store_pattern(
                    PatternRecord(
                        text=task,
                        context=describe_execution(result),
                        metadata={
                            "status": result.status,
                            "files": [c.file_path for c in result.file_changes],
                        },
                    )
                )
                self.store.record_usage(
                    PatternUsage(
                        pattern_id=pattern_id,
                        outcome=outcome,
                        timestamp=now_ms(),
                        feedback=result.user_feedback,
                    )
                )
                if result.user_feedback:
                    self.store.store_pattern(
                        PatternRecord(
                            text=task,
                            context=f"User Feedback: {result.user_feedback}",
                            metadata={"type": "feedback", "status": result.status},
                        )
                    )
        except Exception as e:
            _logger.error(
                "learning_failed",
                task=task[:80],
                error=f"{type(e).__name__}: {e}",
            )
            raise

        if result.file_changes and isinstance(self.project_context, ProjectContext):
            self.project_context.update_context(result.file_changes)

        _logger.info(
            "execution_learned",
            pattern_id=pattern_id,
            outcome=outcome.value,
            files=len(result.file_changes),
            feedback=result.user_feedback is not None,
        )
        return pattern_id

    def extract_patterns(self, messages: Iterable[Message | dict[str, Any]]) -> list[int]:
        """Learn from a raw transcript via the log pattern extractor."""
        return self.extractor.extract_patterns(messages)
