"""Data models for the pattern store.

This module contains the dataclasses and enums used by PatternStore. These
models represent the records persisted in the SQLite database: patterns,
their usage history, evolution lineage, validation events, and the
learning-specific extension produced by the log pattern extractor.

Timestamps are integer epoch milliseconds throughout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias

MetadataValue: TypeAlias = (
    str | int | float | bool | None | list["MetadataValue"] | dict[str, "MetadataValue"]
)
Metadata: TypeAlias = dict[str, MetadataValue]


class Outcome(str, Enum):
    """Coarse result classification of a task episode or pattern usage."""

    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"

    @classmethod
    def from_success(cls, success: bool) -> Outcome:
        return cls.SUCCESS if success else cls.FAILURE


class PatternCategory(str, Enum):
    """Closed set of categories for learned patterns."""

    REFACTORING = "refactoring"
    OPTIMIZATION = "optimization"
    CODE_GENERATION = "code generation"
    DEBUGGING = "debugging"


def command_of(text: str) -> str:
    """Return the coarse command key of a task text.

    The command is the lowercased first whitespace-delimited token, or an
    empty string for blank text.
    """
    tokens = text.split()
    return tokens[0].lower() if tokens else ""


@dataclass
class PatternRecord:
    """A remembered task signature plus a confidence score.

    ``confidence`` and ``timestamp`` may be left as None on records passed to
    the store; the store fills in defaults. Records read back from the store
    always have both set, and always have an ``id``.
    """

    text: str
    context: str | None = None
    metadata: Metadata | None = field(default_factory=dict)
    confidence: float | None = None
    timestamp: int | None = None
    id: int | None = None

    @property
    def command(self) -> str:
        return command_of(self.text)


@dataclass
class PatternUsage:
    """One invocation attempt of a pattern. Append-only."""

    pattern_id: int
    outcome: Outcome
    timestamp: int | None = None
    feedback: str | None = None
    adjustments: list[str] = field(default_factory=list)


@dataclass
class PatternEvolution:
    """A fork or edit applied to a pattern. Append-only, audit only."""

    original_pattern_id: int
    changes: list[str]
    outcome: Outcome
    timestamp: int
    id: int | None = None


@dataclass
class PatternValidation:
    """An explicit applicability check of a pattern by an external caller."""

    pattern_id: int
    success: bool
    context: str
    timestamp: int
    metadata: dict[str, Any] | None = None
    id: int | None = None


@dataclass
class ProjectFingerprint:
    """Project context a learning pattern was recorded in."""

    fingerprint: str
    file_types: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "fileTypes": self.file_types,
            "dependencies": self.dependencies,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectFingerprint:
        return cls(
            fingerprint=data.get("fingerprint", ""),
            file_types=list(data.get("fileTypes", [])),
            dependencies=list(data.get("dependencies", [])),
        )


@dataclass
class Operation:
    """A single tool operation performed during an execution."""

    type: str
    params: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0


@dataclass
class ExecutionData:
    """Ordered operations of an execution and its outcome."""

    operations: list[Operation] = field(default_factory=list)
    outcome: Outcome = Outcome.PARTIAL

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "operations": [
                {"type": op.type, "params": op.params, "timestamp": op.timestamp}
                for op in self.operations
            ],
            "outcome": self.outcome.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionData:
        """Deserialize from dictionary.

        Unknown keys (e.g. merged learning metadata) are ignored.
        """
        operations = [
            Operation(
                type=str(op.get("type", "unknown")),
                params=op.get("params") or {},
                timestamp=int(op.get("timestamp", 0)),
            )
            for op in data.get("operations", [])
            if isinstance(op, dict)
        ]
        try:
            outcome = Outcome(data.get("outcome", Outcome.PARTIAL.value))
        except ValueError:
            outcome = Outcome.PARTIAL
        return cls(operations=operations, outcome=outcome)


@dataclass
class LearningPattern(PatternRecord):
    """A pattern produced by the learning pipeline.

    Persisted as a base pattern row plus a linked ``learning_patterns`` row
    keyed by the project fingerprint.
    """

    project_context: ProjectFingerprint = field(
        default_factory=lambda: ProjectFingerprint(fingerprint="")
    )
    execution: ExecutionData = field(default_factory=ExecutionData)
    category: PatternCategory = PatternCategory.CODE_GENERATION


@dataclass
class PatternHistory:
    """Aggregated usage counts and recorded adaptations for a pattern."""

    successes: int = 0
    failures: int = 0
    adaptations: list[str] = field(default_factory=list)


@dataclass
class PatternInsights:
    """Evolution lineage and usage history of a pattern."""

    evolution: list[PatternEvolution]
    history: PatternHistory
