"""Learning configuration models.

Defines models for the confidence model, similarity matching, transcript
chunking, and log pattern extraction. All thresholds here are calibration
defaults, not fixed laws: callers may override them per store, per engine,
or per call.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator, model_validator


class ConfidenceConfig(BaseModel):
    """Configuration for pattern confidence updates and forking.

    Example YAML:
        confidence:
          success_increase: 0.1
          failure_decrease: 0.2
          fork_threshold: 0.3
    """

    success_increase: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Amount added to confidence after a successful usage.",
    )
    failure_decrease: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Amount subtracted from confidence after a failed usage.",
    )
    partial_factor: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Fraction of success_increase applied after a partial usage.",
    )
    min_confidence: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Lower bound for stored confidence.",
    )
    max_confidence: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Upper bound for stored confidence.",
    )
    fork_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="After a failure, confidence at or below this forks the pattern.",
    )
    fork_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Confidence assigned to the fresh row created by a fork.",
    )
    default_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Confidence assigned to patterns stored without one.",
    )

    @model_validator(mode="after")
    def _validate_bounds(self) -> ConfidenceConfig:
        if self.min_confidence > self.max_confidence:
            raise ValueError(
                f"min_confidence ({self.min_confidence}) must not exceed "
                f"max_confidence ({self.max_confidence})"
            )
        for name in ("default_confidence", "fork_confidence"):
            value = getattr(self, name)
            if not self.min_confidence <= value <= self.max_confidence:
                raise ValueError(
                    f"{name} ({value}) must lie within "
                    f"[{self.min_confidence}, {self.max_confidence}]"
                )
        return self


class SemanticTagConfig(BaseModel):
    """A recognized semantic tag for metadata-aware matching.

    A tag applies when one of ``metadata_markers`` occurs in a metadata key or
    string value and one of ``task_keywords`` occurs in the task text.
    """

    metadata_markers: list[str] = Field(min_length=1)
    task_keywords: list[str] = Field(min_length=1)
    bonus: float = Field(default=0.6, ge=0.0, le=1.0)


def _default_semantic_tags() -> dict[str, SemanticTagConfig]:
    return {
        "style": SemanticTagConfig(
            metadata_markers=["styl", "css", "tailwind"],
            task_keywords=["styl", "css", "tailwind", "theme"],
        ),
        "security": SemanticTagConfig(
            metadata_markers=["secur", "auth"],
            task_keywords=["secur", "auth", "login", "permission", "protect"],
        ),
    }


class MatcherConfig(BaseModel):
    """Configuration for the similarity matcher."""

    candidate_limit: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum candidate rows considered per lookup.",
    )
    min_similarity: float = Field(
        default=0.3,
        ge=0.0,
        description="Word-overlap score must be at least this to accept a match.",
    )
    metadata_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Metadata score must exceed this to win before word overlap.",
    )
    value_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    key_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    first_token_bonus: float = Field(default=0.5, ge=0.0, le=1.0)
    length_bonus: float = Field(default=0.5, ge=0.0, le=1.0)
    semantic_tags: dict[str, SemanticTagConfig] = Field(
        default_factory=_default_semantic_tags,
    )


class ChunkerConfig(BaseModel):
    """Configuration for transcript chunking heuristics.

    Start and end patterns are ordered lists of case-insensitive regular
    expressions, tried in order against plain-text messages.
    """

    start_patterns: list[str] = Field(
        default_factory=lambda: [
            r"^(create|implement|add|update|fix|refactor)",
            r"^can you help",
            r"^let's (create|implement|fix)",
        ],
    )
    end_patterns: list[str] = Field(
        default_factory=lambda: [
            r"tests? pass(ed|ing)?",
            r"successfully (created|implemented|fixed)",
            r"completed successfully",
            r"failed with error",
        ],
    )
    min_checkpoints: int = Field(default=2, ge=1)
    min_messages: int = Field(default=2, ge=1)
    min_duration: int = Field(
        default=100,
        ge=0,
        description="Minimum chunk duration in transcript time units (ms).",
    )

    @field_validator("start_patterns", "end_patterns")
    @classmethod
    def _validate_regexes(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid regex {pattern!r}: {e}") from e
        return value


class ExtractorConfig(BaseModel):
    """Configuration for the log pattern extractor."""

    ignored_says: list[str] = Field(
        default_factory=lambda: ["api_req_started", "api_req_finished"],
        description="Message kinds dropped before chunking.",
    )
    base_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    success_bonus: float = Field(default=0.2, ge=0.0, le=1.0)
    partial_bonus: float = Field(default=0.1, ge=0.0, le=1.0)
    failure_penalty: float = Field(default=0.2, ge=0.0, le=1.0)
    tool_usage_bonus: float = Field(default=0.1, ge=0.0, le=1.0)
    created_tools: list[str] = Field(
        default_factory=lambda: ["write_to_file", "newFileCreated", "create_file"],
    )
    modified_tools: list[str] = Field(
        default_factory=lambda: ["replace_in_file", "edit_file"],
    )
