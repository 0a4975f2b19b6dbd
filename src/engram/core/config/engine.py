"""Top-level engine configuration and logging configuration models."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from engram.core.config.learning import (
    ChunkerConfig,
    ConfidenceConfig,
    ExtractorConfig,
    MatcherConfig,
)

DEFAULT_STORE_PATH = Path.home() / ".engram" / "patterns.db"


class LogConfig(BaseModel):
    """Configuration for structured logging.

    Controls log level, output format, and file rotation settings.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="Output format: json for structured, console for human-readable, "
        "both for console to stderr and JSON to file",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )
    max_file_size_mb: int = Field(default=50, gt=0, le=1000)
    backup_count: int = Field(default=5, ge=0, le=100)

    @model_validator(mode="after")
    def _check_file_path_required(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError(
                f"file_path is required when format='{self.format}'"
            )
        return self


class EngineConfig(BaseModel):
    """Complete configuration for the learning engine.

    Example YAML:
        store_path: ~/.engram/patterns.db
        local_confidence_floor: 0.3
        confidence:
          fork_threshold: 0.25
        matcher:
          candidate_limit: 20
    """

    store_path: Path = Field(
        default=DEFAULT_STORE_PATH,
        description="SQLite database holding learned patterns.",
    )
    local_confidence_floor: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="A matched pattern must exceed this confidence to run locally.",
    )
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)
    matcher: MatcherConfig = Field(default_factory=MatcherConfig)
    chunker: ChunkerConfig = Field(default_factory=ChunkerConfig)
    extractor: ExtractorConfig = Field(default_factory=ExtractorConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @model_validator(mode="after")
    def _expand_store_path(self) -> EngineConfig:
        self.store_path = self.store_path.expanduser()
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> EngineConfig:
        """Load engine configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> EngineConfig:
        """Load engine configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})
