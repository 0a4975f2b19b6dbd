"""Configuration models for Engram.

Pydantic models for loading and validating engine configuration from YAML.
All models are re-exported here so ``from engram.core.config import ...``
works for every model.
"""

from engram.core.config.engine import (
    DEFAULT_STORE_PATH,
    EngineConfig,
    LogConfig,
)
from engram.core.config.learning import (
    ChunkerConfig,
    ConfidenceConfig,
    ExtractorConfig,
    MatcherConfig,
    SemanticTagConfig,
)

__all__ = [
    "DEFAULT_STORE_PATH",
    "ChunkerConfig",
    "ConfidenceConfig",
    "EngineConfig",
    "ExtractorConfig",
    "LogConfig",
    "MatcherConfig",
    "SemanticTagConfig",
]
