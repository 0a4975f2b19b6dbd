"""Tests for engram.core.config models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from engram.core.config import (
    DEFAULT_STORE_PATH,
    ChunkerConfig,
    ConfidenceConfig,
    EngineConfig,
    ExtractorConfig,
    LogConfig,
    MatcherConfig,
    SemanticTagConfig,
)


class TestDefaults:
    """Calibration defaults shipped with the engine."""

    def test_confidence_defaults(self):
        config = ConfidenceConfig()

        assert config.success_increase == 0.1
        assert config.failure_decrease == 0.2
        assert config.partial_factor == 0.5
        assert (config.min_confidence, config.max_confidence) == (0.0, 1.0)
        assert config.fork_threshold == 0.3
        assert config.fork_confidence == 0.5
        assert config.default_confidence == 0.5

    def test_matcher_defaults(self):
        config = MatcherConfig()

        assert config.candidate_limit == 10
        assert config.min_similarity == 0.3
        assert config.metadata_threshold == 0.5
        assert set(config.semantic_tags) == {"style", "security"}
        assert config.semantic_tags["style"].bonus == 0.6

    def test_chunker_defaults(self):
        config = ChunkerConfig()

        assert len(config.start_patterns) == 3
        assert len(config.end_patterns) == 4
        assert (config.min_checkpoints, config.min_messages, config.min_duration) == (2, 2, 100)

    def test_extractor_defaults(self):
        config = ExtractorConfig()

        assert config.ignored_says == ["api_req_started", "api_req_finished"]
        assert "write_to_file" in config.created_tools
        assert "replace_in_file" in config.modified_tools

    def test_engine_defaults(self):
        config = EngineConfig()

        assert config.store_path == DEFAULT_STORE_PATH
        assert config.local_confidence_floor == 0.3
        assert config.logging.level == "INFO"


class TestValidation:
    """Field and model validators."""

    def test_confidence_step_out_of_range(self):
        with pytest.raises(ValidationError):
            ConfidenceConfig(failure_decrease=1.5)

    def test_inverted_confidence_bounds(self):
        with pytest.raises(ValidationError, match="must not exceed"):
            ConfidenceConfig(min_confidence=0.9, max_confidence=0.1)

    @pytest.mark.parametrize("field", ["default_confidence", "fork_confidence"])
    def test_seed_confidence_must_lie_within_bounds(self, field: str):
        with pytest.raises(ValidationError, match=f"{field} \\(0.5\\) must lie within"):
            ConfidenceConfig(
                min_confidence=0.2,
                max_confidence=0.4,
                **{"default_confidence": 0.3, "fork_confidence": 0.3, field: 0.5},
            )

    def test_candidate_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            MatcherConfig(candidate_limit=0)

    def test_semantic_tag_needs_markers(self):
        with pytest.raises(ValidationError):
            SemanticTagConfig(metadata_markers=[], task_keywords=["css"])

    def test_invalid_chunker_regex(self):
        with pytest.raises(ValidationError, match="invalid regex"):
            ChunkerConfig(start_patterns=["(unclosed"])

    def test_log_format_both_requires_file(self):
        with pytest.raises(ValidationError, match="file_path is required"):
            LogConfig(format="both")

    def test_log_format_both_with_file(self, tmp_path: Path):
        config = LogConfig(format="both", file_path=tmp_path / "engram.log")

        assert config.file_path == tmp_path / "engram.log"

    def test_log_level_validation(self):
        with pytest.raises(ValidationError):
            LogConfig(level="TRACE")  # type: ignore[arg-type]

    def test_log_file_size_validation(self):
        with pytest.raises(ValidationError):
            LogConfig(max_file_size_mb=0)


class TestEngineConfigLoading:
    """Loading EngineConfig from YAML."""

    def test_from_yaml_string(self):
        config = EngineConfig.from_yaml_string(
            """
store_path: /tmp/engram/patterns.db
local_confidence_floor: 0.5
confidence:
  fork_threshold: 0.25
matcher:
  candidate_limit: 20
  semantic_tags:
    testing:
      metadata_markers: [test, spec]
      task_keywords: [test]
      bonus: 0.4
logging:
  level: DEBUG
  format: json
"""
        )

        assert config.store_path == Path("/tmp/engram/patterns.db")
        assert config.local_confidence_floor == 0.5
        assert config.confidence.fork_threshold == 0.25
        assert config.confidence.success_increase == 0.1
        assert config.matcher.candidate_limit == 20
        assert set(config.matcher.semantic_tags) == {"testing"}
        assert config.logging.format == "json"

    def test_empty_yaml_gives_defaults(self):
        assert EngineConfig.from_yaml_string("") == EngineConfig()

    def test_from_yaml_file(self, tmp_path: Path):
        path = tmp_path / "engram.yaml"
        path.write_text("extractor:\n  success_bonus: 0.3\n")

        config = EngineConfig.from_yaml(path)

        assert config.extractor.success_bonus == 0.3

    def test_store_path_user_expansion(self):
        config = EngineConfig(store_path=Path("~/patterns.db"))

        assert config.store_path == Path.home() / "patterns.db"

    def test_invalid_nested_value(self):
        with pytest.raises(ValidationError):
            EngineConfig.from_yaml_string("confidence:\n  fork_threshold: 2\n")
