"""Tests for the log pattern extractor."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from engram.learning.chunker import Checkpoint, CheckpointType, Message, TaskChunk
from engram.learning.exceptions import StorageError
from engram.learning.extractor import (
    LogPatternExtractor,
    categorize,
    derive_intent,
    determine_outcome,
    determine_task_type,
    extract_import_dependencies,
)
from engram.learning.project_context import ProjectContext
from engram.learning.store import Outcome, PatternCategory, PatternStore

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def project(project_dir: Path) -> ProjectContext:
    context = ProjectContext(project_dir)
    context.analyze()
    return context


@pytest.fixture
def extractor(store: PatternStore, project: ProjectContext) -> LogPatternExtractor:
    return LogPatternExtractor(store, project)


def _say(say: str, ts: int, text: str) -> dict:
    return {"type": "say", "say": say, "ts": ts, "text": text}


# =============================================================================
# Pure helpers
# =============================================================================


class TestClassification:
    """Tests for task type and category derivation."""

    @pytest.mark.parametrize(
        ("intent", "expected"),
        [
            ("Update the navbar", "update"),
            ("Fix login bug", "fix"),
            ("Create a Button", "create"),
            ("Implement search", "create"),
            ("Add dark mode", "create"),
            ("Delete old files", "delete"),
            ("Remove dead code", "delete"),
            ("Can you help me", "other"),
        ],
    )
    def test_task_type(self, intent: str, expected: str) -> None:
        assert determine_task_type(intent) == expected

    @pytest.mark.parametrize(
        ("intent", "expected"),
        [
            ("Fix login bug", PatternCategory.DEBUGGING),
            ("Update the navbar", PatternCategory.REFACTORING),
            ("Delete old files", PatternCategory.REFACTORING),
            ("Create a Button", PatternCategory.CODE_GENERATION),
            ("Can you help me", PatternCategory.CODE_GENERATION),
            ("Fix performance of list", PatternCategory.OPTIMIZATION),
            ("Create optimized query", PatternCategory.OPTIMIZATION),
            ("Refactor the store", PatternCategory.REFACTORING),
        ],
    )
    def test_category(self, intent: str, expected: PatternCategory) -> None:
        assert categorize(determine_task_type(intent), intent) == expected


class TestImportDependencies:
    """Tests for extract_import_dependencies."""

    def test_relative_imports_only(self) -> None:
        content = "\n".join([
            "import React from 'react';",
            "import { Button } from './Button';",
            'const util = require("../util");',
            "export { helper } from './helper';",
            "const x = './not-an-import';",
        ])

        assert extract_import_dependencies(content) == ["./Button", "../util", "./helper"]

    def test_empty_content(self) -> None:
        assert extract_import_dependencies("") == []


class TestChunkHelpers:
    """Tests for outcome and intent derivation on hand-built chunks."""

    def _chunk(self, *checkpoints: Checkpoint, intent: str | None = None) -> TaskChunk:
        return TaskChunk(start_ts=0, end_ts=100, checkpoints=list(checkpoints), intent=intent)

    def test_successful_completion_wins_over_errors(self) -> None:
        chunk = self._chunk(
            Checkpoint(10, CheckpointType.ERROR, "boom", success=False),
            Checkpoint(20, CheckpointType.COMPLETION, "Tests passed", success=True),
        )

        assert determine_outcome(chunk) == Outcome.SUCCESS

    def test_error_without_success_is_failure(self) -> None:
        chunk = self._chunk(Checkpoint(10, CheckpointType.ERROR, "boom", success=False))

        assert determine_outcome(chunk) == Outcome.FAILURE

    def test_otherwise_partial(self) -> None:
        chunk = self._chunk(Checkpoint(20, CheckpointType.COMPLETION, "ended"))

        assert determine_outcome(chunk) == Outcome.PARTIAL

    def test_intent_falls_back_to_first_non_json_message(self) -> None:
        chunk = TaskChunk(
            start_ts=0,
            end_ts=1,
            messages=[
                Message(type="say", ts=0, text='{"tool": "x"}', say="tool"),
                Message(type="say", ts=1, text="make it blue", say="text"),
            ],
        )

        assert derive_intent(chunk) == "make it blue"

    def test_intent_for_json_only_chunk(self) -> None:
        chunk = TaskChunk(
            start_ts=0, end_ts=0, messages=[Message(type="say", ts=0, text="{}", say="tool")]
        )

        assert derive_intent(chunk) == "Some JSON-based task"

    def test_intent_for_empty_chunk(self) -> None:
        assert derive_intent(TaskChunk(start_ts=0, end_ts=0)) == "No messages in chunk"

    def test_unparsable_tool_payload_is_kept_raw(
        self, extractor: LogPatternExtractor
    ) -> None:
        chunk = self._chunk(Checkpoint(10, CheckpointType.TOOL_USAGE, "oops", success=True))

        usages = extractor.extract_tool_usage(chunk)

        assert len(usages) == 1
        assert usages[0].tool == "unknown"
        assert usages[0].params == {}
        assert usages[0].raw == "oops"

    def test_adjustments_are_tools_after_first_error(self) -> None:
        chunk = self._chunk(
            Checkpoint(10, CheckpointType.TOOL_USAGE, "first"),
            Checkpoint(20, CheckpointType.ERROR, "boom"),
            Checkpoint(30, CheckpointType.TOOL_USAGE, "retry"),
        )

        assert LogPatternExtractor.extract_adjustments(chunk) == ["retry"]


# =============================================================================
# End-to-end extraction
# =============================================================================


class TestExtractPatterns:
    """Tests for LogPatternExtractor.extract_patterns."""

    def test_successful_episode(
        self,
        extractor: LogPatternExtractor,
        store: PatternStore,
        project: ProjectContext,
        sample_transcript: list[dict],
    ) -> None:
        ids = extractor.extract_patterns(sample_transcript)

        assert len(ids) == 1
        pattern = store.get_pattern(ids[0])
        assert pattern is not None
        assert pattern.text == "Fix empty array test failure"
        assert pattern.context == project.get_current_context()
        assert pattern.timestamp == 1000
        # 0.5 base + 0.2 success + 0.1 tool usage, then +0.1 for the usage event
        assert pattern.confidence == pytest.approx(0.9)

        metadata = pattern.metadata
        assert metadata is not None
        assert metadata["taskType"] == "fix"
        assert metadata["outcome"] == {"status": "success", "error": None, "feedback": None}
        assert metadata["fileChanges"][0]["filePath"] == "src/sum.ts"  # type: ignore[index]
        assert metadata["fileChanges"][0]["type"] == "created"  # type: ignore[index]
        assert metadata["dependencies"] == ["./x"]
        assert metadata["projectState"] == {
            "dependencies": {"jest": "29.0.0", "react": "18.2.0"},
            "fileTypes": [".json", ".ts", ".tsx"],
        }

    def test_learning_row(
        self,
        extractor: LogPatternExtractor,
        store: PatternStore,
        project: ProjectContext,
        sample_transcript: list[dict],
    ) -> None:
        extractor.extract_patterns(sample_transcript)

        learned = store.find_by_fingerprint(project.get_current_context())

        assert len(learned) == 1
        assert learned[0].category == PatternCategory.DEBUGGING
        assert learned[0].execution.outcome == Outcome.SUCCESS
        assert [op.type for op in learned[0].execution.operations] == ["write_to_file"]
        assert learned[0].execution.operations[0].params["path"] == "src/sum.ts"
        assert learned[0].project_context.dependencies == ["jest", "react", "./x"]
        assert learned[0].project_context.file_types == [".json", ".ts", ".tsx"]

    def test_usage_event_recorded(
        self,
        extractor: LogPatternExtractor,
        store: PatternStore,
        sample_transcript: list[dict],
    ) -> None:
        [pattern_id] = extractor.extract_patterns(sample_transcript)

        usage = store.get_pattern_usage(pattern_id)

        assert [u.outcome for u in usage] == [Outcome.SUCCESS]

    def test_failed_episode_forks(
        self, extractor: LogPatternExtractor, store: PatternStore
    ) -> None:
        transcript = [
            _say("text", 0, "Create deploy script"),
            _say("tool", 100, '{"tool": "write_to_file", "params": {"path": "deploy.sh"}}'),
            _say("error", 200, "Permission denied"),
            _say("tool", 300, '{"tool": "replace_in_file", "params": {"path": "deploy.sh"}}'),
        ]

        [pattern_id] = extractor.extract_patterns(transcript)

        pattern = store.get_pattern(pattern_id)
        assert pattern is not None
        # 0.5 - 0.2 failure + 0.1 tool usage = 0.4, then -0.2 for the failed usage
        assert pattern.confidence == pytest.approx(0.2)
        assert pattern.metadata["outcome"]["error"] == "Permission denied"  # type: ignore[index]
        assert pattern.metadata["errorPatterns"] == ["Permission denied"]  # type: ignore[index]
        assert len(store.find_patterns("Create deploy script")) == 2
        history = store.get_pattern_history(pattern_id)
        assert history.failures == 1
        assert len(history.adaptations) == 1
        assert "replace_in_file" in history.adaptations[0]

    def test_partial_episode(self, extractor: LogPatternExtractor, store: PatternStore) -> None:
        transcript = [
            _say("text", 0, "Add dark mode"),
            _say("tool", 100, '{"tool": "edit_file", "params": {"path": "a.css", "diff": "+x"}}'),
            _say("user_feedback", 200, "use CSS variables"),
        ]

        [pattern_id] = extractor.extract_patterns(transcript)

        pattern = store.get_pattern(pattern_id)
        assert pattern is not None
        # 0.5 + 0.1 partial + 0.1 tool usage = 0.7, then +0.05 for the partial usage
        assert pattern.confidence == pytest.approx(0.75)
        assert pattern.metadata["outcome"]["feedback"] == "use CSS variables"  # type: ignore[index]
        assert pattern.metadata["fileChanges"][0]["type"] == "modified"  # type: ignore[index]
        assert pattern.metadata["fileChanges"][0]["content"] == "+x"  # type: ignore[index]

    def test_multiple_episodes_in_order(
        self, extractor: LogPatternExtractor, store: PatternStore
    ) -> None:
        transcript = [
            _say("text", 0, "Create a form"),
            _say("tool", 100, '{"tool": "write_to_file"}'),
            _say("text", 200, "Tests passed"),
            _say("text", 1000, "Update the header"),
            _say("tool", 1100, '{"tool": "edit_file"}'),
            _say("text", 1200, "Tests passed"),
        ]

        ids = extractor.extract_patterns(transcript)

        assert [store.get_pattern(i).text for i in ids] == [  # type: ignore[union-attr]
            "Create a form",
            "Update the header",
        ]

    def test_ignored_message_kinds_are_dropped(
        self, extractor: LogPatternExtractor, store: PatternStore
    ) -> None:
        transcript = [
            Message(type="say", ts=0, text="Create a form", say="text"),
            Message(type="say", ts=50, text='{"request": 1}', say="api_req_started"),
            Message(type="say", ts=100, text='{"tool": "write_to_file"}', say="tool"),
            Message(type="say", ts=200, text="Tests passed", say="text"),
        ]

        [pattern_id] = extractor.extract_patterns(transcript)

        learned = store.find_by_fingerprint(store.get_pattern(pattern_id).context)  # type: ignore[union-attr, arg-type]
        assert len(learned) == 1

    def test_no_episodes(self, extractor: LogPatternExtractor) -> None:
        assert extractor.extract_patterns([_say("text", 0, "hello")]) == []

    def test_storage_failure_propagates_and_logs(
        self, project: ProjectContext, sample_transcript: list[dict]
    ) -> None:
        store = MagicMock()
        store.store_learning_pattern.side_effect = StorageError("disk full")
        extractor = LogPatternExtractor(store, project)

        with capture_logs() as logs, pytest.raises(StorageError):
            extractor.extract_patterns(sample_transcript)

        failures = [entry for entry in logs if entry["event"] == "chunk_processing_failed"]
        assert len(failures) == 1
        assert failures[0]["start_ts"] == 1000
        assert failures[0]["log_level"] == "error"
