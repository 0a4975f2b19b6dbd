"""Tests for the Engram CLI.

Commands are invoked through the Typer app with ``--db`` pointing at a
temporary database, so every test runs against a real, isolated store.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from engram import __version__
from engram.cli import app
from engram.learning.store import Outcome, PatternRecord, PatternStore, PatternUsage

runner = CliRunner()


def invoke(db_path: Path, *args: str):
    return runner.invoke(app, ["--db", str(db_path), *args])


def invoke_json(db_path: Path, *args: str):
    result = invoke(db_path, *args, "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


# =============================================================================
# Global options
# =============================================================================


class TestGlobalOptions:
    """Tests for app-level options."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"Engram v{__version__}" in result.stdout

    def test_help_lists_commands(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("lookup", "learn", "extract", "ingest", "patterns-list", "stats"):
            assert command in result.stdout

    def test_invalid_config_file(self, tmp_path: Path) -> None:
        config = tmp_path / "engram.yaml"
        config.write_text("confidence:\n  fork_threshold: 5\n")

        result = runner.invoke(app, ["--config", str(config), "stats", "--json"])

        assert result.exit_code == 1
        error = json.loads(result.stdout)
        assert error["success"] is False
        assert error["error_code"] == "E101"

    def test_config_file_store_path(self, tmp_path: Path) -> None:
        db_path = tmp_path / "from-config.db"
        config = tmp_path / "engram.yaml"
        config.write_text(f"store_path: {db_path}\n")

        result = runner.invoke(app, ["--config", str(config), "stats", "--json"])

        assert result.exit_code == 0, result.output
        assert db_path.exists()

    def test_db_overrides_config(self, tmp_path: Path, db_path: Path) -> None:
        config = tmp_path / "engram.yaml"
        config.write_text(f"store_path: {tmp_path / 'ignored.db'}\n")

        result = runner.invoke(
            app, ["--config", str(config), "--db", str(db_path), "stats", "--json"]
        )

        assert result.exit_code == 0, result.output
        assert db_path.exists()
        assert not (tmp_path / "ignored.db").exists()


# =============================================================================
# lookup
# =============================================================================


class TestLookup:
    """Tests for the lookup command."""

    def test_no_patterns_is_remote(self, db_path: Path) -> None:
        data = invoke_json(db_path, "lookup", "create component Card")

        assert data == {"mode": "remote", "pattern": None}

    def test_confident_pattern_is_local(self, store: PatternStore, db_path: Path) -> None:
        pattern_id = store.store_pattern(
            PatternRecord(text="create component Button", context="react", confidence=0.9)
        )

        data = invoke_json(db_path, "lookup", "create component Card", "--context", "react")

        assert data["mode"] == "local"
        assert data["pattern"]["id"] == pattern_id
        assert data["pattern"]["confidence"] == 0.9

    def test_text_output(self, store: PatternStore, db_path: Path) -> None:
        store.store_pattern(PatternRecord(text="create component Button", confidence=0.9))

        result = invoke(db_path, "lookup", "create component Card")

        assert result.exit_code == 0
        assert "Local execution" in result.stdout
        assert "create component Button" in result.stdout

    def test_text_output_without_match(self, db_path: Path) -> None:
        result = invoke(db_path, "lookup", "deploy the service")

        assert result.exit_code == 0
        assert "No trusted pattern found" in result.stdout

    def test_quiet_prints_mode_only(self, db_path: Path) -> None:
        result = runner.invoke(app, ["--db", str(db_path), "-q", "lookup", "deploy"])

        assert result.exit_code == 0
        assert result.stdout.strip() == "remote"


# =============================================================================
# learn / extract / ingest
# =============================================================================


class TestLearn:
    """Tests for the learn command."""

    def test_learn_success(
        self, store: PatternStore, db_path: Path, project_dir: Path
    ) -> None:
        data = invoke_json(
            db_path,
            "learn",
            "create component Card",
            "--created",
            "src/Card.tsx",
            "--project",
            str(project_dir),
        )

        assert data["confidence"] == pytest.approx(0.6)
        pattern = store.get_pattern(data["pattern_id"])
        assert pattern is not None
        assert pattern.metadata == {"status": "success", "files": ["src/Card.tsx"]}

    def test_learn_error_with_feedback(
        self, store: PatternStore, db_path: Path, project_dir: Path
    ) -> None:
        data = invoke_json(
            db_path,
            "learn",
            "fix login bug",
            "--status",
            "error",
            "--error",
            "TypeError",
            "--feedback",
            "check the token",
            "--project",
            str(project_dir),
        )

        assert data["confidence"] == pytest.approx(0.3)
        # main pattern, its fork, and the feedback pattern
        assert len(store.find_patterns("fix login bug")) == 3

    def test_text_output(self, db_path: Path, project_dir: Path) -> None:
        result = invoke(db_path, "learn", "create component Card", "-p", str(project_dir))

        assert result.exit_code == 0
        assert "Learned pattern 1 (confidence 0.60)" in result.stdout

    def test_invalid_status(self, db_path: Path) -> None:
        result = invoke(db_path, "learn", "create component Card", "--status", "done")

        assert result.exit_code == 1
        assert "--status must be" in result.stdout


class TestExtract:
    """Tests for the extract command."""

    def test_extract_transcript(
        self,
        store: PatternStore,
        db_path: Path,
        project_dir: Path,
        tmp_path: Path,
        sample_transcript: list[dict],
    ) -> None:
        transcript = tmp_path / "ui_messages.json"
        transcript.write_text(json.dumps(sample_transcript))

        data = invoke_json(db_path, "extract", str(transcript), "--project", str(project_dir))

        assert data["count"] == 1
        assert store.get_pattern(data["pattern_ids"][0]).text == (  # type: ignore[union-attr]
            "Fix empty array test failure"
        )

    def test_no_episodes(self, db_path: Path, project_dir: Path, tmp_path: Path) -> None:
        transcript = tmp_path / "ui_messages.json"
        transcript.write_text("[]")

        result = invoke(db_path, "extract", str(transcript), "-p", str(project_dir))

        assert result.exit_code == 0
        assert "No task episodes found" in result.stdout

    def test_non_array_transcript(self, db_path: Path, tmp_path: Path) -> None:
        transcript = tmp_path / "ui_messages.json"
        transcript.write_text('{"messages": []}')

        result = invoke(db_path, "extract", str(transcript), "--json")

        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_code"] == "E102"

    def test_invalid_json(self, db_path: Path, tmp_path: Path) -> None:
        transcript = tmp_path / "ui_messages.json"
        transcript.write_text("{oops")

        result = invoke(db_path, "extract", str(transcript))

        assert result.exit_code == 1
        assert "E102" in result.stdout

    def test_missing_file(self, db_path: Path, tmp_path: Path) -> None:
        result = invoke(db_path, "extract", str(tmp_path / "nope.json"))

        assert result.exit_code != 0


class TestIngest:
    """Tests for the ingest command."""

    @pytest.fixture
    def storage(self, tmp_path: Path, sample_transcript: list[dict]) -> Path:
        storage = tmp_path / "storage"
        for task_id, payload in (("t1", sample_transcript), ("t2", "broken")):
            task_dir = storage / "tasks" / task_id
            task_dir.mkdir(parents=True)
            (task_dir / "ui_messages.json").write_text(
                payload if isinstance(payload, str) else json.dumps(payload)
            )
        return storage

    def test_ingest_all(self, db_path: Path, project_dir: Path, storage: Path) -> None:
        data = invoke_json(db_path, "ingest", str(storage), "-p", str(project_dir))

        assert data == {"processed": 1}

    def test_ingest_one_task(self, db_path: Path, project_dir: Path, storage: Path) -> None:
        data = invoke_json(
            db_path, "ingest", str(storage), "--task", "t1", "-p", str(project_dir)
        )

        assert data["task_id"] == "t1"
        assert len(data["pattern_ids"]) == 1

    def test_ingest_broken_task(self, db_path: Path, project_dir: Path, storage: Path) -> None:
        result = invoke(db_path, "ingest", str(storage), "--task", "t2", "-p", str(project_dir))

        assert result.exit_code == 1
        assert "E302" in result.stdout


# =============================================================================
# Pattern inspection
# =============================================================================


class TestPatternsList:
    """Tests for the patterns-list command."""

    def test_empty(self, db_path: Path) -> None:
        result = invoke(db_path, "patterns-list")

        assert result.exit_code == 0
        assert "No patterns found." in result.stdout

    def test_json_filters(self, store: PatternStore, db_path: Path) -> None:
        high = store.store_pattern(PatternRecord(text="create Button", confidence=0.9))
        store.store_pattern(PatternRecord(text="create Card", confidence=0.4))
        store.store_pattern(PatternRecord(text="fix Card", confidence=0.95))

        data = invoke_json(
            db_path, "patterns-list", "--command", "create", "--min-confidence", "0.5"
        )

        assert [p["id"] for p in data] == [high]

    def test_table(self, store: PatternStore, db_path: Path) -> None:
        store.store_pattern(PatternRecord(text="create Button", context="react"))

        result = invoke(db_path, "patterns-list")

        assert result.exit_code == 0
        assert "create Button" in result.stdout
        assert "Showing 1 pattern(s)" in result.stdout


class TestPatternInsights:
    """Tests for the pattern-insights command."""

    def test_missing_pattern(self, db_path: Path) -> None:
        result = invoke(db_path, "pattern-insights", "99")

        assert result.exit_code == 1
        assert "Pattern not found: 99" in result.stdout

    def test_json(self, store: PatternStore, db_path: Path) -> None:
        pattern_id = store.store_pattern(PatternRecord(text="create Button", confidence=0.9))
        store.record_usage(
            PatternUsage(
                pattern_id=pattern_id,
                outcome=Outcome.FAILURE,
                adjustments=["added aria-label"],
            )
        )
        store.validate_and_track_pattern(pattern_id, True, "repo: web", ["renamed prop"])

        data = invoke_json(db_path, "pattern-insights", str(pattern_id))

        assert data["pattern"]["id"] == pattern_id
        assert data["history"] == {
            "successes": 0,
            "failures": 1,
            "adaptations": ["added aria-label"],
        }
        assert [e["changes"] for e in data["evolution"]] == [["renamed prop"]]

    def test_text(self, store: PatternStore, db_path: Path) -> None:
        pattern_id = store.store_pattern(PatternRecord(text="create Button"))

        result = invoke(db_path, "pattern-insights", str(pattern_id))

        assert result.exit_code == 0
        assert "create Button" in result.stdout


class TestValidatePattern:
    """Tests for the validate-pattern command."""

    def test_records_validation(self, store: PatternStore, db_path: Path) -> None:
        pattern_id = store.store_pattern(PatternRecord(text="create Button"))

        data = invoke_json(
            db_path,
            "validate-pattern",
            str(pattern_id),
            "--failure",
            "--context",
            "repo: web",
            "--change",
            "renamed prop",
        )

        assert data == {"pattern_id": pattern_id, "success": False, "changes": 1}
        validations = store.get_pattern_validations(pattern_id)
        assert len(validations) == 1
        assert validations[0].success is False
        assert validations[0].context == "repo: web"
        assert store.get_pattern(pattern_id).confidence == 0.5  # type: ignore[union-attr]

    def test_missing_pattern(self, db_path: Path) -> None:
        result = invoke(db_path, "validate-pattern", "42", "--json")

        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_code"] == "E202"


class TestStats:
    """Tests for the stats command."""

    def test_json(self, store: PatternStore, db_path: Path) -> None:
        store.store_pattern(PatternRecord(text="create Button", confidence=0.8))

        data = invoke_json(db_path, "stats")

        assert data["total_patterns"] == 1
        assert data["avg_confidence"] == pytest.approx(0.8)

    def test_text(self, db_path: Path) -> None:
        result = invoke(db_path, "stats")

        assert result.exit_code == 0
        assert "Pattern Store" in result.stdout
