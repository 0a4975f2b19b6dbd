"""Pytest fixtures for Engram tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from engram.learning.store import PatternStore


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset CLI and logging state before and after each test.

    This ensures test isolation for logging configuration and global options.
    """
    import engram.cli as cli_module

    helpers = cli_module.helpers
    helpers.reset_logging_state()
    helpers.reset_store_options()
    helpers.set_output_level(helpers.OutputLevel.NORMAL)
    helpers._log_config.level = "WARNING"
    helpers._log_config.file = None
    helpers._log_config.format = "console"

    # Reset structlog to default state
    structlog.reset_defaults()

    # Clear all handlers from root logger
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    helpers.reset_logging_state()
    helpers.reset_store_options()
    helpers.set_output_level(helpers.OutputLevel.NORMAL)

    # Restore original handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of a fresh pattern database."""
    return tmp_path / "patterns.db"


@pytest.fixture
def store(db_path: Path) -> PatternStore:
    """A PatternStore backed by a temporary database."""
    return PatternStore(db_path)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A small project tree with a package.json."""
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    (project / "src" / "App.tsx").write_text("export const App = () => null;\n")
    (project / "src" / "index.ts").write_text("import { App } from './App';\n")
    (project / "package.json").write_text(
        '{"dependencies": {"react": "18.2.0"}, "devDependencies": {"jest": "29.0.0"}}'
    )
    return project


@pytest.fixture
def sample_transcript() -> list[dict]:
    """A transcript with one successful task episode."""
    return [
        {"type": "say", "say": "api_req_started", "ts": 900, "text": "{}"},
        {"type": "say", "say": "text", "ts": 1000, "text": "Fix empty array test failure"},
        {
            "type": "say",
            "say": "tool",
            "ts": 1100,
            "text": (
                '{"tool": "write_to_file", "path": "src/sum.ts", '
                '"content": "import { x } from \'./x\';\\nexport const sum = 1;"}'
            ),
        },
        {"type": "say", "say": "text", "ts": 1200, "text": "Tests passing now"},
    ]
