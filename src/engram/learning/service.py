"""Task log ingestion.

The agent persists each task's transcript as
``<storage>/tasks/<task_id>/ui_messages.json``. PatternService feeds those
transcripts to the log pattern extractor. A task that cannot be processed is
logged and skipped; one bad transcript never stops the others.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path

from engram.core.logging import LearningContext, get_logger, with_context
from engram.learning.exceptions import EngramError
from engram.learning.extractor import LogPatternExtractor

_logger = get_logger("learning.service")

UI_MESSAGES_FILE = "ui_messages.json"
TASKS_DIR = "tasks"


class PatternService:
    """Processes stored task transcripts into learned patterns."""

    def __init__(self, extractor: LogPatternExtractor) -> None:
        self.extractor = extractor
        self._processing: set[str] = set()
        self._lock = threading.Lock()

    def process_task_logs(self, task_id: str, storage_path: Path) -> list[int] | None:
        """Learn from one task's transcript.

        A task already being processed is skipped. Unreadable transcripts and
        learning failures are logged, not raised.

        Returns:
            The stored pattern IDs, or None if the task was skipped or failed.
        """
        with self._lock:
            if task_id in self._processing:
                _logger.debug("task_already_processing", task_id=task_id)
                return None
            self._processing.add(task_id)

        messages_path = Path(storage_path) / TASKS_DIR / task_id / UI_MESSAGES_FILE
        try:
            with with_context(LearningContext(task_id=task_id, component="service")):
                messages = json.loads(messages_path.read_text(encoding="utf-8"))
                if not isinstance(messages, list):
                    _logger.warning(
                        "task_log_invalid",
                        path=str(messages_path),
                        reason="expected a JSON array of messages",
                    )
                    return None
                pattern_ids = self.extractor.extract_patterns(
                    m for m in messages if isinstance(m, dict)
                )
                _logger.info("task_logs_processed", patterns=len(pattern_ids))
                return pattern_ids
        except (OSError, ValueError, EngramError) as e:
            _logger.warning(
                "task_log_processing_failed",
                task_id=task_id,
                path=str(messages_path),
                error=f"{type(e).__name__}: {e}",
            )
            return None
        finally:
            with self._lock:
                self._processing.discard(task_id)

    def process_pending_tasks(self, storage_path: Path) -> int:
        """Learn from every task directory under ``<storage>/tasks``.

        Returns:
            Number of tasks processed successfully.
        """
        tasks_dir = Path(storage_path) / TASKS_DIR
        if not tasks_dir.is_dir():
            _logger.warning("tasks_dir_missing", path=str(tasks_dir))
            return 0

        processed = 0
        task_ids = sorted(entry.name for entry in tasks_dir.iterdir() if entry.is_dir())
        for task_id in task_ids:
            if self.process_task_logs(task_id, storage_path) is not None:
                processed += 1

        _logger.info("pending_tasks_processed", total=len(task_ids), processed=processed)
        return processed
