"""Learning pattern mixin for PatternStore.

Learning patterns are base patterns plus a ``learning_patterns`` row holding
the project fingerprint, the serialized execution, and the category.

Provides:
- store_learning_pattern: Pattern row + learning row (+ usage) atomically
- find_by_fingerprint: Learning patterns recorded in a project
- find_similar_learning_patterns: Same category, overlapping fingerprint
- update_learning_metadata: JSON-merge a patch into the execution data
- get_stats: Store-wide counts
"""

import json
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import replace
from typing import Any

from engram.core.config import ConfidenceConfig
from engram.core.logging import EngramLogger
from engram.learning.exceptions import PatternNotFoundError
from engram.learning.store.base import _logger
from engram.learning.store.models import (
    ExecutionData,
    LearningPattern,
    PatternCategory,
    PatternRecord,
    PatternUsage,
    ProjectFingerprint,
)
from engram.learning.store.patterns_query import row_to_pattern


def _row_to_learning_pattern(row: sqlite3.Row) -> LearningPattern:
    base = row_to_pattern(row)

    try:
        execution_data = json.loads(row["execution_data"])
    except json.JSONDecodeError:
        _logger.warning("execution_data_unparsable", pattern_id=base.id)
        execution_data = {}
    if not isinstance(execution_data, dict):
        execution_data = {}

    project = execution_data.get("projectContext") or {}
    try:
        category = PatternCategory(row["category"])
    except ValueError:
        _logger.warning("unknown_category", pattern_id=base.id, category=row["category"])
        category = PatternCategory.CODE_GENERATION

    return LearningPattern(
        id=base.id,
        text=base.text,
        context=base.context,
        metadata=base.metadata,
        confidence=base.confidence,
        timestamp=base.timestamp,
        project_context=ProjectFingerprint(
            fingerprint=row["project_fingerprint"],
            file_types=list(project.get("fileTypes", [])),
            dependencies=list(project.get("dependencies", [])),
        ),
        execution=ExecutionData.from_dict(execution_data),
        category=category,
    )


_LEARNING_SELECT = """
    SELECT p.*, lp.project_fingerprint, lp.execution_data, lp.category
    FROM learning_patterns lp
    JOIN patterns p ON p.id = lp.pattern_id
"""


class LearningPatternMixin:
    """Mixin providing learning pattern persistence.

    This mixin requires that the composed class provides:
    - _get_connection() / batch_connection(): Connection context managers
    - _prepare_pattern() / _insert_pattern(): Validated pattern inserts
    - _record_usage(): Usage insert plus confidence update on a connection
    """

    _logger: EngramLogger
    _confidence_config: ConfidenceConfig
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    batch_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _prepare_pattern: Callable[[PatternRecord], tuple[Any, ...]]
    _insert_pattern: Callable[[sqlite3.Connection, tuple[Any, ...]], int]
    _record_usage: Callable[[sqlite3.Connection, PatternUsage, ConfidenceConfig], float]

    def store_learning_pattern(
        self,
        pattern: LearningPattern,
        usage: PatternUsage | None = None,
    ) -> int:
        """Store a learning pattern, optionally with its first usage event.

        The pattern row, the learning row, and the usage event (with its
        confidence update) are written in a single transaction, so a failure
        leaves nothing behind.

        Args:
            pattern: The learning pattern to store.
            usage: Usage event to record against the new pattern. Its
                ``pattern_id`` is replaced with the new pattern's ID.

        Returns:
            The new pattern ID.
        """
        row = self._prepare_pattern(pattern)
        execution_data = {
            **pattern.execution.to_dict(),
            "projectContext": pattern.project_context.to_dict(),
        }

        with self.batch_connection() as conn:
            pattern_id = self._insert_pattern(conn, row)
            conn.execute(
                """
                INSERT INTO learning_patterns (
                    pattern_id, project_fingerprint, execution_data, category
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    pattern_id,
                    pattern.project_context.fingerprint,
                    json.dumps(execution_data),
                    PatternCategory(pattern.category).value,
                ),
            )
            if usage is not None:
                self._record_usage(
                    conn, replace(usage, pattern_id=pattern_id), self._confidence_config
                )

        self._logger.info(
            "learning_pattern_stored",
            pattern_id=pattern_id,
            category=PatternCategory(pattern.category).value,
            outcome=pattern.execution.outcome.value,
            operations=len(pattern.execution.operations),
        )
        return pattern_id

    def find_by_fingerprint(self, fingerprint: str) -> list[LearningPattern]:
        """Get the learning patterns recorded under a project fingerprint."""
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                {_LEARNING_SELECT}
                WHERE lp.project_fingerprint = ?
                ORDER BY p.timestamp DESC, p.id DESC
                """,
                (fingerprint,),
            ).fetchall()
        return [_row_to_learning_pattern(row) for row in rows]

    def find_similar_learning_patterns(
        self,
        pattern: LearningPattern,
        limit: int = 5,
    ) -> list[LearningPattern]:
        """Find learning patterns of the same category in a related project.

        A stored pattern is related when its fingerprint contains the given
        pattern's fingerprint.

        Returns:
            Up to ``limit`` patterns, highest confidence first.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                f"""
                {_LEARNING_SELECT}
                WHERE lp.category = ?
                  AND instr(lp.project_fingerprint, ?) > 0
                ORDER BY p.confidence DESC, p.timestamp DESC
                LIMIT ?
                """,
                (
                    PatternCategory(pattern.category).value,
                    pattern.project_context.fingerprint,
                    limit,
                ),
            ).fetchall()
        return [_row_to_learning_pattern(row) for row in rows]

    def update_learning_metadata(self, pattern_id: int, patch: dict[str, Any]) -> None:
        """Merge a JSON patch into a learning pattern's execution data.

        Uses RFC 7396 merge semantics: keys set to None are removed.

        Raises:
            PatternNotFoundError: If no learning row exists for the pattern.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE learning_patterns
                SET execution_data = json_patch(execution_data, json(?))
                WHERE pattern_id = ?
                """,
                (json.dumps(patch), pattern_id),
            )
            if cursor.rowcount == 0:
                raise PatternNotFoundError(pattern_id)

        self._logger.debug(
            "learning_metadata_updated", pattern_id=pattern_id, keys=sorted(patch)
        )

    def get_stats(self) -> dict[str, Any]:
        """Get store-wide statistics.

        Returns:
            Dictionary with pattern, usage, evolution and validation counts,
            the average confidence, and per-outcome and per-category counts.
        """
        with self._get_connection() as conn:
            stats: dict[str, Any] = {}

            row = conn.execute(
                "SELECT COUNT(*) AS count, AVG(confidence) AS avg FROM patterns"
            ).fetchone()
            stats["total_patterns"] = row["count"]
            stats["avg_confidence"] = row["avg"] or 0.0

            for table, key in (
                ("learning_patterns", "learning_patterns"),
                ("pattern_usage", "usage_events"),
                ("pattern_evolution", "evolution_events"),
                ("pattern_validation", "validations"),
            ):
                stats[key] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

            stats["outcomes"] = {
                row["outcome"]: row["count"]
                for row in conn.execute(
                    "SELECT outcome, COUNT(*) AS count FROM pattern_usage GROUP BY outcome"
                )
            }
            stats["categories"] = {
                row["category"]: row["count"]
                for row in conn.execute(
                    "SELECT category, COUNT(*) AS count FROM learning_patterns GROUP BY category"
                )
            }

        return stats
