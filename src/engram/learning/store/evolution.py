"""Evolution, validation, and history mixin for PatternStore.

Append-only audit records and the queries that aggregate them:
- track_evolution: Record a fork or edit of a pattern
- validate_pattern / update_pattern_validation: Record applicability checks
- validate_and_track_pattern: Validation plus evolution, atomically
- get_pattern_evolution / get_pattern_usage / get_pattern_validations
- get_pattern_history / get_pattern_insights: Aggregated views
"""

import json
import sqlite3
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager

from engram.core.logging import EngramLogger
from engram.learning.store.base import _logger, now_ms
from engram.learning.store.models import (
    Outcome,
    PatternEvolution,
    PatternHistory,
    PatternInsights,
    PatternUsage,
    PatternValidation,
)


def _load_list(blob: str | None, *, pattern_id: int, field: str) -> list[str]:
    if not blob:
        return []
    try:
        value = json.loads(blob)
    except json.JSONDecodeError:
        _logger.warning("audit_field_unparsable", pattern_id=pattern_id, field=field)
        return []
    if not isinstance(value, list):
        return [str(value)]
    return [str(item) for item in value]


class EvolutionMixin:
    """Mixin providing evolution, validation and history methods.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    - batch_connection(): Context manager for multi-statement units
    - _require_pattern(): Existence check raising PatternNotFoundError
    """

    _logger: EngramLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    batch_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _require_pattern: Callable[[sqlite3.Connection, int], sqlite3.Row]

    # =========================================================================
    # Writes
    # =========================================================================

    def track_evolution(
        self,
        pattern_id: int,
        changes: Sequence[str],
        outcome: Outcome,
    ) -> int:
        """Append an evolution record to a pattern.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        with self._get_connection() as conn:
            self._require_pattern(conn, pattern_id)
            cursor = conn.execute(
                """
                INSERT INTO pattern_evolution (original_pattern_id, changes, outcome, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (pattern_id, json.dumps(list(changes)), Outcome(outcome).value, now_ms()),
            )
            evolution_id = cursor.lastrowid

        self._logger.debug(
            "evolution_tracked",
            pattern_id=pattern_id,
            changes=len(changes),
            outcome=Outcome(outcome).value,
        )
        assert evolution_id is not None
        return evolution_id

    def validate_pattern(self, pattern_id: int, success: bool, context: str) -> int:
        """Record an explicit applicability check of a pattern.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        with self._get_connection() as conn:
            return self._insert_validation(conn, pattern_id, success, context, now_ms(), None)

    def update_pattern_validation(
        self,
        pattern_id: int,
        outcome: Outcome,
        project_context: str,
        adjustments: Sequence[str] = (),
        timestamp: int | None = None,
    ) -> int:
        """Record a validation whose metadata carries the adjustments made.

        Only ``Outcome.SUCCESS`` counts as a successful validation.
        """
        metadata = {"adjustments": list(adjustments)}
        with self._get_connection() as conn:
            return self._insert_validation(
                conn,
                pattern_id,
                Outcome(outcome) == Outcome.SUCCESS,
                project_context,
                timestamp if timestamp is not None else now_ms(),
                metadata,
            )

    def validate_and_track_pattern(
        self,
        pattern_id: int,
        success: bool,
        context: str,
        changes: Sequence[str] | None = None,
    ) -> None:
        """Validate a pattern and, when changes are given, track them.

        Both records are written in one transaction.
        """
        with self.batch_connection() as conn:
            timestamp = now_ms()
            self._insert_validation(conn, pattern_id, success, context, timestamp, None)
            if changes:
                conn.execute(
                    """
                    INSERT INTO pattern_evolution (original_pattern_id, changes, outcome, timestamp)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        pattern_id,
                        json.dumps(list(changes)),
                        Outcome.from_success(success).value,
                        timestamp,
                    ),
                )

    def _insert_validation(
        self,
        conn: sqlite3.Connection,
        pattern_id: int,
        success: bool,
        context: str,
        timestamp: int,
        metadata: dict[str, list[str]] | None,
    ) -> int:
        self._require_pattern(conn, pattern_id)
        cursor = conn.execute(
            """
            INSERT INTO pattern_validation (pattern_id, success, context, timestamp, metadata)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                pattern_id,
                1 if success else 0,
                context,
                timestamp,
                json.dumps(metadata) if metadata is not None else None,
            ),
        )
        self._logger.debug("pattern_validated", pattern_id=pattern_id, success=success)
        validation_id = cursor.lastrowid
        assert validation_id is not None
        return validation_id

    # =========================================================================
    # Reads
    # =========================================================================

    def get_pattern_evolution(self, pattern_id: int) -> list[PatternEvolution]:
        """Get the evolution records of a pattern, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pattern_evolution
                WHERE original_pattern_id = ?
                ORDER BY timestamp DESC, id DESC
                """,
                (pattern_id,),
            ).fetchall()

        return [
            PatternEvolution(
                id=row["id"],
                original_pattern_id=row["original_pattern_id"],
                changes=_load_list(row["changes"], pattern_id=pattern_id, field="changes"),
                outcome=Outcome(row["outcome"]),
                timestamp=row["timestamp"],
            )
            for row in rows
        ]

    def get_pattern_usage(self, pattern_id: int) -> list[PatternUsage]:
        """Get the usage events of a pattern, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pattern_usage
                WHERE pattern_id = ?
                ORDER BY timestamp DESC, id DESC
                """,
                (pattern_id,),
            ).fetchall()

        return [
            PatternUsage(
                pattern_id=row["pattern_id"],
                outcome=Outcome(row["outcome"]),
                timestamp=row["timestamp"],
                feedback=row["feedback"],
                adjustments=_load_list(
                    row["adjustments"], pattern_id=pattern_id, field="adjustments"
                ),
            )
            for row in rows
        ]

    def get_pattern_validations(self, pattern_id: int) -> list[PatternValidation]:
        """Get the validation records of a pattern, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pattern_validation
                WHERE pattern_id = ?
                ORDER BY timestamp DESC, id DESC
                """,
                (pattern_id,),
            ).fetchall()

        validations = []
        for row in rows:
            metadata = None
            if row["metadata"]:
                try:
                    metadata = json.loads(row["metadata"])
                except json.JSONDecodeError:
                    _logger.warning(
                        "audit_field_unparsable", pattern_id=pattern_id, field="metadata"
                    )
            validations.append(
                PatternValidation(
                    id=row["id"],
                    pattern_id=row["pattern_id"],
                    success=bool(row["success"]),
                    context=row["context"],
                    timestamp=row["timestamp"],
                    metadata=metadata,
                )
            )
        return validations

    def get_pattern_history(self, pattern_id: int) -> PatternHistory:
        """Aggregate usage counts and recorded adaptations of a pattern.

        Adaptations are the adjustments of every usage event, oldest first.
        Unknown pattern IDs yield an empty history.
        """
        with self._get_connection() as conn:
            counts = conn.execute(
                """
                SELECT
                    COUNT(CASE WHEN outcome = 'success' THEN 1 END) AS successes,
                    COUNT(CASE WHEN outcome = 'failure' THEN 1 END) AS failures
                FROM pattern_usage
                WHERE pattern_id = ?
                """,
                (pattern_id,),
            ).fetchone()
            rows = conn.execute(
                """
                SELECT adjustments FROM pattern_usage
                WHERE pattern_id = ? AND adjustments IS NOT NULL
                ORDER BY timestamp ASC, id ASC
                """,
                (pattern_id,),
            ).fetchall()

        adaptations: list[str] = []
        for row in rows:
            adaptations.extend(
                _load_list(row["adjustments"], pattern_id=pattern_id, field="adjustments")
            )

        return PatternHistory(
            successes=counts["successes"],
            failures=counts["failures"],
            adaptations=adaptations,
        )

    def get_pattern_insights(self, pattern_id: int) -> PatternInsights:
        """Combine a pattern's evolution lineage with its usage history."""
        return PatternInsights(
            evolution=self.get_pattern_evolution(pattern_id),
            history=self.get_pattern_history(pattern_id),
        )
