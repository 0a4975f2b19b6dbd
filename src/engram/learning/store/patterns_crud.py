"""Pattern CRUD and confidence mixin for PatternStore.

Provides methods for creating patterns and evolving their confidence:
- store_pattern / store_patterns: Validated single and bulk inserts
- update_confidence: Apply the confidence rule for one outcome
- record_usage: Append a usage event and apply its outcome atomically
- _fork_pattern: Reset lineage for a pattern whose confidence collapsed
"""

import json
import math
import sqlite3
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from typing import Any

from engram.core.config import ConfidenceConfig
from engram.core.logging import EngramLogger
from engram.learning.exceptions import PatternNotFoundError, PatternValidationError
from engram.learning.store.base import now_ms
from engram.learning.store.confidence import (
    adjust_confidence,
    clamp_confidence,
    resolve_config,
    should_fork,
)
from engram.learning.store.models import (
    Outcome,
    PatternRecord,
    PatternUsage,
    command_of,
)

# (text, context, command, timestamp, metadata, confidence)
_PatternRow = tuple[str, str | None, str, int, str | None, float]


class PatternCrudMixin:
    """Mixin providing pattern creation and confidence evolution.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    - batch_connection(): Context manager for multi-statement units
    - _next_timestamp(): Monotonic default timestamp source
    - _confidence_config: Store-wide confidence defaults
    """

    _logger: EngramLogger
    _confidence_config: ConfidenceConfig
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    batch_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _next_timestamp: Callable[[], int]

    def _prepare_pattern(self, pattern: PatternRecord) -> _PatternRow:
        """Validate a pattern and build its insert parameters.

        Raises:
            PatternValidationError: If text is empty, confidence is out of
                range, or metadata cannot be serialized.
        """
        if not isinstance(pattern.text, str) or not pattern.text.strip():
            raise PatternValidationError("Pattern text must be a non-empty string")
        text = pattern.text.strip()

        if pattern.context is not None and not isinstance(pattern.context, str):
            raise PatternValidationError(
                f"Pattern context must be a string, got {type(pattern.context).__name__}"
            )

        bounds = self._confidence_config
        confidence = pattern.confidence
        if confidence is None:
            confidence = bounds.default_confidence
        if (
            isinstance(confidence, bool)
            or not isinstance(confidence, int | float)
            or math.isnan(confidence)
            or not bounds.min_confidence <= confidence <= bounds.max_confidence
        ):
            raise PatternValidationError(
                f"Pattern confidence must be within "
                f"[{bounds.min_confidence}, {bounds.max_confidence}], got {confidence!r}"
            )

        timestamp = pattern.timestamp
        if timestamp is None:
            timestamp = self._next_timestamp()
        elif isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise PatternValidationError(
                f"Pattern timestamp must be epoch milliseconds, got {timestamp!r}"
            )

        metadata: str | None = None
        if pattern.metadata is not None:
            try:
                metadata = json.dumps(pattern.metadata)
            except (TypeError, ValueError) as e:
                raise PatternValidationError(
                    f"Pattern metadata is not serializable: {e}"
                ) from e

        return (text, pattern.context, command_of(text), timestamp, metadata, float(confidence))

    @staticmethod
    def _insert_pattern(conn: sqlite3.Connection, row: _PatternRow) -> int:
        cursor = conn.execute(
            """
            INSERT INTO patterns (text, context, command, timestamp, metadata, confidence)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            row,
        )
        pattern_id = cursor.lastrowid
        assert pattern_id is not None
        return pattern_id

    def store_pattern(self, pattern: PatternRecord) -> int:
        """Insert a new pattern.

        The text is trimmed, metadata is serialized as JSON, and a missing
        confidence defaults to 0.5. A missing timestamp is assigned from a
        strictly increasing clock.

        Args:
            pattern: The pattern to store. Its ``id`` is ignored.

        Returns:
            The new pattern ID.

        Raises:
            PatternValidationError: If the pattern fails shape checks.
            StorageError: If the database write fails.
        """
        row = self._prepare_pattern(pattern)
        with self._get_connection() as conn:
            pattern_id = self._insert_pattern(conn, row)

        self._logger.debug(
            "pattern_stored",
            pattern_id=pattern_id,
            command=row[2],
            context=row[1],
            confidence=row[5],
        )
        return pattern_id

    def store_patterns(self, patterns: Sequence[PatternRecord]) -> list[int]:
        """Insert several patterns in a single transaction.

        Every pattern is validated before anything is written; either all of
        them are stored or none are.

        Returns:
            The new pattern IDs, in input order.
        """
        rows = [self._prepare_pattern(p) for p in patterns]
        if not rows:
            return []

        with self.batch_connection() as conn:
            ids = [self._insert_pattern(conn, row) for row in rows]

        self._logger.info("patterns_stored", count=len(ids))
        return ids

    def update_confidence(
        self,
        pattern_id: int,
        success: bool | Outcome,
        options: ConfidenceConfig | dict[str, Any] | None = None,
    ) -> float:
        """Apply the confidence rule for one outcome to a pattern.

        A failure that drives confidence to or below the fork threshold also
        forks the pattern (see ``_fork_pattern``), in the same transaction.

        Args:
            pattern_id: The pattern to update.
            success: True/False for success/failure, or an explicit Outcome
                (allows ``Outcome.PARTIAL``).
            options: Per-update overrides of the confidence configuration.

        Returns:
            The pattern's new confidence.

        Raises:
            PatternNotFoundError: If the pattern does not exist.
        """
        outcome = success if isinstance(success, Outcome) else Outcome.from_success(success)
        config = resolve_config(self._confidence_config, options)
        with self.batch_connection() as conn:
            return self._apply_outcome(conn, pattern_id, outcome, config)

    def record_usage(
        self,
        usage: PatternUsage,
        options: ConfidenceConfig | dict[str, Any] | None = None,
    ) -> float:
        """Append a usage event and apply the confidence rule for its outcome.

        Both writes happen in one transaction.

        Returns:
            The pattern's new confidence.

        Raises:
            PatternNotFoundError: If the referenced pattern does not exist.
        """
        config = resolve_config(self._confidence_config, options)
        with self.batch_connection() as conn:
            return self._record_usage(conn, usage, config)

    def _record_usage(
        self,
        conn: sqlite3.Connection,
        usage: PatternUsage,
        config: ConfidenceConfig,
    ) -> float:
        outcome = Outcome(usage.outcome)
        self._require_pattern(conn, usage.pattern_id)
        conn.execute(
            """
            INSERT INTO pattern_usage (pattern_id, timestamp, outcome, feedback, adjustments)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                usage.pattern_id,
                usage.timestamp if usage.timestamp is not None else now_ms(),
                outcome.value,
                usage.feedback,
                json.dumps(usage.adjustments) if usage.adjustments else None,
            ),
        )
        return self._apply_outcome(conn, usage.pattern_id, outcome, config)

    @staticmethod
    def _require_pattern(conn: sqlite3.Connection, pattern_id: int) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
        if row is None:
            raise PatternNotFoundError(pattern_id)
        return row

    def _apply_outcome(
        self,
        conn: sqlite3.Connection,
        pattern_id: int,
        outcome: Outcome,
        config: ConfidenceConfig,
    ) -> float:
        row = self._require_pattern(conn, pattern_id)
        old_confidence = row["confidence"]
        new_confidence = adjust_confidence(old_confidence, outcome, config)
        conn.execute(
            "UPDATE patterns SET confidence = ? WHERE id = ?",
            (new_confidence, pattern_id),
        )

        self._logger.debug(
            "confidence_updated",
            pattern_id=pattern_id,
            outcome=outcome.value,
            old_confidence=round(old_confidence, 3),
            new_confidence=round(new_confidence, 3),
        )

        if should_fork(new_confidence, outcome, config):
            self._fork_pattern(conn, row, new_confidence, config)

        return new_confidence

    def _fork_pattern(
        self,
        conn: sqlite3.Connection,
        row: sqlite3.Row,
        collapsed_confidence: float,
        config: ConfidenceConfig,
    ) -> int:
        """Insert a fresh copy of a collapsed pattern.

        The copy keeps text, context and metadata, gets ``fork_confidence``
        and a new timestamp. The original stays in place with its low
        confidence, and an evolution row on it records the fork.
        """
        fork_id = self._insert_pattern(
            conn,
            (
                row["text"],
                row["context"],
                row["command"],
                self._next_timestamp(),
                row["metadata"],
                clamp_confidence(config.fork_confidence, config),
            ),
        )
        changes = [
            f"forked as pattern {fork_id}",
            f"confidence {row['confidence']:.2f} -> {collapsed_confidence:.2f}",
        ]
        conn.execute(
            """
            INSERT INTO pattern_evolution (original_pattern_id, changes, outcome, timestamp)
            VALUES (?, ?, ?, ?)
            """,
            (row["id"], json.dumps(changes), Outcome.FAILURE.value, now_ms()),
        )

        self._logger.info(
            "pattern_forked",
            pattern_id=row["id"],
            fork_id=fork_id,
            confidence=round(collapsed_confidence, 3),
            fork_threshold=config.fork_threshold,
        )
        return fork_id
