"""Pattern query mixin for PatternStore.

Provides read access to stored patterns:
- find_patterns: Substring search, most recent first
- get_pattern: Fetch one pattern by ID
- find_candidates: Command-keyed candidate query used by the similarity matcher
- find_patterns_by_fingerprint: Base patterns linked to a project fingerprint
- list_patterns: Filtered listing for the CLI
"""

import json
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager

from engram.core.logging import EngramLogger
from engram.learning.exceptions import ParseError
from engram.learning.store.base import WhereBuilder, _logger
from engram.learning.store.models import Metadata, PatternRecord

_CANDIDATE_ORDER = "ORDER BY confidence DESC, timestamp DESC, id DESC"


def parse_metadata(blob: str | None) -> Metadata | None:
    """Parse a serialized metadata blob.

    Raises:
        ParseError: If the blob is not a JSON object.
    """
    if blob is None:
        return None
    try:
        value = json.loads(blob)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed metadata: {e}") from e
    if not isinstance(value, dict):
        raise ParseError(f"Metadata must be a JSON object, got {type(value).__name__}")
    return value


def row_to_pattern(row: sqlite3.Row) -> PatternRecord:
    """Convert a ``patterns`` row to a PatternRecord.

    A malformed metadata blob is logged and read back as None rather than
    failing the whole read.
    """
    try:
        metadata = parse_metadata(row["metadata"])
    except ParseError as e:
        _logger.warning("pattern_metadata_unparsable", pattern_id=row["id"], error=str(e))
        metadata = None

    return PatternRecord(
        id=row["id"],
        text=row["text"],
        context=row["context"],
        metadata=metadata,
        confidence=row["confidence"],
        timestamp=row["timestamp"],
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PatternQueryMixin:
    """Mixin providing pattern query methods.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    """

    _logger: EngramLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]

    def find_patterns(self, text: str) -> list[PatternRecord]:
        """Find patterns whose text contains a substring.

        Matching is case-insensitive for ASCII letters. LIKE wildcards in the
        substring are matched literally.

        Args:
            text: Substring to search for. An empty string matches nothing.

        Returns:
            Matching patterns, most recent first. Empty when nothing matches.
        """
        if not text:
            return []

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM patterns
                WHERE text LIKE ? ESCAPE '\\'
                ORDER BY timestamp DESC, id DESC
                """,
                (f"%{_escape_like(text)}%",),
            )
            return [row_to_pattern(row) for row in cursor.fetchall()]

    def get_pattern(self, pattern_id: int) -> PatternRecord | None:
        """Get a single pattern by ID, or None if it does not exist."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
            return row_to_pattern(row) if row else None

    def find_candidates(
        self,
        command: str,
        context_hint: str | None = None,
        limit: int = 10,
    ) -> list[PatternRecord]:
        """Query match candidates sharing a command key.

        Without a context hint, returns the command's patterns. With a hint,
        patterns whose context equals the hint are preferred; only when there
        are none does it fall back to contexts that contain the hint or are
        contained in it.

        Returns:
            Candidates ordered by confidence descending, then most recent
            first, capped at ``limit``.
        """
        if not command:
            return []

        with self._get_connection() as conn:
            if not context_hint:
                cursor = conn.execute(
                    f"SELECT * FROM patterns WHERE command = ? {_CANDIDATE_ORDER} LIMIT ?",
                    (command, limit),
                )
                return [row_to_pattern(row) for row in cursor.fetchall()]

            rows = conn.execute(
                f"""
                SELECT * FROM patterns
                WHERE command = ? AND context = ?
                {_CANDIDATE_ORDER} LIMIT ?
                """,
                (command, context_hint, limit),
            ).fetchall()
            if not rows:
                rows = conn.execute(
                    f"""
                    SELECT * FROM patterns
                    WHERE command = ?
                      AND context IS NOT NULL AND context != ''
                      AND (instr(context, ?) > 0 OR instr(?, context) > 0)
                    {_CANDIDATE_ORDER} LIMIT ?
                    """,
                    (command, context_hint, context_hint, limit),
                ).fetchall()
            return [row_to_pattern(row) for row in rows]

    def find_patterns_by_fingerprint(self, fingerprint: str | None) -> list[PatternRecord]:
        """Get base patterns linked to a project fingerprint.

        Returns an empty list for an empty or missing fingerprint.
        """
        if not fingerprint:
            return []

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT p.* FROM patterns p
                JOIN learning_patterns lp ON p.id = lp.pattern_id
                WHERE lp.project_fingerprint = ?
                ORDER BY p.timestamp DESC, p.id DESC
                """,
                (fingerprint,),
            )
            return [row_to_pattern(row) for row in cursor.fetchall()]

    def list_patterns(
        self,
        context: str | None = None,
        command: str | None = None,
        min_confidence: float = 0.0,
        limit: int = 20,
    ) -> list[PatternRecord]:
        """List patterns with optional filters, highest confidence first.

        Args:
            context: Only patterns with exactly this context.
            command: Only patterns with this command key (case-insensitive).
            min_confidence: Minimum confidence to include.
            limit: Maximum number of patterns to return.
        """
        wb = WhereBuilder()
        wb.add("confidence >= ?", min_confidence)
        if context is not None:
            wb.add("context = ?", context)
        if command:
            wb.add("command = ?", command.lower())
        where_sql, params = wb.build()

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM patterns WHERE {where_sql} {_CANDIDATE_ORDER} LIMIT ?",
                (*params, limit),
            )
            return [row_to_pattern(row) for row in cursor.fetchall()]
