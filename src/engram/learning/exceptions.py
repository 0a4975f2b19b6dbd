"""Exception hierarchy for the Engram learning core.

All learning-specific exceptions inherit from EngramError, enabling callers
to catch broad (EngramError) or narrow (e.g., PatternNotFoundError).
"""

from __future__ import annotations


class EngramError(Exception):
    """Base exception for all learning-core errors."""


class StorageError(EngramError):
    """Raised when the pattern database cannot be read or written.

    Wraps the underlying sqlite3 error. The enclosing transaction has
    already been rolled back when this is raised.
    """


class PatternNotFoundError(EngramError):
    """Raised when an operation references a pattern id that does not exist."""

    def __init__(self, pattern_id: int) -> None:
        super().__init__(f"Pattern {pattern_id} not found")
        self.pattern_id = pattern_id


class ParseError(EngramError):
    """Raised when a metadata blob or tool-call payload cannot be parsed.

    Callers inside the learning pipeline recover locally by falling back to a
    best-effort value; it is never fatal to a whole chunk.
    """


class PatternValidationError(EngramError):
    """Raised when a caller-supplied pattern fails shape checks.

    Examples: empty text after trimming, confidence outside [0, 1].
    Raised before any write takes place.
    """
