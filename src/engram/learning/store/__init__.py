"""Pattern store with modular mixins.

This package provides the PatternStore class, which is composed from
multiple mixins, each handling a specific domain of functionality:

- PatternCrudMixin: Validated inserts, confidence updates, usage, forking
- PatternQueryMixin: Substring search, candidate queries, listings
- EvolutionMixin: Evolution, validation and history records
- LearningPatternMixin: Learning pattern persistence and statistics

The base class (PatternStoreBase) provides:
- SQLite connection management with WAL mode
- Schema creation and migration
- A monotonic clock for default timestamps

Usage:
    from engram.learning.store import PatternStore

    store = PatternStore()  # Uses default ~/.engram/patterns.db
    store = PatternStore(db_path=Path("/custom/path.db"))

The composed class inherits from all mixins with PatternStoreBase listed
LAST in the MRO so mixins can rely on self._get_connection() and
self._logger provided by the base class.
"""

import threading
from pathlib import Path

from engram.core.config import ConfidenceConfig
from engram.learning.store.base import PatternStoreBase, WhereBuilder, now_ms
from engram.learning.store.confidence import (
    adjust_confidence,
    clamp_confidence,
    should_fork,
)
from engram.learning.store.evolution import EvolutionMixin
from engram.learning.store.learning import LearningPatternMixin
from engram.learning.store.models import (
    ExecutionData,
    LearningPattern,
    Metadata,
    MetadataValue,
    Operation,
    Outcome,
    PatternCategory,
    PatternEvolution,
    PatternHistory,
    PatternInsights,
    PatternRecord,
    PatternUsage,
    PatternValidation,
    ProjectFingerprint,
    command_of,
)
from engram.learning.store.patterns_crud import PatternCrudMixin
from engram.learning.store.patterns_query import PatternQueryMixin


class PatternStore(
    PatternCrudMixin,
    PatternQueryMixin,
    EvolutionMixin,
    LearningPatternMixin,
    PatternStoreBase,
):
    """SQLite-backed store of learned patterns.

    Holds patterns with their usage history, evolution lineage, validation
    records, and learning-specific extensions. Every operation is its own
    transaction; ``batch_connection()`` groups several into one.

    Mixin Capabilities:
        PatternCrudMixin:
            - store_pattern(), store_patterns()
            - update_confidence(), record_usage() with automatic forking

        PatternQueryMixin:
            - find_patterns(), get_pattern(), list_patterns()
            - find_candidates() for the similarity matcher
            - find_patterns_by_fingerprint()

        EvolutionMixin:
            - track_evolution(), validate_pattern(), update_pattern_validation()
            - validate_and_track_pattern()
            - get_pattern_history(), get_pattern_insights()

        LearningPatternMixin:
            - store_learning_pattern(), find_by_fingerprint()
            - find_similar_learning_patterns(), update_learning_metadata()
            - get_stats()

    Example:
        >>> store = PatternStore(Path("/tmp/patterns.db"))
        >>> pattern_id = store.store_pattern(
        ...     PatternRecord(text="create component Button", context="react")
        ... )
        >>> store.record_usage(PatternUsage(pattern_id, Outcome.SUCCESS))
        0.6
    """


_store: PatternStore | None = None
_store_lock = threading.Lock()


def get_pattern_store(
    db_path: Path | None = None,
    confidence_config: ConfidenceConfig | None = None,
) -> PatternStore:
    """Get or create the process-wide pattern store.

    A new instance is created when none exists yet or when a different
    ``db_path`` is requested.

    Args:
        db_path: Optional custom database path. If None, uses the default
            path at ~/.engram/patterns.db.
        confidence_config: Confidence defaults used when a new store is built.
    """
    global _store

    with _store_lock:
        if _store is None or (db_path is not None and _store.db_path != db_path):
            _store = PatternStore(db_path, confidence_config)

    return _store


__all__ = [
    # Main class
    "PatternStore",
    "get_pattern_store",
    # Base class and helpers
    "PatternStoreBase",
    "WhereBuilder",
    "now_ms",
    # Mixins (for advanced usage/testing)
    "EvolutionMixin",
    "LearningPatternMixin",
    "PatternCrudMixin",
    "PatternQueryMixin",
    # Confidence rules
    "adjust_confidence",
    "clamp_confidence",
    "should_fork",
    # Models
    "ExecutionData",
    "LearningPattern",
    "Metadata",
    "MetadataValue",
    "Operation",
    "Outcome",
    "PatternCategory",
    "PatternEvolution",
    "PatternHistory",
    "PatternInsights",
    "PatternRecord",
    "PatternUsage",
    "PatternValidation",
    "ProjectFingerprint",
    "command_of",
]
