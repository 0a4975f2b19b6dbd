"""Pattern learning and retrieval.

- ``store``: SQLite persistence with the confidence and fork model
- ``matcher``: lexical similarity between tasks and stored patterns
- ``chunker``: transcript segmentation into task episodes
- ``extractor``: task episodes to stored learning patterns
- ``engine``: the lookup/learn facade used by task dispatchers
"""

from engram.learning.chunker import Checkpoint, CheckpointType, Message, MessageChunker, TaskChunk
from engram.learning.engine import Decision, ExecutionMode, ExecutionResult, LearningEngine
from engram.learning.exceptions import (
    EngramError,
    ParseError,
    PatternNotFoundError,
    PatternValidationError,
    StorageError,
)
from engram.learning.extractor import LogPatternExtractor
from engram.learning.matcher import SimilarityMatcher
from engram.learning.project_context import FileChange, FileChangeType, ProjectContext
from engram.learning.service import PatternService
from engram.learning.store import PatternStore, get_pattern_store

__all__ = [
    "Checkpoint",
    "CheckpointType",
    "Decision",
    "EngramError",
    "ExecutionMode",
    "ExecutionResult",
    "FileChange",
    "FileChangeType",
    "LearningEngine",
    "LogPatternExtractor",
    "Message",
    "MessageChunker",
    "ParseError",
    "PatternNotFoundError",
    "PatternService",
    "PatternStore",
    "PatternValidationError",
    "ProjectContext",
    "SimilarityMatcher",
    "StorageError",
    "TaskChunk",
    "get_pattern_store",
]
