"""Similarity matching between task descriptions and stored patterns.

Matching is deliberately lexical: no embeddings, only command-prefix
filtering, substring checks against pattern metadata, and word overlap.

Algorithm for ``find_similar_pattern(task_text, context_hint)``:

1. The command key is the lowercased first token of the task; blank text
   never matches.
2. Candidates share the command key. With a context hint, exact context
   matches are preferred over contexts that contain (or are contained in)
   the hint. Candidates are ordered by confidence, then recency, and capped.
3. Metadata similarity is scored per candidate; the best score strictly
   above ``metadata_threshold`` wins outright.
4. Otherwise word overlap is scored per candidate; the best score at or
   above ``min_similarity`` wins.

Ties keep candidate order, i.e. higher confidence first, then the most
recent pattern.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from engram.core.config import MatcherConfig
from engram.core.logging import get_logger
from engram.learning.store import PatternStore
from engram.learning.store.models import MetadataValue, PatternRecord, command_of

_logger = get_logger("learning.matcher")

_SCALARS = (str, int, float, bool)


def tokenize(text: str) -> list[str]:
    """Split text into lowercase whitespace-delimited tokens."""
    return text.lower().split()


def _scalar_text(value: MetadataValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).lower()


def _walk_metadata(metadata: Mapping[str, MetadataValue]) -> Iterator[str]:
    """Yield every key and scalar value in a metadata tree, lowercased."""
    for key, value in metadata.items():
        yield key.lower()
        if isinstance(value, Mapping):
            yield from _walk_metadata(value)
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, Mapping):
                    yield from _walk_metadata(item)
                elif isinstance(item, _SCALARS):
                    yield _scalar_text(item)
        elif isinstance(value, _SCALARS):
            yield _scalar_text(value)


def _score_entries(
    metadata: Mapping[str, MetadataValue],
    task: str,
    config: MatcherConfig,
) -> float:
    score = 0.0
    for key, value in metadata.items():
        if isinstance(value, Mapping):
            score += _score_entries(value, task, config)
        elif isinstance(value, _SCALARS):
            text = _scalar_text(value)
            if text and text in task:
                score += config.value_weight
        if key and key.lower() in task:
            score += config.key_weight
    return score


def metadata_similarity(
    metadata: Mapping[str, MetadataValue] | None,
    task_text: str,
    config: MatcherConfig | None = None,
) -> float:
    """Score how well a pattern's metadata describes a task.

    Credits ``value_weight`` for each scalar value found in the task text and
    ``key_weight`` for each key found in it, recursing into nested maps.
    Each semantic tag whose markers appear anywhere in the metadata and whose
    keywords appear in the task adds the tag's bonus.

    Returns:
        The score, clamped to 1.0. Empty metadata scores 0.0.
    """
    config = config or MatcherConfig()
    if not metadata:
        return 0.0

    task = task_text.lower()
    score = _score_entries(metadata, task, config)

    terms = list(_walk_metadata(metadata))
    for tag in config.semantic_tags.values():
        tagged = any(marker in term for marker in tag.metadata_markers for term in terms)
        if tagged and any(keyword in task for keyword in tag.task_keywords):
            score += tag.bonus

    return min(score, 1.0)


def word_overlap_similarity(
    text_a: str,
    text_b: str,
    config: MatcherConfig | None = None,
) -> float:
    """Score the lexical overlap of two texts.

    ``shared / max(len(a), len(b))`` over distinct shared tokens, plus
    ``first_token_bonus`` when the first tokens match and ``length_bonus``
    when the token counts are equal. Blank input scores 0.0.
    """
    config = config or MatcherConfig()
    tokens_a = tokenize(text_a)
    tokens_b = tokenize(text_b)
    if not tokens_a or not tokens_b:
        return 0.0

    shared = len(set(tokens_a) & set(tokens_b))
    score = shared / max(len(tokens_a), len(tokens_b))
    if tokens_a[0] == tokens_b[0]:
        score += config.first_token_bonus
    if len(tokens_a) == len(tokens_b):
        score += config.length_bonus
    return score


def _context_matches(patterns: list[PatternRecord], context_hint: str) -> list[PatternRecord]:
    exact = [p for p in patterns if p.context == context_hint]
    if exact:
        return exact
    return [
        p for p in patterns
        if p.context and (context_hint in p.context or p.context in context_hint)
    ]


class SimilarityMatcher:
    """Selects the stored pattern that best matches a task description.

    Attributes:
        store: Pattern store queried for candidates.
        config: Weights, thresholds and semantic tags.
    """

    def __init__(self, store: PatternStore, config: MatcherConfig | None = None) -> None:
        self.store = store
        self.config = config or MatcherConfig()

    def find_similar_pattern(
        self,
        task_text: str,
        context_hint: str | None = None,
    ) -> PatternRecord | None:
        """Return the single best matching pattern, or None.

        Raises:
            StorageError: If the candidate query fails.
        """
        command = command_of(task_text)
        if not command:
            return None

        candidates = self.store.find_candidates(
            command, context_hint, limit=self.config.candidate_limit
        )
        if not candidates:
            _logger.debug("no_candidates", command=command, context_hint=context_hint)
            return None

        best, best_score = self._best_by(
            candidates, lambda p: metadata_similarity(p.metadata, task_text, self.config)
        )
        if best_score > self.config.metadata_threshold:
            _logger.debug(
                "pattern_matched",
                method="metadata",
                pattern_id=best.id,
                score=round(best_score, 3),
            )
            return best

        best, best_score = self._best_by(
            candidates, lambda p: word_overlap_similarity(task_text, p.text, self.config)
        )
        if best_score >= self.config.min_similarity:
            _logger.debug(
                "pattern_matched",
                method="word_overlap",
                pattern_id=best.id,
                score=round(best_score, 3),
            )
            return best

        _logger.debug(
            "no_match",
            command=command,
            candidates=len(candidates),
            best_score=round(best_score, 3),
        )
        return None

    @staticmethod
    def _best_by(candidates, score_fn) -> tuple[PatternRecord, float]:
        # max() keeps the first of equal scores, which preserves candidate order
        scored = [(candidate, score_fn(candidate)) for candidate in candidates]
        return max(scored, key=lambda item: item[1])

    def find_all_similar_patterns(
        self,
        task_text: str,
        context_hint: str | None = None,
    ) -> list[PatternRecord]:
        """Return every pattern whose text contains the task text.

        With a context hint, keeps exact context matches if there are any,
        otherwise contexts that contain or are contained in the hint.
        """
        if not task_text.strip():
            return []

        patterns = self.store.find_patterns(task_text.strip())
        if context_hint:
            return _context_matches(patterns, context_hint)
        return patterns
