"""Confidence and fork rules for learned patterns.

Confidence is a bounded, hand-tuned scalar, not a statistical estimate.
Updates are pure functions of ``(old_confidence, outcome, config)`` so the
rules can be tested independently of storage. The store applies them inside
the same transaction that records the triggering usage event.

Rules:
- success: ``min(c + success_increase, max_confidence)``
- failure: ``max(c - failure_decrease, min_confidence)``
- partial: ``min(c + success_increase * partial_factor, max_confidence)``

After a failure, a result at or below ``fork_threshold`` forks the pattern:
a fresh row with identical text, context, and metadata is created at
``fork_confidence`` while the original keeps its low score for audit.
"""

from __future__ import annotations

from engram.core.config import ConfidenceConfig
from engram.learning.store.models import Outcome

DEFAULT_CONFIDENCE_CONFIG = ConfidenceConfig()


def clamp_confidence(
    value: float,
    config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG,
) -> float:
    """Clamp a confidence value into ``[min_confidence, max_confidence]``."""
    return max(config.min_confidence, min(config.max_confidence, value))


def adjust_confidence(
    confidence: float,
    outcome: Outcome,
    config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG,
) -> float:
    """Apply one usage outcome to a confidence value.

    Args:
        confidence: Current confidence. Values outside the configured bounds
            are clamped before the update is applied.
        outcome: The usage outcome.
        config: Increments and bounds to use.

    Returns:
        The new confidence, always within the configured bounds.
    """
    current = clamp_confidence(confidence, config)
    if outcome == Outcome.SUCCESS:
        updated = current + config.success_increase
    elif outcome == Outcome.FAILURE:
        updated = current - config.failure_decrease
    else:
        updated = current + config.success_increase * config.partial_factor
    return clamp_confidence(updated, config)


def should_fork(
    new_confidence: float,
    outcome: Outcome,
    config: ConfidenceConfig = DEFAULT_CONFIDENCE_CONFIG,
) -> bool:
    """Whether a confidence update should fork the pattern.

    Only failures fork; the comparison is inclusive of the threshold.
    """
    return outcome == Outcome.FAILURE and new_confidence <= config.fork_threshold


def resolve_config(
    base: ConfidenceConfig,
    overrides: ConfidenceConfig | dict[str, float] | None,
) -> ConfidenceConfig:
    """Combine a store's default config with per-call overrides.

    A full ConfidenceConfig replaces the base; a dict updates only the named
    fields and is re-validated.
    """
    if overrides is None:
        return base
    if isinstance(overrides, ConfidenceConfig):
        return overrides
    return ConfidenceConfig.model_validate({**base.model_dump(), **overrides})
