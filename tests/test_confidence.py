"""Tests for the confidence and fork rules."""

import random

import pytest
from pydantic import ValidationError

from engram.core.config import ConfidenceConfig
from engram.learning.store.confidence import (
    adjust_confidence,
    clamp_confidence,
    resolve_config,
    should_fork,
)
from engram.learning.store.models import Outcome


class TestAdjustConfidence:
    """Tests for single-step updates."""

    def test_success(self) -> None:
        assert adjust_confidence(0.5, Outcome.SUCCESS) == pytest.approx(0.6)

    def test_failure(self) -> None:
        assert adjust_confidence(0.5, Outcome.FAILURE) == pytest.approx(0.3)

    def test_partial(self) -> None:
        assert adjust_confidence(0.5, Outcome.PARTIAL) == pytest.approx(0.55)

    def test_upper_bound(self) -> None:
        assert adjust_confidence(0.95, Outcome.SUCCESS) == 1.0

    def test_lower_bound(self) -> None:
        assert adjust_confidence(0.1, Outcome.FAILURE) == 0.0

    def test_out_of_range_input_is_clamped_first(self) -> None:
        assert adjust_confidence(1.7, Outcome.FAILURE) == pytest.approx(0.8)

    def test_custom_config(self) -> None:
        config = ConfidenceConfig(success_increase=0.25, max_confidence=0.9)

        assert adjust_confidence(0.5, Outcome.SUCCESS, config) == pytest.approx(0.75)
        assert adjust_confidence(0.8, Outcome.SUCCESS, config) == pytest.approx(0.9)

    @pytest.mark.parametrize("seed", range(5))
    def test_random_sequences_stay_in_bounds(self, seed: int) -> None:
        rng = random.Random(seed)
        outcomes = list(Outcome)
        confidence = rng.random()

        for _ in range(500):
            confidence = adjust_confidence(confidence, rng.choice(outcomes))
            assert 0.0 <= confidence <= 1.0


class TestShouldFork:
    """Tests for the fork rule."""

    def test_failure_at_threshold_forks(self) -> None:
        assert should_fork(adjust_confidence(0.5, Outcome.FAILURE), Outcome.FAILURE)

    def test_failure_below_threshold_forks(self) -> None:
        assert should_fork(0.1, Outcome.FAILURE)

    def test_failure_above_threshold_does_not_fork(self) -> None:
        assert not should_fork(0.31, Outcome.FAILURE)

    @pytest.mark.parametrize("outcome", [Outcome.SUCCESS, Outcome.PARTIAL])
    def test_non_failures_never_fork(self, outcome: Outcome) -> None:
        assert not should_fork(0.0, outcome)


class TestClampAndResolve:
    """Tests for clamping and per-call config resolution."""

    def test_clamp(self) -> None:
        assert clamp_confidence(-1.0) == 0.0
        assert clamp_confidence(2.0) == 1.0
        assert clamp_confidence(0.4) == 0.4

    def test_resolve_none_keeps_base(self) -> None:
        base = ConfidenceConfig()

        assert resolve_config(base, None) is base

    def test_resolve_full_config_replaces_base(self) -> None:
        override = ConfidenceConfig(fork_threshold=0.1)

        assert resolve_config(ConfidenceConfig(), override) is override

    def test_resolve_dict_updates_named_fields(self) -> None:
        base = ConfidenceConfig(failure_decrease=0.3)

        resolved = resolve_config(base, {"success_increase": 0.2})

        assert resolved.success_increase == 0.2
        assert resolved.failure_decrease == 0.3

    def test_resolve_dict_is_validated(self) -> None:
        with pytest.raises(ValidationError):
            resolve_config(ConfidenceConfig(), {"success_increase": 5.0})

    def test_config_rejects_inverted_bounds(self) -> None:
        with pytest.raises(ValidationError, match="min_confidence"):
            ConfidenceConfig(min_confidence=0.8, max_confidence=0.2)
