"""Tests for scoring and deterministic ranking."""

from __future__ import annotations

import random

import pytest

from conftest import make_candidate
from ctxcomposer.composer.budget import DEFAULT_BUDGET_CONFIG
from ctxcomposer.composer.models import ArtifactKind, Lane
from ctxcomposer.composer.scoring import (
    SCORING_WEIGHTS,
    kind_priority,
    quantize,
    rank_candidates,
    score_candidate,
    validate_weights,
)
from ctxcomposer.exceptions import ConfigError


class TestScore:
    def test_weights_sum_to_one(self):
        validate_weights(SCORING_WEIGHTS)

    def test_bad_weights(self):
        with pytest.raises(ConfigError, match="sum to 1.0"):
            validate_weights({"recency": 0.5, "relevance": 0.5, "specificity": 0.5, "risk": 0.0})
        with pytest.raises(ConfigError, match="missing"):
            validate_weights({"recency": 1.0})

    def test_formula(self):
        candidate = make_candidate("a", recency=5, relevance=1.0, specificity=1.0, risk=1.0)
        assert score_candidate(candidate) == 1.0

        candidate = make_candidate("b", recency=0, relevance=0.0, specificity=0.0, risk=0.0)
        assert score_candidate(candidate) == 0.0

        candidate = make_candidate("c", recency=5, relevance=0.8, specificity=0.6, risk=0.4)
        # 0.30 + 0.28 + 0.12 + 0.06
        assert score_candidate(candidate) == pytest.approx(0.76)

    def test_quantize(self):
        assert quantize(0.12345) == 0.123
        assert quantize(0.12361) == 0.124
        assert quantize(1.2) == 1.0
        assert quantize(-0.1) == 0.0

    def test_kind_priority(self):
        assert kind_priority(ArtifactKind.CONSTRAINT) == 0
        assert kind_priority(ArtifactKind.LEARNING) == 10
        assert kind_priority("mystery") == 99


class TestRanking:
    def test_descending_score(self):
        low = make_candidate("low", relevance=0.1)
        high = make_candidate("high", relevance=0.9)
        ranked = rank_candidates([low, high], DEFAULT_BUDGET_CONFIG.lane_priorities())
        assert [c.id for c, _ in ranked] == ["high", "low"]

    def test_ties_by_lane_then_kind_then_id(self):
        common = dict(recency=3, relevance=0.5, specificity=0.5, risk=0.5)
        history = make_candidate("a", ArtifactKind.LEARNING, Lane.HISTORY, **common)
        policy = make_candidate("z", ArtifactKind.CONSTRAINT, Lane.POLICY, **common)
        violation = make_candidate("b", ArtifactKind.VIOLATION, Lane.HISTORY, **common)
        session_y = make_candidate("y", ArtifactKind.SESSION_HISTORY, Lane.HISTORY, **common)
        session_x = make_candidate("x", ArtifactKind.SESSION_HISTORY, Lane.HISTORY, **common)

        ranked = rank_candidates(
            [history, policy, violation, session_y, session_x],
            DEFAULT_BUDGET_CONFIG.lane_priorities(),
        )
        assert [c.id for c, _ in ranked] == ["z", "x", "y", "b", "a"]

    def test_reproducible_under_shuffle(self, mixed_candidates):
        priorities = DEFAULT_BUDGET_CONFIG.lane_priorities()
        expected = [c.id for c, _ in rank_candidates(mixed_candidates, priorities)]
        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(mixed_candidates)
            rng.shuffle(shuffled)
            assert [c.id for c, _ in rank_candidates(shuffled, priorities)] == expected
