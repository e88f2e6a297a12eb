"""Tests for the composition data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from conftest import make_candidate
from ctxcomposer.composer.models import (
    ArtifactKind,
    Candidate,
    CompositionResult,
    Explanation,
    InclusionReason,
    Lane,
    RenderedArtifact,
    TokenEstimator,
    Trigger,
)


class TestTokenEstimator:
    def test_estimate_basic(self):
        assert TokenEstimator.estimate("abcd") == 1
        assert TokenEstimator.estimate("abcde") == 2

    def test_estimate_empty(self):
        assert TokenEstimator.estimate("") == 0

    def test_estimate_lines(self):
        assert TokenEstimator.estimate_lines(10) == 100
        assert TokenEstimator.estimate_lines(0) == 1

    def test_estimate_proportional(self):
        short = TokenEstimator.estimate("x = 1")
        long = TokenEstimator.estimate("x = 1\n" * 100)
        assert long > short


class TestCandidate:
    def test_content_is_lazy(self):
        calls = []

        def provider() -> str:
            calls.append(1)
            return "body"

        candidate = Candidate(
            id="a", kind=ArtifactKind.RULE_DOC, lane=Lane.RULES, content_provider=provider
        )
        assert calls == []
        assert candidate.get_content() == "body"
        assert calls == [1]

    def test_default_content_is_empty(self):
        candidate = Candidate(id="a", kind=ArtifactKind.RULE_DOC, lane=Lane.RULES)
        assert candidate.get_content() == ""

    def test_score_ranges_validated(self):
        with pytest.raises(ValidationError):
            make_candidate("a", relevance=1.5)
        with pytest.raises(ValidationError):
            make_candidate("a", recency=6)
        with pytest.raises(ValidationError):
            make_candidate("a", tokens=-1)

    def test_from_text_estimates_tokens(self):
        candidate = Candidate.from_text(
            id="t", kind=ArtifactKind.LEARNING, lane=Lane.HISTORY, text="x" * 41
        )
        assert candidate.token_estimate == 11
        assert candidate.get_content() == "x" * 41

    def test_from_text_custom_counter(self):
        candidate = Candidate.from_text(
            id="t", kind=ArtifactKind.LEARNING, lane=Lane.HISTORY,
            text="one two three", token_counter=lambda s: len(s.split()),
        )
        assert candidate.token_estimate == 3

    def test_provider_not_serialized(self):
        data = make_candidate("a").model_dump()
        assert "content_provider" not in data
        assert data["id"] == "a"

    def test_ref(self):
        ref = make_candidate("a", tokens=42).ref(0.5, InclusionReason.PINNED)
        assert ref.id == "a"
        assert ref.token_estimate == 42
        assert ref.score == 0.5
        assert ref.inclusion is InclusionReason.PINNED


class TestTrigger:
    def test_defaults(self):
        trigger = Trigger(workspace_fingerprint="ws", event="save")
        assert trigger.commitish is None
        assert trigger.rules_digest == ""
        assert trigger.keywords == []

    def test_frozen(self):
        trigger = Trigger(workspace_fingerprint="ws", event="save")
        with pytest.raises(ValidationError):
            trigger.event = "other"


class TestCompositionResult:
    def test_render_groups_by_lane(self):
        result = CompositionResult(
            rendered=[
                RenderedArtifact(
                    id="c1", kind=ArtifactKind.CONSTRAINT, lane=Lane.POLICY,
                    content="never log tokens", exact_token_count=4,
                ),
                RenderedArtifact(
                    id="d1", kind=ArtifactKind.LOCAL_DIFF, lane=Lane.LOCAL,
                    content="+ added line", exact_token_count=3,
                    shrunk=True, original_token_count=9, shrink_strategy="truncate_oldest",
                ),
            ],
        )
        text = result.render()
        assert "## policy" in text
        assert "## local" in text
        assert text.index("## policy") < text.index("## local")
        assert "never log tokens" in text
        assert "shrunk via truncate_oldest" in text

    def test_render_without_metadata(self):
        result = CompositionResult(
            rendered=[
                RenderedArtifact(
                    id="c1", kind=ArtifactKind.CONSTRAINT, lane=Lane.POLICY,
                    content="body", exact_token_count=1,
                ),
            ],
        )
        text = result.render(include_metadata=False)
        assert "[constraint]" not in text
        assert "body" in text

    def test_explanation_summary(self):
        summary = Explanation(within_budget=False).summary()
        assert "Selected 0 of 0 candidates" in summary
        assert "exceeds the token budget" in summary
