"""Shared test fixtures for ctxcomposer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ctxcomposer.composer.budget import BudgetConfig, LaneBudget
from ctxcomposer.composer.models import ArtifactKind, Candidate, Lane, Trigger


def make_candidate(
    id: str,
    kind: ArtifactKind = ArtifactKind.SEMANTIC_MATCH,
    lane: Lane = Lane.RETRIEVED,
    tokens: int = 100,
    recency: int = 3,
    relevance: float = 0.5,
    specificity: float = 0.5,
    risk: float = 0.5,
    content: str | None = None,
    path: str | None = None,
) -> Candidate:
    """Candidate whose default content is exactly ``tokens`` estimated tokens."""
    text = content if content is not None else "x" * (tokens * 4)
    return Candidate(
        id=id,
        kind=kind,
        lane=lane,
        token_estimate=tokens,
        recency_bucket=recency,
        relevance_score=relevance,
        specificity_score=specificity,
        risk_alignment=risk,
        path=path,
        content_provider=lambda: text,
    )


def make_budget(total: int = 10_000, **lanes: tuple[int, int, float]) -> BudgetConfig:
    """Budget with every lane at (0, total, declaration index) unless overridden."""
    defaults = {lane: (0, total, i) for i, lane in enumerate(Lane)}
    for name, triple in lanes.items():
        defaults[Lane(name)] = triple
    return BudgetConfig(
        total_tokens=total,
        lanes={
            lane: LaneBudget(min=lo, max=hi, priority=prio)
            for lane, (lo, hi, prio) in defaults.items()
        },
    )


@pytest.fixture
def trigger() -> Trigger:
    return Trigger(workspace_fingerprint="ws-test", event="file_saved", commitish="abc123")


@pytest.fixture
def mixed_candidates() -> list[Candidate]:
    """A small, realistic spread across lanes."""
    return [
        make_candidate("c1", ArtifactKind.CONSTRAINT, Lane.POLICY, 200, recency=5, relevance=0.9),
        make_candidate("r1", ArtifactKind.RULE_DOC, Lane.RULES, 300, recency=2, relevance=0.6),
        make_candidate("d1", ArtifactKind.LOCAL_DIFF, Lane.LOCAL, 400, recency=5, relevance=0.8),
        make_candidate("s1", ArtifactKind.SYMBOL_CONTEXT, Lane.STRUCTURE, 250, relevance=0.7),
        make_candidate("m1", ArtifactKind.SEMANTIC_MATCH, Lane.RETRIEVED, 150, relevance=0.4),
        make_candidate("h1", ArtifactKind.SESSION_HISTORY, Lane.HISTORY, 120, recency=1),
    ]


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory with rule docs and JSONL logs."""
    context_dir = tmp_path / ".llm-context"
    context_dir.mkdir()

    (context_dir / "ARCHITECTURE.md").write_text(
        "# Architecture\n\n"
        "- The auth service owns session tokens.\n"
        "- Billing talks to auth only through the public client.\n"
    )
    (context_dir / "CONSTRAINTS.md").write_text(
        "# Constraints\n\n"
        "- Never log raw session tokens.\n"
        "- All database access goes through the repository layer.\n"
    )

    violations = [
        {"type": "violation", "rule": "no-raw-tokens", "file": "src/auth.py",
         "timestamp": "2024-01-02T10:00:00Z"},
        {"type": "violation", "rule": "repository-only", "file": "src/billing.py",
         "timestamp": "2024-01-01T10:00:00Z"},
    ]
    patterns_dir = tmp_path / ".snapback" / "patterns"
    patterns_dir.mkdir(parents=True)
    (patterns_dir / "violations.jsonl").write_text(
        "\n".join(json.dumps(v) for v in violations) + "\n"
    )
    learnings_dir = tmp_path / ".snapback" / "learnings"
    learnings_dir.mkdir(parents=True)
    (learnings_dir / "learnings.jsonl").write_text(
        json.dumps({"type": "learning", "note": "auth tests need a frozen clock",
                    "timestamp": 1704103200}) + "\n"
        + "not json at all\n"
    )

    src = tmp_path / "src"
    src.mkdir()
    (src / "auth.py").write_text("def login(user):\n    return user\n")

    return tmp_path
