"""Weighted candidate scoring with a deterministic tie-break.

    score = 0.30 * recency_bucket / 5
          + 0.35 * relevance_score
          + 0.20 * specificity_score
          + 0.15 * risk_alignment

Scores are quantized to 0.001 and clamped to [0, 1]. Ranking is descending
by score; ties go to the lower lane priority, then the lower kind priority,
then the lexicographically smaller id.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from ctxcomposer.composer.models import ArtifactKind, Candidate, Lane
from ctxcomposer.exceptions import ConfigError

# Weight factors (must sum to 1.0)
SCORING_WEIGHTS: dict[str, float] = {
    "recency": 0.30,
    "relevance": 0.35,
    "specificity": 0.20,
    "risk": 0.15,
}

MAX_RECENCY_BUCKET = 5
SCORE_QUANTUM = 1000  # 0.001 resolution
UNKNOWN_KIND_PRIORITY = 99

KIND_PRIORITY: dict[ArtifactKind, int] = {
    ArtifactKind.CONSTRAINT: 0,
    ArtifactKind.RULE_DOC: 1,
    ArtifactKind.LOCAL_DIFF: 2,
    ArtifactKind.RECENT_EDIT: 3,
    ArtifactKind.SYMBOL_CONTEXT: 4,
    ArtifactKind.DEPENDENCY_GRAPH: 5,
    ArtifactKind.TEST_CONTEXT: 6,
    ArtifactKind.SEMANTIC_MATCH: 7,
    ArtifactKind.SESSION_HISTORY: 8,
    ArtifactKind.VIOLATION: 9,
    ArtifactKind.LEARNING: 10,
}


def validate_weights(weights: Mapping[str, float]) -> None:
    """Raise ConfigError unless the four weights are present and sum to 1."""
    missing = set(SCORING_WEIGHTS) - set(weights)
    if missing:
        raise ConfigError(f"Scoring weights missing: {', '.join(sorted(missing))}")
    total = sum(weights[name] for name in SCORING_WEIGHTS)
    if not math.isclose(total, 1.0, abs_tol=1e-9):
        raise ConfigError(f"Scoring weights must sum to 1.0 (got {total:.6f})")


validate_weights(SCORING_WEIGHTS)


def quantize(value: float) -> float:
    """Round half-up to 0.001 and clamp to [0, 1]."""
    rounded = math.floor(value * SCORE_QUANTUM + 0.5) / SCORE_QUANTUM
    return min(1.0, max(0.0, rounded))


def score_candidate(
    candidate: Candidate,
    weights: Mapping[str, float] = SCORING_WEIGHTS,
) -> float:
    raw = (
        weights["recency"] * candidate.recency_bucket / MAX_RECENCY_BUCKET
        + weights["relevance"] * candidate.relevance_score
        + weights["specificity"] * candidate.specificity_score
        + weights["risk"] * candidate.risk_alignment
    )
    return quantize(raw)


def kind_priority(kind: ArtifactKind | str) -> int:
    return KIND_PRIORITY.get(kind, UNKNOWN_KIND_PRIORITY)


def rank_candidates(
    candidates: Iterable[Candidate],
    lane_priorities: Mapping[Lane, float],
    weights: Mapping[str, float] = SCORING_WEIGHTS,
) -> list[tuple[Candidate, float]]:
    """Score and sort candidates. The order is fully reproducible."""
    scored = [(c, score_candidate(c, weights)) for c in candidates]
    scored.sort(
        key=lambda pair: (
            -pair[1],
            lane_priorities.get(pair[0].lane, math.inf),
            kind_priority(pair[0].kind),
            pair[0].id,
        )
    )
    return scored
