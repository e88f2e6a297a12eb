"""Explanations and decision logs for a composition."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from ctxcomposer.composer.budget import BudgetConfig
from ctxcomposer.composer.models import (
    ArtifactRef,
    ConstraintSummary,
    DecisionLog,
    Explanation,
    InclusionReason,
    Lane,
    LaneSummary,
    PerformanceSummary,
    RankingEntry,
    RejectionReason,
    RejectionSummary,
    RenderedArtifact,
    SelectionResult,
    TopArtifact,
)

TOP_ARTIFACTS_PER_LANE = 3
TOP_REJECTIONS = 5


def _by_score(ref: ArtifactRef) -> tuple[float, str]:
    return (-(ref.score or 0.0), ref.id)


def build_explanation(
    selection: SelectionResult,
    rendered: list[RenderedArtifact],
    config: BudgetConfig,
    candidate_count: int,
    cache_hit: bool = False,
    within_budget: bool = True,
) -> Explanation:
    lanes: dict[Lane, LaneSummary] = {}
    for lane in config.lane_order():
        refs = [ref for ref in selection.selected if ref.lane == lane]
        top = sorted(refs, key=_by_score)[:TOP_ARTIFACTS_PER_LANE]
        lanes[lane] = LaneSummary(
            selected_count=len(refs),
            budget_used=sum(a.exact_token_count for a in rendered if a.lane == lane),
            budget_max=config.lanes[lane].max,
            top_artifacts=[TopArtifact(id=r.id, kind=r.kind, score=r.score) for r in top],
        )

    notable = sorted(selection.rejections, key=lambda rej: _by_score(rej.artifact))
    rejections = [
        RejectionSummary(
            id=rej.artifact.id,
            kind=rej.artifact.kind,
            lane=rej.artifact.lane,
            reason=rej.reason,
            detail=rej.detail,
        )
        for rej in notable[:TOP_REJECTIONS]
    ]

    selected_count = len(selection.selected)
    ratio = round(selected_count / candidate_count, 2) if candidate_count else 0.0

    return Explanation(
        lanes=lanes,
        rejections=rejections,
        constraints=ConstraintSummary(
            pinned=sum(1 for r in selection.selected if r.inclusion is InclusionReason.PINNED),
            must_include=sum(
                1 for r in selection.selected if r.inclusion is InclusionReason.MUST_INCLUDE
            ),
            excluded_count=sum(
                1 for rej in selection.rejections
                if rej.reason is RejectionReason.EXCLUDED_BY_POLICY
            ),
        ),
        performance=PerformanceSummary(
            candidate_count=candidate_count,
            selected_count=selected_count,
            compression_ratio=ratio,
            cache_hit=cache_hit,
        ),
        shortfalls=list(selection.shortfalls),
        within_budget=within_budget,
    )


def mark_cache_hit(explanation: Explanation) -> Explanation:
    """Copy of the explanation with the cache-hit flag set."""
    return explanation.model_copy(
        update={
            "performance": explanation.performance.model_copy(update={"cache_hit": True})
        }
    )


def build_decision_log(
    selection: SelectionResult,
    digests: dict[str, str],
    event: str,
    duration_ms: float,
) -> DecisionLog:
    """Full ranking plus every digest, for audit and replay."""
    selected_by_id = {ref.id: ref for ref in selection.selected}
    reasons = {rej.artifact.id: rej.reason for rej in selection.rejections}

    rankings = [
        RankingEntry(
            artifact=selected_by_id.get(ref.id, ref),
            score=ref.score or 0.0,
            selected=ref.id in selected_by_id,
            rejection_reason=reasons.get(ref.id),
        )
        for ref in selection.ranking
    ]
    for rej in selection.rejections:
        if rej.reason is RejectionReason.EXCLUDED_BY_POLICY:
            rankings.append(
                RankingEntry(
                    artifact=rej.artifact,
                    score=rej.artifact.score or 0.0,
                    selected=False,
                    rejection_reason=rej.reason,
                )
            )

    return DecisionLog(
        log_id=uuid.uuid4().hex,
        created_at=datetime.now(timezone.utc).isoformat(),
        event=event,
        cache_key=selection.cache_key,
        duration_ms=round(duration_ms, 3),
        digests=dict(digests),
        rankings=rankings,
    )
