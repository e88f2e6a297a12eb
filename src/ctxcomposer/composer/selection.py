"""Budget allocation: policy resolution, minimum reservation, greedy fill.

Algorithm:
  1. Drop every candidate matching ``must_exclude`` (excluded_by_policy).
  2. Force in ``pinned`` then ``must_include`` matches, in candidate order.
     Forced items consume their lane's usage but bypass scoring and limits.
  3. Phase A: walk lanes in ascending priority and reserve
     min(outstanding lane minimum, tokens of unselected candidates that fit
     under the lane max, pool).
     A lane that cannot reach its minimum is reported as a shortfall.
  4. Phase B: walk the ranked candidates. Reject when the lane max would be
     exceeded (lane_max_reached), or when the total would be exceeded once
     the other lanes' unconsumed reservations are held back
     (budget_exceeded). A lane holds back only what its unvisited candidates
     could still fill. Otherwise select.

This is a greedy, priority-ordered heuristic, not an exact knapsack solver.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from ctxcomposer.composer.budget import BudgetConfig, LaneBudget
from ctxcomposer.composer.constraints import (
    EMPTY_CONSTRAINTS,
    Constraints,
    PathResolver,
    matches_any,
)
from ctxcomposer.composer.models import (
    ArtifactRef,
    Candidate,
    InclusionReason,
    Lane,
    Rejection,
    RejectionReason,
    SelectionResult,
    Shortfall,
)
from ctxcomposer.composer.scoring import SCORING_WEIGHTS, rank_candidates, score_candidate

logger = logging.getLogger("ctxcomposer.composer")

_UNBUDGETED_LANE = LaneBudget(min=0, max=0, priority=float("inf"))


def dedupe_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep the first candidate for each id, preserving iteration order."""
    unique: list[Candidate] = []
    seen: set[str] = set()
    for candidate in candidates:
        if candidate.id in seen:
            logger.debug(f"Ignoring duplicate candidate id: {candidate.id}")
            continue
        seen.add(candidate.id)
        unique.append(candidate)
    return unique


def effective_minimums(config: BudgetConfig, constraints: Constraints) -> dict[Lane, int]:
    """Lane minimums after applying per-call lane requirements."""
    minimums = {lane: budget.min for lane, budget in config.lanes.items()}
    for req in constraints.lane_requirements:
        budget = config.lanes.get(req.lane)
        if budget is None:
            continue
        minimums[req.lane] = min(max(minimums[req.lane], req.min_tokens), budget.max)
    return minimums


def select_candidates(
    candidates: Iterable[Candidate],
    config: BudgetConfig,
    constraints: Constraints = EMPTY_CONSTRAINTS,
    path_resolver: PathResolver | None = None,
    weights: Mapping[str, float] = SCORING_WEIGHTS,
    cache_key: str = "",
) -> SelectionResult:
    """Choose which candidates to keep within the budget.

    Args:
        candidates: Candidate snapshot for this call.
        config: Budget configuration (assumed validated).
        constraints: Inclusion/exclusion policy.
        path_resolver: Derives a path for pattern matchers.
        weights: Scoring weights.
        cache_key: Recorded on the result as-is.

    Returns:
        A SelectionResult with selected references in selection order
        (forced first, then ranked), per-lane usage, rejections and shortfalls.
    """
    unique = dedupe_candidates(candidates)
    lane_priorities = config.lane_priorities()

    rejections: list[Rejection] = []
    eligible: list[Candidate] = []
    for candidate in unique:
        if matches_any(constraints.must_exclude, candidate, path_resolver):
            rejections.append(
                Rejection(
                    artifact=candidate.ref(score_candidate(candidate, weights)),
                    reason=RejectionReason.EXCLUDED_BY_POLICY,
                    detail="matched a must_exclude rule",
                )
            )
        else:
            eligible.append(candidate)

    ranked = rank_candidates(eligible, lane_priorities, weights)
    scores = {candidate.id: score for candidate, score in ranked}

    usage: dict[Lane, int] = {lane: 0 for lane in Lane}
    selected: list[ArtifactRef] = []
    selected_ids: set[str] = set()

    # Forced inclusions: pinned first, then must_include
    forced_rules = (
        (constraints.pinned, InclusionReason.PINNED),
        (constraints.must_include, InclusionReason.MUST_INCLUDE),
    )
    for matchers, inclusion in forced_rules:
        if not matchers:
            continue
        for candidate in eligible:
            if candidate.id in selected_ids:
                continue
            if matches_any(matchers, candidate, path_resolver):
                selected.append(candidate.ref(scores[candidate.id], inclusion))
                selected_ids.add(candidate.id)
                usage[candidate.lane] += candidate.token_estimate

    forced_total = sum(usage.values())

    # Phase A: minimum reservation, sized from candidates that fit their lane
    minimums = effective_minimums(config, constraints)
    fittable_by_lane: dict[Lane, int] = {lane: 0 for lane in Lane}
    fittable_ids: set[str] = set()
    for candidate in eligible:
        if candidate.id in selected_ids:
            continue
        room = config.lanes.get(candidate.lane, _UNBUDGETED_LANE).max - usage[candidate.lane]
        if candidate.token_estimate <= room:
            fittable_by_lane[candidate.lane] += candidate.token_estimate
            fittable_ids.add(candidate.id)

    pool = max(0, config.total_tokens - forced_total)
    reservations: dict[Lane, int] = {}
    shortfalls: list[Shortfall] = []
    for lane in config.lane_order():
        wanted = minimums.get(lane, 0)
        need = max(0, wanted - usage[lane])
        reserved = min(need, fittable_by_lane[lane], pool)
        pool -= reserved
        reservations[lane] = reserved
        if usage[lane] + reserved < wanted:
            shortfalls.append(
                Shortfall(lane=lane, requested=wanted, available=usage[lane] + reserved)
            )

    # Phase B: greedy fill in rank order
    total_used = forced_total
    filled: dict[Lane, int] = {lane: 0 for lane in Lane}
    # Fittable tokens not yet visited; a lane holds no more than it can still use
    remaining_fit = dict(fittable_by_lane)
    for candidate, score in ranked:
        if candidate.id in selected_ids:
            continue
        lane = candidate.lane
        cost = candidate.token_estimate
        budget = config.lanes.get(lane, _UNBUDGETED_LANE)
        if candidate.id in fittable_ids:
            remaining_fit[lane] -= cost

        if usage[lane] + cost > budget.max:
            rejections.append(
                Rejection(
                    artifact=candidate.ref(score),
                    reason=RejectionReason.LANE_MAX_REACHED,
                    detail=(
                        f"lane '{lane.value}' at {usage[lane]}/{budget.max} tokens, "
                        f"needs {cost}"
                    ),
                )
            )
            continue

        held = sum(
            min(max(0, reserved - filled[other]), remaining_fit[other])
            for other, reserved in reservations.items()
            if other != lane
        )
        if total_used + cost + held > config.total_tokens:
            held_note = f" ({held} held for other lanes)" if held else ""
            rejections.append(
                Rejection(
                    artifact=candidate.ref(score),
                    reason=RejectionReason.BUDGET_EXCEEDED,
                    detail=(
                        f"total at {total_used}/{config.total_tokens} tokens"
                        f"{held_note}, needs {cost}"
                    ),
                )
            )
            continue

        selected.append(candidate.ref(score))
        selected_ids.add(candidate.id)
        usage[lane] += cost
        filled[lane] += cost
        total_used += cost

    logger.debug(
        f"Selected {len(selected)} of {len(unique)} candidates "
        f"({total_used}/{config.total_tokens} estimated tokens, "
        f"{len(rejections)} rejected)"
    )

    return SelectionResult(
        selected=selected,
        lane_usage=usage,
        rejections=rejections,
        shortfalls=shortfalls,
        reservations=reservations,
        ranking=[candidate.ref(score) for candidate, score in ranked],
        cache_key=cache_key,
    )
