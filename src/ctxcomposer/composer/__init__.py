"""Budgeted context composition.

Selects, renders and shrinks candidate artifacts into a lane-budgeted
context for an LLM request, with a cache and an explanation of every
decision.

Usage:
    from ctxcomposer.composer import Composer, Trigger

    composer = Composer(sources=[RuleDocSource(root)])
    result = asyncio.run(composer.compose(Trigger(workspace_fingerprint=fp, event="edit")))
    print(result.render())
"""

from ctxcomposer.composer.budget import DEFAULT_BUDGET_CONFIG, BudgetConfig, LaneBudget
from ctxcomposer.composer.cache import SelectionCache
from ctxcomposer.composer.constraints import (
    Constraints,
    IdMatcher,
    KindMatcher,
    LaneMatcher,
    LaneRequirement,
    PatternMatcher,
)
from ctxcomposer.composer.engine import Composer
from ctxcomposer.composer.models import (
    ArtifactKind,
    Candidate,
    CandidateSource,
    CompositionResult,
    Lane,
    TokenEstimator,
    Trigger,
)

__all__ = [
    "Composer",
    "CompositionResult",
    "Candidate",
    "CandidateSource",
    "Trigger",
    "ArtifactKind",
    "Lane",
    "TokenEstimator",
    "BudgetConfig",
    "LaneBudget",
    "DEFAULT_BUDGET_CONFIG",
    "Constraints",
    "IdMatcher",
    "KindMatcher",
    "LaneMatcher",
    "PatternMatcher",
    "LaneRequirement",
    "SelectionCache",
]
