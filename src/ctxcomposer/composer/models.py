"""Data models for budgeted context composition."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

TokenCounter = Callable[[str], int]


class ArtifactKind(str, Enum):
    """Semantic type of an artifact."""

    CONSTRAINT = "constraint"
    RULE_DOC = "rule_doc"
    LOCAL_DIFF = "local_diff"
    RECENT_EDIT = "recent_edit"
    SYMBOL_CONTEXT = "symbol_context"
    DEPENDENCY_GRAPH = "dependency_graph"
    TEST_CONTEXT = "test_context"
    SEMANTIC_MATCH = "semantic_match"
    SESSION_HISTORY = "session_history"
    VIOLATION = "violation"
    LEARNING = "learning"


class Lane(str, Enum):
    """Priority category with its own token sub-budget."""

    POLICY = "policy"
    RULES = "rules"
    LOCAL = "local"
    STRUCTURE = "structure"
    RETRIEVED = "retrieved"
    HISTORY = "history"


class InclusionReason(str, Enum):
    """How a selected artifact made it into the result."""

    PINNED = "pinned"
    MUST_INCLUDE = "must_include"
    RANKED = "ranked"


class RejectionReason(str, Enum):
    """Why a candidate was left out."""

    EXCLUDED_BY_POLICY = "excluded_by_policy"
    LANE_MAX_REACHED = "lane_max_reached"
    BUDGET_EXCEEDED = "budget_exceeded"


class TokenEstimator:
    """Estimate token counts for text."""

    # Rough heuristic: 1 token ≈ 4 characters
    CHARS_PER_TOKEN = 4

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string."""
        return math.ceil(len(text) / cls.CHARS_PER_TOKEN)

    @classmethod
    def estimate_lines(cls, line_count: int, avg_line_length: int = 40) -> int:
        """Estimate tokens for a given number of lines."""
        return max(1, math.ceil(line_count * avg_line_length / cls.CHARS_PER_TOKEN))


def _no_content() -> str:
    return ""


class ArtifactRef(BaseModel):
    """Reference to a candidate chosen (or considered) during selection."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    lane: Lane
    token_estimate: int = 0
    score: float | None = None
    inclusion: InclusionReason = InclusionReason.RANKED


class Candidate(BaseModel):
    """A produced artifact competing for a place in the composition.

    Content is produced lazily through ``content_provider`` and is only
    requested for candidates that end up selected. Identity is by ``id``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    lane: Lane
    token_estimate: int = Field(default=0, ge=0)
    recency_bucket: int = Field(default=0, ge=0, le=5)
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    specificity_score: float = Field(default=0.0, ge=0.0, le=1.0)
    risk_alignment: float = Field(default=0.0, ge=0.0, le=1.0)
    path: str | None = None  # Derived path, used by pattern matchers
    metadata: dict[str, str] = Field(default_factory=dict)
    content_provider: Callable[[], str] = Field(default=_no_content, exclude=True, repr=False)

    def get_content(self) -> str:
        return self.content_provider()

    def ref(
        self,
        score: float | None = None,
        inclusion: InclusionReason = InclusionReason.RANKED,
    ) -> ArtifactRef:
        return ArtifactRef(
            id=self.id,
            kind=self.kind,
            lane=self.lane,
            token_estimate=self.token_estimate,
            score=score,
            inclusion=inclusion,
        )

    @classmethod
    def from_text(
        cls,
        id: str,
        kind: ArtifactKind,
        lane: Lane,
        text: str,
        token_counter: TokenCounter | None = None,
        **fields,
    ) -> Candidate:
        """Build a candidate around fixed text, estimating its size."""
        counter = token_counter or TokenEstimator.estimate
        return cls(
            id=id,
            kind=kind,
            lane=lane,
            token_estimate=counter(text),
            content_provider=lambda: text,
            **fields,
        )


class Trigger(BaseModel):
    """The event a composition is requested for.

    ``keywords`` and ``files`` only steer candidate scoring in the sources and
    are not part of the cache key. A repeat call that differs only in them
    returns the cached result until the TTL expires or the cache is cleared.
    """

    model_config = ConfigDict(frozen=True)

    workspace_fingerprint: str
    event: str
    commitish: str | None = None
    rules_digest: str = ""
    keywords: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)


class Rejection(BaseModel):
    model_config = ConfigDict(frozen=True)

    artifact: ArtifactRef
    reason: RejectionReason
    detail: str = ""


class Shortfall(BaseModel):
    """A lane whose minimum could not be reserved. Informational only."""

    model_config = ConfigDict(frozen=True)

    lane: Lane
    requested: int
    available: int


class SelectionResult(BaseModel):
    """Outcome of exclusion, forced inclusion and budget allocation."""

    model_config = ConfigDict(frozen=True)

    selected: list[ArtifactRef] = Field(default_factory=list)
    lane_usage: dict[Lane, int] = Field(default_factory=dict)
    rejections: list[Rejection] = Field(default_factory=list)
    shortfalls: list[Shortfall] = Field(default_factory=list)
    reservations: dict[Lane, int] = Field(default_factory=dict)
    ranking: list[ArtifactRef] = Field(default_factory=list)  # Non-excluded, rank order
    cache_key: str = ""

    @property
    def total_tokens(self) -> int:
        return sum(self.lane_usage.values())

    @property
    def selected_ids(self) -> list[str]:
        return [ref.id for ref in self.selected]


class RenderedArtifact(BaseModel):
    """A selected artifact with its content and exact size."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    lane: Lane
    content: str
    exact_token_count: int
    shrunk: bool = False
    original_token_count: int | None = None
    shrink_strategy: str | None = None


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------


class TopArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    score: float | None = None


class LaneSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    selected_count: int = 0
    budget_used: int = 0
    budget_max: int = 0
    top_artifacts: list[TopArtifact] = Field(default_factory=list)


class RejectionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    lane: Lane
    reason: RejectionReason
    detail: str = ""


class ConstraintSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    pinned: int = 0
    must_include: int = 0
    excluded_count: int = 0


class PerformanceSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate_count: int = 0
    selected_count: int = 0
    compression_ratio: float = 0.0
    cache_hit: bool = False


class Explanation(BaseModel):
    """Why each artifact was kept or rejected, in brief."""

    model_config = ConfigDict(frozen=True)

    lanes: dict[Lane, LaneSummary] = Field(default_factory=dict)
    rejections: list[RejectionSummary] = Field(default_factory=list)
    constraints: ConstraintSummary = Field(default_factory=ConstraintSummary)
    performance: PerformanceSummary = Field(default_factory=PerformanceSummary)
    shortfalls: list[Shortfall] = Field(default_factory=list)
    within_budget: bool = True

    def summary(self) -> str:
        """Human-readable summary of the explanation."""
        perf = self.performance
        lines = [
            f"Selected {perf.selected_count} of {perf.candidate_count} candidates "
            f"(ratio {perf.compression_ratio:.2f}, cache {'hit' if perf.cache_hit else 'miss'})",
            f"Constraints: {self.constraints.pinned} pinned, "
            f"{self.constraints.must_include} must-include, "
            f"{self.constraints.excluded_count} excluded",
            "",
        ]
        for lane, info in self.lanes.items():
            lines.append(
                f"  {lane.value:<10} {info.selected_count:>3} selected "
                f"{info.budget_used:>6,} / {info.budget_max:,} tokens"
            )
            for top in info.top_artifacts:
                score = "forced" if top.score is None else f"{top.score:.3f}"
                lines.append(f"    · {top.id} ({top.kind.value}) score={score}")
        if self.shortfalls:
            lines.append("")
            for shortfall in self.shortfalls:
                lines.append(
                    f"  shortfall: {shortfall.lane.value} wanted {shortfall.requested}, "
                    f"got {shortfall.available}"
                )
        if self.rejections:
            lines.append("")
            lines.append("Top rejections:")
            for rej in self.rejections:
                lines.append(f"  ✗ {rej.id} [{rej.reason.value}] {rej.detail}")
        if not self.within_budget:
            lines.append("")
            lines.append("WARNING: rendered content exceeds the token budget")
        return "\n".join(lines)


class RankingEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    artifact: ArtifactRef
    score: float
    selected: bool
    rejection_reason: RejectionReason | None = None


class DecisionLog(BaseModel):
    """Full audit record of one composition call."""

    model_config = ConfigDict(frozen=True)

    log_id: str
    created_at: str
    event: str
    cache_key: str
    duration_ms: float
    digests: dict[str, str] = Field(default_factory=dict)
    rankings: list[RankingEntry] = Field(default_factory=list)


class CompositionResult(BaseModel):
    """The complete composition, ready for rendering into a request."""

    model_config = ConfigDict(frozen=True)

    selected: list[ArtifactRef] = Field(default_factory=list)
    allocation: dict[Lane, int] = Field(default_factory=dict)
    explanation: Explanation = Field(default_factory=Explanation)
    cache_key: str = ""
    cache_hit: bool = False
    actual_tokens: int = 0
    rendered: list[RenderedArtifact] = Field(default_factory=list)
    decision_log: DecisionLog | None = None
    rejections: list[Rejection] = Field(default_factory=list)
    shortfalls: list[Shortfall] = Field(default_factory=list)
    within_budget: bool = True

    def render(self, include_metadata: bool = True) -> str:
        """Render the composed artifacts as one string, grouped by lane."""
        sections: list[str] = []

        by_lane: dict[Lane, list[RenderedArtifact]] = {}
        for artifact in self.rendered:
            by_lane.setdefault(artifact.lane, []).append(artifact)

        for lane, artifacts in by_lane.items():
            sections.append(f"## {lane.value}")
            sections.append("")
            for artifact in artifacts:
                if include_metadata:
                    note = f", shrunk via {artifact.shrink_strategy}" if artifact.shrunk else ""
                    sections.append(
                        f"# [{artifact.kind.value}] {artifact.id} "
                        f"(~{artifact.exact_token_count} tokens{note})"
                    )
                sections.append(artifact.content)
                sections.append("")

        return "\n".join(sections)


class CandidateSource(ABC):
    """Produces candidates for a trigger. May be sync or async."""

    name: str = "source"

    @abstractmethod
    def generate_candidates(
        self, trigger: Trigger, workspace_secret: str
    ) -> list[Candidate] | Awaitable[list[Candidate]]:
        ...
