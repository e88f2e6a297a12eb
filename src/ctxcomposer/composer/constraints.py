"""Inclusion/exclusion policy: matchers and constraint sets."""

from __future__ import annotations

import fnmatch
from typing import Annotated, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ctxcomposer.composer.models import ArtifactKind, Candidate, Lane

PathResolver = Callable[[Candidate], Optional[str]]


class IdMatcher(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["id"] = "id"
    id: str

    def __str__(self) -> str:
        return f"id:{self.id}"


class KindMatcher(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["kind"] = "kind"
    kind: ArtifactKind

    def __str__(self) -> str:
        return f"kind:{self.kind.value}"


class LaneMatcher(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["lane"] = "lane"
    lane: Lane

    def __str__(self) -> str:
        return f"lane:{self.lane.value}"


class PatternMatcher(BaseModel):
    """Glob pattern matched against a candidate's derived path."""

    model_config = ConfigDict(frozen=True)

    type: Literal["pattern"] = "pattern"
    pattern: str

    def __str__(self) -> str:
        return f"pattern:{self.pattern}"


Matcher = Annotated[
    Union[IdMatcher, KindMatcher, LaneMatcher, PatternMatcher],
    Field(discriminator="type"),
]


class LaneRequirement(BaseModel):
    """Raise a lane's minimum for one composition."""

    model_config = ConfigDict(frozen=True)

    lane: Lane
    min_tokens: int = Field(ge=0)


class Constraints(BaseModel):
    """Hard policy applied before scoring.

    Precedence, highest first: must_exclude, pinned, must_include.
    """

    model_config = ConfigDict(frozen=True)

    must_include: list[Matcher] = Field(default_factory=list)
    must_exclude: list[Matcher] = Field(default_factory=list)
    pinned: list[Matcher] = Field(default_factory=list)
    lane_requirements: list[LaneRequirement] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.must_include or self.must_exclude or self.pinned or self.lane_requirements
        )


EMPTY_CONSTRAINTS = Constraints()


def matches(
    matcher: Matcher,
    candidate: Candidate,
    path_resolver: PathResolver | None = None,
) -> bool:
    """Whether a single matcher selects the candidate."""
    match matcher:
        case IdMatcher(id=wanted):
            return candidate.id == wanted
        case KindMatcher(kind=wanted):
            return candidate.kind == wanted
        case LaneMatcher(lane=wanted):
            return candidate.lane == wanted
        case PatternMatcher(pattern=pattern):
            if path_resolver is None:
                return False
            path = path_resolver(candidate)
            if path is None:
                return False
            return fnmatch.fnmatch(path, pattern)
    return False


def matches_any(
    matchers: list[Matcher],
    candidate: Candidate,
    path_resolver: PathResolver | None = None,
) -> bool:
    return any(matches(m, candidate, path_resolver) for m in matchers)


def candidate_path(candidate: Candidate) -> str | None:
    """Default path resolver: the candidate's own ``path`` field."""
    return candidate.path
