"""Candidate sources feeding the Composer."""

from ctxcomposer.sources.base import (
    CandidateSource,
    StaticSource,
    compute_workspace_fingerprint,
    stable_artifact_id,
)
from ctxcomposer.sources.files import (
    DEFAULT_LEARNINGS_FILE,
    DEFAULT_RULE_FILES,
    DEFAULT_VIOLATIONS_FILE,
    JsonlSource,
    RuleDocSource,
)
from ctxcomposer.sources.git import GitDiffSource

__all__ = [
    "CandidateSource",
    "StaticSource",
    "RuleDocSource",
    "JsonlSource",
    "GitDiffSource",
    "DEFAULT_RULE_FILES",
    "DEFAULT_VIOLATIONS_FILE",
    "DEFAULT_LEARNINGS_FILE",
    "compute_workspace_fingerprint",
    "stable_artifact_id",
]
