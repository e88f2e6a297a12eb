"""Static source and shared helpers for the built-in candidate sources."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable
from pathlib import Path

from ctxcomposer.composer.models import ArtifactKind, Candidate, CandidateSource, Trigger

# Age thresholds (seconds) for recency buckets 5..1; older is bucket 0
_RECENCY_THRESHOLDS = (
    60 * 60,            # within the hour
    24 * 60 * 60,       # within the day
    7 * 24 * 60 * 60,   # within the week
    30 * 24 * 60 * 60,  # within the month
    90 * 24 * 60 * 60,  # within the quarter
)


class StaticSource(CandidateSource):
    """Serves a fixed list of candidates (tests, pre-computed artifacts)."""

    name = "static"

    def __init__(self, candidates: Iterable[Candidate], name: str | None = None) -> None:
        self._candidates = list(candidates)
        if name:
            self.name = name

    def generate_candidates(self, trigger: Trigger, workspace_secret: str) -> list[Candidate]:
        return list(self._candidates)


def compute_workspace_fingerprint(value: str | Path) -> str:
    """Deterministic short fingerprint for a workspace path or label."""
    if isinstance(value, Path):
        value = str(value.resolve())
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def stable_artifact_id(workspace_secret: str, kind: ArtifactKind, key: str) -> str:
    """Artifact id that is stable per workspace but opaque across workspaces."""
    digest = hmac.new(
        workspace_secret.encode("utf-8"),
        f"{kind.value}:{key}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{kind.value}:{digest[:12]}"


def recency_bucket(age_seconds: float) -> int:
    """Map content age to 5 (fresh) .. 0 (stale)."""
    for bucket, threshold in zip(range(5, 0, -1), _RECENCY_THRESHOLDS):
        if age_seconds < threshold:
            return bucket
    return 0


def keyword_relevance(text: str, keywords: Iterable[str], default: float = 0.5) -> float:
    """Fraction of trigger keywords that occur in the text."""
    wanted = [k.lower() for k in keywords if k.strip()]
    if not wanted:
        return default
    lowered = text.lower()
    hits = sum(1 for k in wanted if k in lowered)
    return round(hits / len(wanted), 3)
