"""Digest-keyed, TTL-based reuse of composition results.

The cache key is a SHA-256 over a canonical serialization of every input
that can change a composition:

    workspace fingerprint, trigger event, commit reference, candidate-set
    digest, rules digest, budget-config digest, constraints digest and the
    composer version.

Canonical serialization is an explicit list of (field, value) pairs in a
fixed order dumped as compact JSON, so it never depends on a mapping's
iteration order.
"""

from __future__ import annotations

import base64
import hashlib
import json
import threading
import time
from collections.abc import Iterable
from typing import Any, Callable

from ctxcomposer.composer.budget import BudgetConfig
from ctxcomposer.composer.constraints import Constraints
from ctxcomposer.composer.models import Candidate, CompositionResult, Lane, Trigger

COMPOSER_VERSION = "1.0.0"
DEFAULT_TTL_SECONDS = 5 * 60
CACHE_KEY_LENGTH = 32
DEFAULT_COMMITISH = "HEAD"


def canonical_serialize(fields: list[tuple[str, Any]]) -> str:
    """Serialize ordered (name, value) pairs; values must be JSON scalars or lists."""
    return json.dumps(
        [[name, value] for name, value in fields],
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def candidates_digest(candidates: Iterable[Candidate]) -> str:
    entries = sorted(
        f"{c.id}:{c.lane.value}:{c.kind.value}:{c.token_estimate}" for c in candidates
    )
    return _sha256_hex("\n".join(entries))


def budget_digest(config: BudgetConfig) -> str:
    fields: list[tuple[str, Any]] = [("total_tokens", config.total_tokens)]
    for lane in Lane:
        budget = config.lanes.get(lane)
        if budget is None:
            fields.append((lane.value, None))
        else:
            fields.append((lane.value, [budget.min, budget.max, budget.priority]))
    return _sha256_hex(canonical_serialize(fields))


def constraints_digest(constraints: Constraints) -> str:
    fields: list[tuple[str, Any]] = [
        ("must_include", sorted(str(m) for m in constraints.must_include)),
        ("must_exclude", sorted(str(m) for m in constraints.must_exclude)),
        ("pinned", sorted(str(m) for m in constraints.pinned)),
        (
            "lane_requirements",
            sorted(f"{r.lane.value}:{r.min_tokens}" for r in constraints.lane_requirements),
        ),
    ]
    return _sha256_hex(canonical_serialize(fields))


def compute_digests(
    trigger: Trigger,
    candidates: Iterable[Candidate],
    config: BudgetConfig,
    constraints: Constraints,
    rules_digest: str,
) -> dict[str, str]:
    """All inputs of the cache key, in key order."""
    return {
        "workspace": trigger.workspace_fingerprint,
        "event": trigger.event,
        "commitish": trigger.commitish or DEFAULT_COMMITISH,
        "candidates": candidates_digest(candidates),
        "rules": rules_digest,
        "budget": budget_digest(config),
        "constraints": constraints_digest(constraints),
        "version": COMPOSER_VERSION,
    }


def build_cache_key(digests: dict[str, str]) -> str:
    """base64url(SHA-256) of the canonical digests, truncated to 32 chars."""
    fields = [
        (name, digests[name])
        for name in (
            "workspace", "event", "commitish", "candidates",
            "rules", "budget", "constraints", "version",
        )
    ]
    raw = hashlib.sha256(canonical_serialize(fields).encode("utf-8")).digest()
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")[:CACHE_KEY_LENGTH]


class SelectionCache:
    """Thread-safe in-memory cache of CompositionResults with per-entry TTL.

    Expired entries are evicted lazily on ``get``/``has``.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, CompositionResult]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _live_entry(self, key: str) -> CompositionResult | None:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def get(self, key: str) -> CompositionResult | None:
        with self._lock:
            value = self._live_entry(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def set(self, key: str, value: CompositionResult) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, trigger: Trigger | None = None) -> None:
        """Drop every entry. Entries are not indexed by trigger, so any
        invalidation is a full clear."""
        self.clear()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self.ttl_seconds,
            }
