"""Composer: the top-level entry point for context composition.

Pipeline for one call:
  1. Gather candidates from every registered source (concurrently).
  2. Build the cache key from the input digests; return a copy on a hit.
  3. Select (policy, reservation, greedy fill).
  4. Render selected artifacts with the exact token counter.
  5. Shrink to fit if the rendered total overflows the budget.
  6. Explain (and optionally log the full decision), cache, return.

Configuration is validated once at construction and never changes. The only
state that mutates across calls is the rules digest and the cache.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Iterable, Sequence

from ctxcomposer.composer.budget import (
    DEFAULT_BUDGET_CONFIG,
    BudgetConfig,
    validate_budget_config,
)
from ctxcomposer.composer.cache import (
    DEFAULT_TTL_SECONDS,
    SelectionCache,
    build_cache_key,
    compute_digests,
)
from ctxcomposer.composer.constraints import EMPTY_CONSTRAINTS, Constraints, PathResolver
from ctxcomposer.composer.explain import (
    build_decision_log,
    build_explanation,
    mark_cache_hit,
)
from ctxcomposer.composer.models import (
    Candidate,
    CandidateSource,
    CompositionResult,
    TokenCounter,
    TokenEstimator,
    Trigger,
)
from ctxcomposer.composer.render import render_selection, shrink_to_fit
from ctxcomposer.composer.selection import dedupe_candidates, select_candidates
from ctxcomposer.exceptions import ComposerError, SourceError

logger = logging.getLogger("ctxcomposer.composer")


class Composer:
    """Budgeted, lane-prioritized context composer.

    Usage:
        composer = Composer(sources=[RuleDocSource(root)], emit_decision_logs=True)
        result = asyncio.run(composer.compose(trigger))
        print(result.render())
    """

    def __init__(
        self,
        budget_config: BudgetConfig = DEFAULT_BUDGET_CONFIG,
        sources: Sequence[CandidateSource] = (),
        workspace_secret: str = "",
        token_counter: TokenCounter | None = None,
        cache: SelectionCache | None = None,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        emit_decision_logs: bool = False,
        path_resolver: PathResolver | None = None,
        rules_digest: str = "",
    ) -> None:
        self._config = validate_budget_config(budget_config)
        self._sources = tuple(sources)
        self._workspace_secret = workspace_secret
        self._token_counter = token_counter or TokenEstimator.estimate
        self._cache = cache if cache is not None else SelectionCache(ttl_seconds=cache_ttl)
        self._emit_decision_logs = emit_decision_logs
        self._path_resolver = path_resolver
        self._rules_digest = rules_digest

    @property
    def sources(self) -> tuple[CandidateSource, ...]:
        return self._sources

    @property
    def rules_digest(self) -> str:
        return self._rules_digest

    # -------------------------------------------------------------------
    # Main entry points
    # -------------------------------------------------------------------

    async def compose(
        self,
        trigger: Trigger,
        constraints: Constraints | None = None,
    ) -> CompositionResult:
        """Gather candidates from all sources and compose them.

        Raises:
            SourceError: a candidate source failed (fail-fast, no partial set).
            ConsistencyError: selection and rendering disagreed on the snapshot.
        """
        candidates = await self._gather_candidates(trigger)
        return self.compose_with_candidates(candidates, trigger, constraints)

    def compose_with_candidates(
        self,
        candidates: Iterable[Candidate],
        trigger: Trigger,
        constraints: Constraints | None = None,
    ) -> CompositionResult:
        """Compose an explicit candidate snapshot, bypassing the sources."""
        constraints = constraints or EMPTY_CONSTRAINTS
        start_time = time.perf_counter()

        snapshot = dedupe_candidates(candidates)
        digests = compute_digests(
            trigger,
            snapshot,
            self._config,
            constraints,
            trigger.rules_digest or self._rules_digest,
        )
        cache_key = build_cache_key(digests)

        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key} ({trigger.event})")
            return cached.model_copy(
                update={
                    "cache_hit": True,
                    "explanation": mark_cache_hit(cached.explanation),
                }
            )
        logger.debug(f"Cache miss for {cache_key} ({trigger.event})")

        selection = select_candidates(
            snapshot,
            self._config,
            constraints,
            path_resolver=self._path_resolver,
            cache_key=cache_key,
        )
        rendered = render_selection(selection, snapshot, self._token_counter)
        rendered = shrink_to_fit(
            rendered,
            self._config.total_tokens,
            self._config.lane_priorities(),
            self._token_counter,
        )

        actual_tokens = sum(a.exact_token_count for a in rendered)
        within_budget = actual_tokens <= self._config.total_tokens

        explanation = build_explanation(
            selection,
            rendered,
            self._config,
            candidate_count=len(snapshot),
            cache_hit=False,
            within_budget=within_budget,
        )

        decision_log = None
        if self._emit_decision_logs:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            decision_log = build_decision_log(selection, digests, trigger.event, elapsed_ms)

        result = CompositionResult(
            selected=selection.selected,
            allocation=selection.lane_usage,
            explanation=explanation,
            cache_key=cache_key,
            cache_hit=False,
            actual_tokens=actual_tokens,
            rendered=rendered,
            decision_log=decision_log,
            rejections=selection.rejections,
            shortfalls=selection.shortfalls,
            within_budget=within_budget,
        )
        self._cache.set(cache_key, result)
        return result

    # -------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------

    async def _gather_candidates(self, trigger: Trigger) -> list[Candidate]:
        """Run every source; wait for all of them before returning or raising."""
        if not self._sources:
            return []

        outcomes = await asyncio.gather(
            *(self._run_source(source, trigger) for source in self._sources),
            return_exceptions=True,
        )

        candidates: list[Candidate] = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            candidates.extend(outcome)
        return candidates

    async def _run_source(self, source: CandidateSource, trigger: Trigger) -> list[Candidate]:
        try:
            if inspect.iscoroutinefunction(source.generate_candidates):
                produced = await source.generate_candidates(trigger, self._workspace_secret)
            else:
                # Blocking sources (file reads, git) run in worker threads
                produced = await asyncio.to_thread(
                    source.generate_candidates, trigger, self._workspace_secret
                )
                if inspect.isawaitable(produced):
                    produced = await produced
            return list(produced)
        except ComposerError:
            raise
        except Exception as e:
            raise SourceError(source.name, e) from e

    # -------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------

    def set_rules_digest(self, digest: str) -> None:
        """Replace the rules digest. Clears the cache."""
        self._rules_digest = digest
        self._cache.invalidate()

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_stats(self) -> dict:
        return self._cache.stats()

    def get_config(self) -> BudgetConfig:
        return self._config
