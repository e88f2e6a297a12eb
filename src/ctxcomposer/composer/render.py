"""Rendering of selected artifacts and post-render shrink-to-fit.

Selection works on cheap estimates. Rendering produces the real content and
counts it with the real token counter, which can disagree with the estimate.
When the exact total overflows the budget, artifacts are shrunk with a fixed
per-kind strategy until the overflow is absorbed:

    never             constraint, rule_doc (protected, never touched)
    truncate_oldest   local_diff, recent_edit, semantic_match
    keep_signatures   symbol_context, test_context
    collapse_summary  dependency_graph
    drop_entries      session_history, violation, learning

Lowest-priority lanes are shrunk first. No artifact is shrunk below
MIN_SHRUNK_SIZE tokens, and shrinking only ever removes content.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Callable

from ctxcomposer.composer.models import (
    ArtifactKind,
    Candidate,
    Lane,
    RenderedArtifact,
    SelectionResult,
    TokenCounter,
    TokenEstimator,
)
from ctxcomposer.exceptions import ConsistencyError

logger = logging.getLogger("ctxcomposer.composer")

MIN_SHRUNK_SIZE = 50

TRUNCATION_MARKER = "...(truncated)"
COLLAPSE_MARKER = "..."


class ShrinkStrategy(str, Enum):
    NEVER = "never"
    TRUNCATE_OLDEST = "truncate_oldest"
    KEEP_SIGNATURES = "keep_signatures"
    COLLAPSE_SUMMARY = "collapse_summary"
    DROP_ENTRIES = "drop_entries"


SHRINK_STRATEGIES: dict[ArtifactKind, ShrinkStrategy] = {
    ArtifactKind.CONSTRAINT: ShrinkStrategy.NEVER,
    ArtifactKind.RULE_DOC: ShrinkStrategy.NEVER,
    ArtifactKind.LOCAL_DIFF: ShrinkStrategy.TRUNCATE_OLDEST,
    ArtifactKind.RECENT_EDIT: ShrinkStrategy.TRUNCATE_OLDEST,
    ArtifactKind.SEMANTIC_MATCH: ShrinkStrategy.TRUNCATE_OLDEST,
    ArtifactKind.SYMBOL_CONTEXT: ShrinkStrategy.KEEP_SIGNATURES,
    ArtifactKind.TEST_CONTEXT: ShrinkStrategy.KEEP_SIGNATURES,
    ArtifactKind.DEPENDENCY_GRAPH: ShrinkStrategy.COLLAPSE_SUMMARY,
    ArtifactKind.SESSION_HISTORY: ShrinkStrategy.DROP_ENTRIES,
    ArtifactKind.VIOLATION: ShrinkStrategy.DROP_ENTRIES,
    ArtifactKind.LEARNING: ShrinkStrategy.DROP_ENTRIES,
}

# Lines kept by keep_signatures
_DECLARATION = re.compile(
    r"^\s*(?:@\w"
    r"|(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?:def|class|function|interface|type|enum|struct|impl|trait|fn|func"
    r"|describe|it|test)\b)"
)

# Lines kept by collapse_summary: headings and bullets
_SUMMARY_LINE = re.compile(r"^\s*(?:#{1,6}\s|[-*+]\s|\d+[.)]\s)")

_ENTRY_SPLIT = re.compile(r"\n\s*\n")


def strategy_for(kind: ArtifactKind) -> ShrinkStrategy:
    return SHRINK_STRATEGIES.get(kind, ShrinkStrategy.NEVER)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_selection(
    selection: SelectionResult,
    candidates: Iterable[Candidate],
    token_counter: TokenCounter = TokenEstimator.estimate,
) -> list[RenderedArtifact]:
    """Resolve selected references and produce exactly-counted content.

    Raises:
        ConsistencyError: a selected id has no candidate in the snapshot.
    """
    by_id: dict[str, Candidate] = {}
    for candidate in candidates:
        by_id.setdefault(candidate.id, candidate)

    rendered: list[RenderedArtifact] = []
    for ref in selection.selected:
        candidate = by_id.get(ref.id)
        if candidate is None:
            raise ConsistencyError(
                f"Selected artifact '{ref.id}' is not in the candidate snapshot; "
                "selection and rendering must use the same candidates"
            )
        content = candidate.get_content()
        rendered.append(
            RenderedArtifact(
                id=candidate.id,
                kind=candidate.kind,
                lane=candidate.lane,
                content=content,
                exact_token_count=token_counter(content),
            )
        )
    return rendered


# ---------------------------------------------------------------------------
# Shrink strategies
# ---------------------------------------------------------------------------


def _smallest_fitting(
    steps: int, build: Callable[[int], str], target: int, counter: TokenCounter
) -> int:
    """Smallest n in [0, steps] with counter(build(n)) <= target (steps if none)."""
    lo, hi = 0, steps
    while lo < hi:
        mid = (lo + hi) // 2
        if counter(build(mid)) <= target:
            hi = mid
        else:
            lo = mid + 1
    return lo


def _pick_step(
    steps: int, build: Callable[[int], str], target: int, counter: TokenCounter
) -> int:
    n = _smallest_fitting(steps, build, target, counter)
    # Back off one step rather than undershoot the floor
    if n > 0 and counter(build(n)) < MIN_SHRUNK_SIZE <= counter(build(n - 1)):
        return n - 1
    return n


def truncate_oldest(content: str, target: int, counter: TokenCounter) -> str:
    """Drop the earliest lines, prefixing a truncation marker."""
    if counter(content) <= target:
        return content
    lines = content.splitlines()
    if not lines:
        return content

    def build(dropped: int) -> str:
        return "\n".join([TRUNCATION_MARKER, *lines[dropped:]])

    dropped = _smallest_fitting(len(lines), build, target, counter)
    if dropped == 0:
        return content

    # Keep the tail of the boundary line if it fits
    boundary = lines[dropped - 1]
    rest = lines[dropped:]

    def build_partial(offset: int) -> str:
        return "\n".join([TRUNCATION_MARKER, boundary[offset:], *rest])

    offset = _smallest_fitting(len(boundary), build_partial, target, counter)
    if offset < len(boundary):
        return build_partial(offset)
    return build(dropped)


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def keep_signatures(content: str, target: int, counter: TokenCounter) -> str:
    """Keep declaration lines and collapse bodies, last body line first."""
    if counter(content) <= target:
        return content
    lines = content.splitlines()
    body = [
        i for i, line in enumerate(lines)
        if line.strip() and not _DECLARATION.match(line)
    ]
    removal = list(reversed(body))

    def build(n: int) -> str:
        removed = set(removal[:n])
        out: list[str] = []
        in_gap = False
        for i, line in enumerate(lines):
            if i in removed:
                if not in_gap:
                    out.append(_indent_of(line) + COLLAPSE_MARKER)
                    in_gap = True
                continue
            if in_gap and not line.strip():
                continue
            in_gap = False
            out.append(line)
        return "\n".join(out)

    text = build(_pick_step(len(removal), build, target, counter))
    if counter(text) > target:
        text = truncate_oldest(text, target, counter)
    return text


def collapse_summary(content: str, target: int, counter: TokenCounter) -> str:
    """Keep headings and bullets, then note how many lines were collapsed."""
    if counter(content) <= target:
        return content
    lines = content.splitlines()
    detail = [
        i for i, line in enumerate(lines)
        if line.strip() and not _SUMMARY_LINE.match(line)
    ]
    removal = list(reversed(detail))

    def build(n: int) -> str:
        if n == 0:
            return content
        removed = set(removal[:n])
        kept = [
            line for i, line in enumerate(lines)
            if i not in removed and line.strip()
        ]
        kept.append(f"...({n} lines collapsed)")
        return "\n".join(kept)

    text = build(_pick_step(len(removal), build, target, counter))
    if counter(text) > target:
        text = truncate_oldest(text, target, counter)
    return text


def drop_entries(content: str, target: int, counter: TokenCounter) -> str:
    """Drop the oldest blank-line-delimited entries first."""
    if counter(content) <= target:
        return content
    entries = [e.strip("\n") for e in _ENTRY_SPLIT.split(content) if e.strip()]
    if not entries:
        return content

    def note(dropped: int) -> str:
        return f"...({dropped} entries dropped)"

    def build(dropped: int) -> str:
        if dropped == 0:
            return content
        return "\n\n".join([note(dropped), *entries[dropped:]])

    last = len(entries) - 1
    dropped = _pick_step(last, build, target, counter)
    text = build(dropped)
    if counter(text) <= target or dropped < last:
        return text

    # Only the newest entry is left and it is still too large
    prefix = note(last) + "\n\n" if last else ""
    room = max(1, target - counter(prefix))
    text = prefix + truncate_oldest(entries[-1], room, counter)
    # Joining can round the count up past the target; measure the whole text
    while counter(text) > target and room > 1:
        room -= 1
        text = prefix + truncate_oldest(entries[-1], room, counter)
    return text


_SHRINKERS: dict[ShrinkStrategy, Callable[[str, int, TokenCounter], str]] = {
    ShrinkStrategy.TRUNCATE_OLDEST: truncate_oldest,
    ShrinkStrategy.KEEP_SIGNATURES: keep_signatures,
    ShrinkStrategy.COLLAPSE_SUMMARY: collapse_summary,
    ShrinkStrategy.DROP_ENTRIES: drop_entries,
}


# ---------------------------------------------------------------------------
# Shrink-to-fit
# ---------------------------------------------------------------------------


def shrink_to_fit(
    artifacts: list[RenderedArtifact],
    target: int,
    lane_priorities: Mapping[Lane, float],
    token_counter: TokenCounter = TokenEstimator.estimate,
) -> list[RenderedArtifact]:
    """Shrink rendered artifacts until their exact total fits ``target``.

    Returns ``artifacts`` itself when it already fits; otherwise a new list in
    the same order. The total can remain above target when only protected
    (``never``) artifacts are left to shrink.
    """
    total = sum(a.exact_token_count for a in artifacts)
    if total <= target:
        return artifacts

    overflow = total - target
    order = sorted(
        range(len(artifacts)),
        key=lambda i: (
            strategy_for(artifacts[i].kind) is ShrinkStrategy.NEVER,
            -lane_priorities.get(artifacts[i].lane, 0),
        ),
    )

    result = list(artifacts)
    for i in order:
        if overflow <= 0:
            break
        artifact = result[i]
        strategy = strategy_for(artifact.kind)
        if strategy is ShrinkStrategy.NEVER:
            continue

        new_target = max(artifact.exact_token_count - overflow, MIN_SHRUNK_SIZE)
        if artifact.exact_token_count <= new_target:
            continue

        content = _SHRINKERS[strategy](artifact.content, new_target, token_counter)
        new_count = token_counter(content)
        if new_count >= artifact.exact_token_count:
            continue

        overflow -= artifact.exact_token_count - new_count
        result[i] = artifact.model_copy(
            update={
                "content": content,
                "exact_token_count": new_count,
                "shrunk": True,
                "original_token_count": artifact.exact_token_count,
                "shrink_strategy": strategy.value,
            }
        )
        logger.debug(
            f"Shrunk {artifact.id} via {strategy.value}: "
            f"{artifact.exact_token_count} -> {new_count} tokens"
        )

    if overflow > 0:
        logger.warning(
            f"Rendered content still exceeds budget by {overflow} tokens "
            "after shrinking; remaining artifacts are protected"
        )
    return result
