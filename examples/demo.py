#!/usr/bin/env python3
"""Demo: Using ctxcomposer as a Python library.

This shows how to compose context programmatically, not just via the CLI.
"""

import asyncio
from pathlib import Path

from ctxcomposer.composer import (
    ArtifactKind,
    Candidate,
    Composer,
    Constraints,
    KindMatcher,
    Lane,
    Trigger,
)
from ctxcomposer.sources import (
    GitDiffSource,
    RuleDocSource,
    StaticSource,
    compute_workspace_fingerprint,
)


def main():
    # Point at any repository
    project_root = Path(".")

    # 1. Candidates that come from somewhere other than the built-in sources
    history = Candidate.from_text(
        id="session:latest",
        kind=ArtifactKind.SESSION_HISTORY,
        lane=Lane.HISTORY,
        text="user asked to rename login()\n\nassistant proposed sign_in()",
        recency_bucket=5,
        relevance_score=0.6,
    )

    composer = Composer(
        sources=[
            RuleDocSource(project_root),
            GitDiffSource(project_root),
            StaticSource([history], name="session"),
        ],
        emit_decision_logs=True,
    )
    trigger = Trigger(
        workspace_fingerprint=compute_workspace_fingerprint(project_root),
        event="file_saved",
        keywords=["login"],
    )

    # 2. Compose
    print("Composing context...")
    result = asyncio.run(composer.compose(trigger))
    print(f"  Tokens: {result.actual_tokens} (within budget: {result.within_budget})")
    print(f"  Cache key: {result.cache_key}")
    print()
    print(result.explanation.summary())

    # 3. Same inputs again: served from the cache
    again = asyncio.run(composer.compose(trigger))
    print(f"\nSecond call cache hit: {again.cache_hit}")

    # 4. Constraints change the key and the selection
    no_history = Constraints(must_exclude=[KindMatcher(kind=ArtifactKind.SESSION_HISTORY)])
    filtered = asyncio.run(composer.compose(trigger, no_history))
    print(f"Without history: {len(filtered.selected)} artifacts selected")

    # 5. The rendered context, ready to paste into a request
    print("\n" + "=" * 60)
    print(result.render())


if __name__ == "__main__":
    main()
