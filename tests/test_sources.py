"""Tests for the built-in candidate sources."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from ctxcomposer.composer.engine import Composer
from ctxcomposer.composer.models import ArtifactKind, Lane, Trigger
from ctxcomposer.sources import (
    GitDiffSource,
    JsonlSource,
    RuleDocSource,
    StaticSource,
    compute_workspace_fingerprint,
    stable_artifact_id,
)
from ctxcomposer.sources.base import keyword_relevance, recency_bucket
from ctxcomposer.sources.files import format_entry
from ctxcomposer.sources.git import get_git_diff, parse_diff

SAMPLE_DIFF = """\
diff --git a/src/auth.py b/src/auth.py
index 1234567..abcdefg 100644
--- a/src/auth.py
+++ b/src/auth.py
@@ -1,2 +1,3 @@
 def login(user):
-    return user
+    token = issue_token(user)
+    return token
diff --git a/src/legacy.py b/src/legacy.py
deleted file mode 100644
index 1111111..0000000
--- a/src/legacy.py
+++ /dev/null
@@ -1,2 +0,0 @@
-def old():
-    pass
diff --git a/src/new.py b/src/new.py
new file mode 100644
index 0000000..2222222
--- /dev/null
+++ b/src/new.py
@@ -0,0 +1 @@
+VALUE = 1
"""


class CannedDiffSource(GitDiffSource):
    def diff_text(self, trigger: Trigger) -> str:
        return SAMPLE_DIFF


@pytest.fixture
def focus_trigger() -> Trigger:
    return Trigger(
        workspace_fingerprint="ws",
        event="file_saved",
        keywords=["token"],
        files=["src/auth.py"],
    )


class TestHelpers:
    def test_workspace_fingerprint(self, tmp_path: Path):
        fp = compute_workspace_fingerprint(tmp_path)
        assert len(fp) == 16
        assert fp == compute_workspace_fingerprint(tmp_path / "sub" / "..")
        assert fp != compute_workspace_fingerprint("some-label")

    def test_stable_artifact_id(self):
        a = stable_artifact_id("secret", ArtifactKind.RULE_DOC, "ARCHITECTURE.md")
        assert a.startswith("rule_doc:")
        assert a == stable_artifact_id("secret", ArtifactKind.RULE_DOC, "ARCHITECTURE.md")
        assert a != stable_artifact_id("other", ArtifactKind.RULE_DOC, "ARCHITECTURE.md")

    def test_recency_bucket(self):
        assert recency_bucket(60) == 5
        assert recency_bucket(2 * 60 * 60) == 4
        assert recency_bucket(3 * 24 * 60 * 60) == 3
        assert recency_bucket(20 * 24 * 60 * 60) == 2
        assert recency_bucket(60 * 24 * 60 * 60) == 1
        assert recency_bucket(365 * 24 * 60 * 60) == 0

    def test_keyword_relevance(self):
        assert keyword_relevance("Session token rotation", ["token", "billing"]) == 0.5
        assert keyword_relevance("anything", []) == 0.5
        assert keyword_relevance("anything", [], default=0.0) == 0.0

    def test_static_source(self, mixed_candidates, trigger):
        source = StaticSource(mixed_candidates, name="fixed")
        assert source.name == "fixed"
        assert source.generate_candidates(trigger, "") == mixed_candidates


class TestRuleDocSource:
    def test_finds_rule_docs(self, tmp_project: Path, focus_trigger: Trigger):
        candidates = RuleDocSource(tmp_project).generate_candidates(focus_trigger, "s")
        by_path = {c.path: c for c in candidates}
        assert set(by_path) == {".llm-context/ARCHITECTURE.md", ".llm-context/CONSTRAINTS.md"}

        constraint = by_path[".llm-context/CONSTRAINTS.md"]
        assert constraint.kind is ArtifactKind.CONSTRAINT
        assert constraint.lane is Lane.POLICY
        assert constraint.risk_alignment == 1.0
        assert constraint.recency_bucket == 5
        assert constraint.relevance_score == 1.0

        rule = by_path[".llm-context/ARCHITECTURE.md"]
        assert rule.kind is ArtifactKind.RULE_DOC
        assert rule.lane is Lane.RULES
        assert "auth service" in rule.get_content()

    def test_custom_file_list(self, tmp_project: Path, focus_trigger: Trigger):
        source = RuleDocSource(tmp_project, files=["missing.md"])
        assert source.generate_candidates(focus_trigger, "s") == []


class TestJsonlSource:
    def test_violations_collapsed(self, tmp_project: Path, focus_trigger: Trigger):
        source = JsonlSource(
            tmp_project, ".snapback/patterns/violations.jsonl",
            kind=ArtifactKind.VIOLATION, lane=Lane.HISTORY,
        )
        [candidate] = source.generate_candidates(focus_trigger, "s")
        content = candidate.get_content()

        assert candidate.kind is ArtifactKind.VIOLATION
        assert candidate.metadata == {"entries": "2"}
        assert candidate.specificity_score == 0.8
        assert candidate.risk_alignment == 0.9
        assert candidate.recency_bucket == 0
        # Oldest first
        assert content.index("repository-only") < content.index("no-raw-tokens")
        assert "\n\n" in content

    def test_malformed_lines_skipped(self, tmp_project: Path, focus_trigger: Trigger):
        source = JsonlSource(tmp_project, ".snapback/learnings/learnings.jsonl")
        records = source.load_records()
        assert len(records) == 1
        [candidate] = source.generate_candidates(focus_trigger, "s")
        assert candidate.lane is Lane.HISTORY
        assert candidate.specificity_score == 0.3

    def test_missing_file(self, tmp_project: Path, focus_trigger: Trigger):
        source = JsonlSource(tmp_project, "nope.jsonl")
        assert source.generate_candidates(focus_trigger, "s") == []

    def test_format_entry(self):
        text = format_entry({"type": "violation", "rule": "r1", "ts": 1, "tags": ["a"]})
        assert text.splitlines() == ["[violation]", "rule: r1", 'tags: ["a"]']


class TestGitDiffSource:
    def test_parse_diff(self):
        files = parse_diff(SAMPLE_DIFF)
        assert [f.path for f in files] == ["src/auth.py", "src/legacy.py", "src/new.py"]
        assert [f.status for f in files] == ["modified", "deleted", "added"]
        assert files[0].added_lines == 2
        assert files[0].deleted_lines == 1
        assert files[0].hunks[0].new_count == 3
        assert "+    token = issue_token(user)" in files[0].render()

    def test_parse_empty(self):
        assert parse_diff("") == []

    def test_candidates_per_file(self, tmp_path: Path, focus_trigger: Trigger):
        source = CannedDiffSource(tmp_path)
        candidates = source.generate_candidates(focus_trigger, "s")
        by_path = {c.path: c for c in candidates}

        assert all(c.kind is ArtifactKind.LOCAL_DIFF for c in candidates)
        assert all(c.lane is Lane.LOCAL for c in candidates)
        assert by_path["src/auth.py"].relevance_score == 1.0
        assert by_path["src/auth.py"].specificity_score == 0.9
        assert by_path["src/legacy.py"].risk_alignment == 0.8
        assert by_path["src/new.py"].metadata == {"status": "added"}

    def test_not_a_repository(self, tmp_path: Path, focus_trigger: Trigger):
        assert get_git_diff(tmp_path) == ""
        assert GitDiffSource(tmp_path).generate_candidates(focus_trigger, "s") == []


class TestSourcesWithComposer:
    def test_compose_from_project(self, tmp_project: Path, focus_trigger: Trigger):
        composer = Composer(
            sources=[
                RuleDocSource(tmp_project),
                JsonlSource(tmp_project, ".snapback/learnings/learnings.jsonl"),
                CannedDiffSource(tmp_project),
            ],
            workspace_secret="s",
        )
        result = asyncio.run(composer.compose(focus_trigger))

        kinds = {ref.kind for ref in result.selected}
        assert ArtifactKind.CONSTRAINT in kinds
        assert ArtifactKind.LOCAL_DIFF in kinds
        assert result.within_budget
        text = result.render()
        assert "Never log raw session tokens." in text
        assert "issue_token" in text
