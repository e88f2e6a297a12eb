"""Local diff source: turn uncommitted git changes into candidates.

Parses the output of `git diff` into per-file changes; each changed file
becomes one ``local_diff`` artifact in the local lane.
"""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from ctxcomposer.composer.models import ArtifactKind, Candidate, CandidateSource, Lane, Trigger
from ctxcomposer.sources.base import keyword_relevance, stable_artifact_id

_HUNK_HEADER = re.compile(r"@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass
class DiffHunk:
    """A single hunk from a unified diff."""
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[str] = field(default_factory=list)

    def header(self) -> str:
        return (
            f"@@ -{self.old_start},{self.old_count} "
            f"+{self.new_start},{self.new_count} @@"
        )


@dataclass
class FileDiff:
    """Changes to a single file."""
    path: str
    status: str  # 'added', 'modified', 'deleted', 'renamed'
    old_path: str | None = None  # For renames
    hunks: list[DiffHunk] = field(default_factory=list)
    added_lines: int = 0
    deleted_lines: int = 0

    def render(self) -> str:
        """Render back to a compact unified-diff text for this file."""
        title = f"--- {self.path} ({self.status})"
        if self.old_path:
            title = f"--- {self.old_path} -> {self.path} ({self.status})"
        lines = [title]
        for hunk in self.hunks:
            lines.append(hunk.header())
            lines.extend(hunk.lines)
        return "\n".join(lines)


def parse_diff(diff_text: str) -> list[FileDiff]:
    """Parse unified diff text into structured FileDiff objects."""
    files: list[FileDiff] = []
    current_file: FileDiff | None = None
    current_hunk: DiffHunk | None = None

    for line in diff_text.splitlines():
        # New file header
        if line.startswith("diff --git"):
            if current_file:
                files.append(current_file)
            parts = line.split(" b/")
            path = parts[-1] if len(parts) > 1 else ""
            current_file = FileDiff(path=path, status="modified")
            current_hunk = None
            continue

        if current_file is None:
            continue

        if current_hunk is None:
            if line.startswith("new file"):
                current_file.status = "added"
            elif line.startswith("deleted file"):
                current_file.status = "deleted"
            elif line.startswith("rename from "):
                current_file.old_path = line[len("rename from "):]
                current_file.status = "renamed"
            elif line.startswith("+++ b/"):
                current_file.path = line[6:]

        if line.startswith("@@"):
            match = _HUNK_HEADER.match(line)
            if match:
                current_hunk = DiffHunk(
                    old_start=int(match.group(1)),
                    old_count=int(match.group(2) or "1"),
                    new_start=int(match.group(3)),
                    new_count=int(match.group(4) or "1"),
                )
                current_file.hunks.append(current_hunk)
        elif current_hunk is not None:
            current_hunk.lines.append(line)
            if line.startswith("+"):
                current_file.added_lines += 1
            elif line.startswith("-"):
                current_file.deleted_lines += 1

    if current_file:
        files.append(current_file)

    return files


def get_git_diff(root: Path, base: str = "HEAD") -> str:
    """Diff of the working tree against ``base``; empty outside a git repo."""
    try:
        result = subprocess.run(
            ["git", "diff", base],
            cwd=root,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout


class GitDiffSource(CandidateSource):
    """One ``local_diff`` candidate per file changed relative to a base commit.

    The base is ``trigger.commitish`` when set, otherwise ``base``.
    """

    name = "git_diff"

    def __init__(self, root: Path, base: str = "HEAD") -> None:
        self.root = root
        self.base = base

    def diff_text(self, trigger: Trigger) -> str:
        return get_git_diff(self.root, trigger.commitish or self.base)

    def generate_candidates(self, trigger: Trigger, workspace_secret: str) -> list[Candidate]:
        candidates: list[Candidate] = []
        focus = set(trigger.files)
        for file_diff in parse_diff(self.diff_text(trigger)):
            text = file_diff.render()
            changed = file_diff.added_lines + file_diff.deleted_lines
            in_focus = file_diff.path in focus
            candidates.append(
                Candidate.from_text(
                    id=stable_artifact_id(workspace_secret, ArtifactKind.LOCAL_DIFF, file_diff.path),
                    kind=ArtifactKind.LOCAL_DIFF,
                    lane=Lane.LOCAL,
                    text=text,
                    recency_bucket=5,  # Uncommitted changes are as fresh as it gets
                    relevance_score=1.0 if in_focus else keyword_relevance(text, trigger.keywords),
                    specificity_score=0.9 if in_focus else 0.5,
                    risk_alignment=0.8 if file_diff.status == "deleted" else min(1.0, changed / 100),
                    path=file_diff.path,
                    metadata={"status": file_diff.status},
                )
            )
        return candidates
