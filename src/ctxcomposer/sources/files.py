"""File-backed candidate sources: rule documents and JSONL entry logs."""

from __future__ import annotations

import json
import logging
import math
import time
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any

from ctxcomposer.composer.models import (
    ArtifactKind,
    Candidate,
    CandidateSource,
    Lane,
    TokenEstimator,
    Trigger,
)
from ctxcomposer.sources.base import (
    keyword_relevance,
    recency_bucket,
    stable_artifact_id,
)

logger = logging.getLogger("ctxcomposer.sources")

DEFAULT_RULE_FILES = [
    ".llm-context/ARCHITECTURE.md",
    ".llm-context/PATTERNS.md",
    ".llm-context/CONSTRAINTS.md",
    "ARCHITECTURE.md",
    "PATTERNS.md",
    "CONSTRAINTS.md",
]

DEFAULT_VIOLATIONS_FILE = ".snapback/patterns/violations.jsonl"
DEFAULT_LEARNINGS_FILE = ".snapback/learnings/learnings.jsonl"

# Record fields that are bookkeeping rather than content
_META_FIELDS = {"id", "timestamp", "ts", "created_at"}


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


class RuleDocSource(CandidateSource):
    """One candidate per rule document found under the workspace root.

    Files named CONSTRAINTS become ``constraint`` artifacts in the policy
    lane; everything else is a ``rule_doc`` in the rules lane. Content is
    read only when the artifact is rendered.
    """

    name = "rule_docs"

    def __init__(self, root: Path, files: list[str] | None = None) -> None:
        self.root = root
        self.files = files if files is not None else list(DEFAULT_RULE_FILES)

    def generate_candidates(self, trigger: Trigger, workspace_secret: str) -> list[Candidate]:
        candidates: list[Candidate] = []
        now = time.time()
        for rel_path in self.files:
            full_path = self.root / rel_path
            if not full_path.is_file():
                continue

            is_constraint = full_path.stem.upper() == "CONSTRAINTS"
            kind = ArtifactKind.CONSTRAINT if is_constraint else ArtifactKind.RULE_DOC
            stat = full_path.stat()
            text = _read_text(full_path)

            candidates.append(
                Candidate(
                    id=stable_artifact_id(workspace_secret, kind, rel_path),
                    kind=kind,
                    lane=Lane.POLICY if is_constraint else Lane.RULES,
                    token_estimate=math.ceil(stat.st_size / TokenEstimator.CHARS_PER_TOKEN),
                    recency_bucket=recency_bucket(now - stat.st_mtime),
                    relevance_score=keyword_relevance(text, trigger.keywords),
                    specificity_score=1.0 if is_constraint else 0.6,
                    risk_alignment=1.0 if is_constraint else 0.5,
                    path=rel_path,
                    content_provider=partial(_read_text, full_path),
                )
            )
        return candidates


def _record_time(record: dict[str, Any]) -> float | None:
    for field in ("timestamp", "ts", "created_at"):
        value = record.get(field)
        if isinstance(value, (int, float)):
            # Millisecond epochs are common in JSONL logs
            return value / 1000 if value > 1e11 else float(value)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
            except ValueError:
                continue
    return None


def format_entry(record: dict[str, Any]) -> str:
    """Render one JSONL record as a compact text block."""
    label = record.get("type") or record.get("kind") or "entry"
    lines = [f"[{label}]"]
    for key, value in record.items():
        if key in _META_FIELDS or key in ("type", "kind"):
            continue
        if isinstance(value, (dict, list)):
            value = json.dumps(value, sort_keys=True)
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


class JsonlSource(CandidateSource):
    """Collapses a JSONL log (violations, learnings, session history) into one
    candidate whose entries are blank-line separated, oldest first."""

    def __init__(
        self,
        root: Path,
        path: str,
        kind: ArtifactKind = ArtifactKind.LEARNING,
        lane: Lane = Lane.HISTORY,
    ) -> None:
        self.root = root
        self.path = path
        self.kind = kind
        self.lane = lane
        self.name = f"jsonl:{path}"

    def load_records(self) -> list[dict[str, Any]]:
        full_path = self.root / self.path
        if not full_path.is_file():
            return []

        records: list[dict[str, Any]] = []
        for line_no, line in enumerate(_read_text(full_path).splitlines(), 1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed line {line_no} in {self.path}")
                continue
            if isinstance(record, dict):
                records.append(record)

        records.sort(key=lambda r: _record_time(r) or 0.0)
        return records

    def generate_candidates(self, trigger: Trigger, workspace_secret: str) -> list[Candidate]:
        records = self.load_records()
        if not records:
            return []

        text = "\n\n".join(format_entry(r) for r in records)
        newest = max((_record_time(r) or 0.0) for r in records)
        age = time.time() - newest if newest else float("inf")
        mentions_file = any(f in text for f in trigger.files)

        return [
            Candidate.from_text(
                id=stable_artifact_id(workspace_secret, self.kind, self.path),
                kind=self.kind,
                lane=self.lane,
                text=text,
                recency_bucket=recency_bucket(age),
                relevance_score=keyword_relevance(text, trigger.keywords),
                specificity_score=0.8 if mentions_file else 0.3,
                risk_alignment=0.9 if self.kind is ArtifactKind.VIOLATION else 0.4,
                path=self.path,
                metadata={"entries": str(len(records))},
            )
        ]
