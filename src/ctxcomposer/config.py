"""Configuration management for ctxcomposer."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ctxcomposer.composer.budget import DEFAULT_BUDGET_CONFIG, BudgetConfig
from ctxcomposer.composer.cache import DEFAULT_TTL_SECONDS
from ctxcomposer.composer.models import ArtifactKind, CandidateSource, Lane
from ctxcomposer.exceptions import ConfigError
from ctxcomposer.sources import (
    DEFAULT_LEARNINGS_FILE,
    DEFAULT_RULE_FILES,
    DEFAULT_VIOLATIONS_FILE,
    GitDiffSource,
    JsonlSource,
    RuleDocSource,
)

CTXCOMPOSER_DIR = ".ctxcomposer"
CONFIG_FILE = "config.json"


class ComposerSettings(BaseModel):
    """Composer behavior configuration."""

    cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    emit_decision_logs: bool = False
    workspace_secret: str = ""


class SourceSettings(BaseModel):
    """Which built-in candidate sources to run."""

    rule_files: list[str] = Field(default_factory=lambda: list(DEFAULT_RULE_FILES))
    violations_file: str | None = DEFAULT_VIOLATIONS_FILE
    learnings_file: str | None = DEFAULT_LEARNINGS_FILE
    include_git_diff: bool = True
    diff_base: str = "HEAD"


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    budget: BudgetConfig = DEFAULT_BUDGET_CONFIG
    composer: ComposerSettings = Field(default_factory=ComposerSettings)
    sources: SourceSettings = Field(default_factory=SourceSettings)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxcomposer directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXCOMPOSER_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXCOMPOSER_DIR).is_dir():
        return current
    return None


def get_ctxcomposer_dir(root: Path) -> Path:
    """Get the .ctxcomposer directory for a project root."""
    return root / CTXCOMPOSER_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxcomposer/config.json."""
    config_path = get_ctxcomposer_dir(root) / CONFIG_FILE
    if not config_path.exists():
        return ProjectConfig(name=root.name, root_path=str(root))
    try:
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid config file {config_path}: {e}") from e


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxcomposer/config.json."""
    cc_dir = get_ctxcomposer_dir(root)
    cc_dir.mkdir(parents=True, exist_ok=True)
    config_path = cc_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(mode="json"), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'budget.total_tokens').

    Raises KeyError for unknown keys and ConfigError when the new value
    does not validate.
    """
    parts = key.split(".")
    data = config.model_dump(mode="json")
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {e}") from e


def build_sources(root: Path, settings: SourceSettings) -> list[CandidateSource]:
    """Instantiate the built-in sources enabled in the settings."""
    sources: list[CandidateSource] = [RuleDocSource(root, settings.rule_files)]
    if settings.violations_file:
        sources.append(
            JsonlSource(root, settings.violations_file, kind=ArtifactKind.VIOLATION, lane=Lane.HISTORY)
        )
    if settings.learnings_file:
        sources.append(
            JsonlSource(root, settings.learnings_file, kind=ArtifactKind.LEARNING, lane=Lane.HISTORY)
        )
    if settings.include_git_diff:
        sources.append(GitDiffSource(root, settings.diff_base))
    return sources
