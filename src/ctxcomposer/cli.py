"""Command-line interface for ctxcomposer."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from ctxcomposer import __version__
from ctxcomposer.composer.budget import BudgetConfig
from ctxcomposer.composer.constraints import (
    Constraints,
    IdMatcher,
    KindMatcher,
    LaneMatcher,
    Matcher,
    PatternMatcher,
    candidate_path,
)
from ctxcomposer.composer.engine import Composer
from ctxcomposer.composer.models import ArtifactKind, Lane, Trigger
from ctxcomposer.config import (
    build_sources,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from ctxcomposer.exceptions import ComposerError
from ctxcomposer.sources import compute_workspace_fingerprint
from ctxcomposer.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxcomposer project found. Run 'ctxcomposer init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _parse_matcher(value: str) -> Matcher:
    """Parse 'kind:violation', 'lane:history', 'pattern:src/*.py' or an id."""
    prefix, sep, rest = value.partition(":")
    if sep:
        try:
            if prefix == "kind":
                return KindMatcher(kind=ArtifactKind(rest))
            if prefix == "lane":
                return LaneMatcher(lane=Lane(rest))
        except ValueError:
            raise click.BadParameter(f"Unknown {prefix}: {rest}") from None
        if prefix == "pattern":
            return PatternMatcher(pattern=rest)
        if prefix == "id":
            return IdMatcher(id=rest)
    return IdMatcher(id=value)


@click.group()
@click.version_option(version=__version__, prog_name="ctxcomposer")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """ctxcomposer - budgeted, lane-prioritized context for LLM requests."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--budget", "-b", default=None, type=int, help="Total token budget.")
def init(path: str | None, budget: int | None):
    """Initialize ctxcomposer for a repository."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing ctxcomposer for: {root}")

    try:
        config = load_config(root)
        config.name = root.name
        config.root_path = str(root)
        if budget is not None:
            config = set_config_value(config, "budget.total_tokens", budget)
    except ComposerError as e:
        console.error(str(e))
        sys.exit(1)

    problems = config.budget.problems()
    if problems:
        for problem in problems:
            console.error(problem)
        sys.exit(1)

    save_config(root, config)
    console.success("Configuration saved to .ctxcomposer/")


# =========================================================================
# Composition
# =========================================================================

@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--event", "-e", default="manual", help="Event the context is for.")
@click.option("--keyword", "-k", multiple=True, help="Keywords describing the task.")
@click.option("--file", "-f", "files", multiple=True, help="Files in focus.")
@click.option("--budget", "-b", default=None, type=int, help="Override the total token budget.")
@click.option("--pin", multiple=True, help="Always include (id, kind:, lane:, pattern:).")
@click.option("--include", multiple=True, help="Must include (id, kind:, lane:, pattern:).")
@click.option("--exclude", multiple=True, help="Never include (id, kind:, lane:, pattern:).")
@click.option("--content", is_flag=True, help="Print the rendered context.")
@click.option("--decision-log", is_flag=True, help="Show the full ranking.")
@click.option("--json", "as_json", is_flag=True, help="Output the result as JSON.")
def compose(
    path: str | None, event: str, keyword: tuple[str, ...], files: tuple[str, ...],
    budget: int | None, pin: tuple[str, ...], include: tuple[str, ...],
    exclude: tuple[str, ...], content: bool, decision_log: bool, as_json: bool,
):
    """Compose budgeted context from the project's sources.

    Examples:

        ctxcomposer compose -k auth -f src/auth.py

        ctxcomposer compose --exclude kind:violation --budget 4000 --content
    """
    root = _get_project_root(path)

    try:
        config = load_config(root)
        budget_config = config.budget
        if budget is not None:
            budget_config = BudgetConfig(
                total_tokens=budget, lanes=budget_config.lanes
            )

        constraints = Constraints(
            pinned=[_parse_matcher(v) for v in pin],
            must_include=[_parse_matcher(v) for v in include],
            must_exclude=[_parse_matcher(v) for v in exclude],
        )

        composer = Composer(
            budget_config=budget_config,
            sources=build_sources(root, config.sources),
            workspace_secret=config.composer.workspace_secret,
            cache_ttl=config.composer.cache_ttl_seconds,
            emit_decision_logs=decision_log or config.composer.emit_decision_logs,
            path_resolver=candidate_path,
        )
        trigger = Trigger(
            workspace_fingerprint=compute_workspace_fingerprint(root),
            event=event,
            commitish=config.sources.diff_base,
            keywords=list(keyword),
            files=list(files),
        )
        result = asyncio.run(composer.compose(trigger, constraints))
    except ComposerError as e:
        console.error(str(e))
        sys.exit(1)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return

    console.show_summary(result, budget_config.total_tokens)
    console.show_explanation(result.explanation)
    if result.decision_log is not None and decision_log:
        console.show_decision_log(result.decision_log)
    if content:
        console.console.print()
        console.console.print(result.render(), markup=False, highlight=False)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxcomposer configuration."""
    root = _get_project_root(path)
    try:
        config = load_config(root)
    except ComposerError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(mode="json"), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxcomposer config get <key>")
            sys.exit(1)
        data = config.model_dump(mode="json")
        parts = key.split(".")
        for part in parts:
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxcomposer config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ComposerError as e:
            console.error(str(e))
            sys.exit(1)


if __name__ == "__main__":
    main()
