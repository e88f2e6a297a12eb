"""Rich-powered console output for ctxcomposer."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

from ctxcomposer import __version__
from ctxcomposer.composer.models import CompositionResult, DecisionLog, Explanation


class Console:
    """Terminal output for ctxcomposer using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        """Show the ctxcomposer banner."""
        self.console.print(
            Panel(
                f"[bold cyan]ctxcomposer[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Budgeted, lane-prioritized context for LLM requests[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def show_summary(self, result: CompositionResult, total_tokens: int) -> None:
        """One-glance header for a composition."""
        perf = result.explanation.performance
        used_pct = 100 * result.actual_tokens / total_tokens if total_tokens else 0.0
        budget_color = "green" if result.within_budget else "red"
        self.console.print(
            Panel(
                f"[bold]Tokens:[/bold] [{budget_color}]{result.actual_tokens:,}"
                f"[/{budget_color}] / {total_tokens:,} ({used_pct:.0f}%)\n"
                f"[bold]Selected:[/bold] {perf.selected_count} of {perf.candidate_count} candidates\n"
                f"[bold]Cache:[/bold] {'hit' if result.cache_hit else 'miss'} "
                f"[dim]({result.cache_key})[/dim]",
                title="[bold]Context Composition[/bold]",
                border_style=budget_color,
            )
        )

    def show_explanation(self, explanation: Explanation) -> None:
        """Per-lane usage table with the top artifacts of each lane."""
        table = Table(title="Lane Allocation", border_style="cyan")
        table.add_column("Lane", style="bold")
        table.add_column("Selected", justify="right")
        table.add_column("Used", justify="right", style="cyan")
        table.add_column("Max", justify="right")
        table.add_column("Top artifacts")

        for lane, info in explanation.lanes.items():
            top = ", ".join(
                f"{a.id} ({'forced' if a.score is None else f'{a.score:.3f}'})"
                for a in info.top_artifacts
            )
            table.add_row(
                lane.value,
                str(info.selected_count),
                f"{info.budget_used:,}",
                f"{info.budget_max:,}",
                top,
            )

        self.console.print(table)

        constraints = explanation.constraints
        if constraints.pinned or constraints.must_include or constraints.excluded_count:
            self.info(
                f"Constraints: {constraints.pinned} pinned, "
                f"{constraints.must_include} must-include, "
                f"{constraints.excluded_count} excluded"
            )
        for shortfall in explanation.shortfalls:
            self.warning(
                f"Lane '{shortfall.lane.value}' wanted {shortfall.requested} tokens, "
                f"got {shortfall.available}"
            )
        if explanation.rejections:
            self.console.print("\n[bold]Top rejections:[/bold]")
            for rej in explanation.rejections:
                self.console.print(
                    f"  [red]✗[/red] [bold]{rej.id}[/bold] [dim]({rej.lane.value})[/dim] "
                    f"{rej.reason.value}: {rej.detail}"
                )
        if not explanation.within_budget:
            self.warning("Rendered content exceeds the token budget")

    def show_decision_log(self, log: DecisionLog) -> None:
        """Full ranking table from a decision log."""
        table = Table(title=f"Decision Log {log.log_id}", border_style="blue")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Artifact", style="bold")
        table.add_column("Lane")
        table.add_column("Score", justify="right", style="cyan")
        table.add_column("Tokens", justify="right")
        table.add_column("Outcome")

        for i, entry in enumerate(log.rankings, 1):
            if entry.selected:
                outcome = f"[green]{entry.artifact.inclusion.value}[/green]"
            else:
                reason = entry.rejection_reason.value if entry.rejection_reason else "not selected"
                outcome = f"[red]{reason}[/red]"
            table.add_row(
                str(i),
                entry.artifact.id,
                entry.artifact.lane.value,
                f"{entry.score:.3f}",
                str(entry.artifact.token_estimate),
                outcome,
            )

        self.console.print(table)
        self.console.print(f"[dim]{log.duration_ms:.1f}ms at {log.created_at}[/dim]")
