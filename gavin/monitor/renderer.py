"""Rich terminal renderer for inspection results.

Turns ``RunSummary``, ``InspectionRecord``, ``TaskUsage`` and search results
into Rich renderables.  The renderer is read-only: it never touches the store.

Color scheme
------------
- green     : STANDARD
- bold red  : NON_STANDARD
- yellow    : UNPARSEABLE
- dim       : NOT_APPLICABLE
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gavin.core.search import PipelineListing, SearchReport
from gavin.models.policy import ValidationPolicy
from gavin.models.records import InspectionRecord, TaskUsage
from gavin.models.repository import Repository
from gavin.models.summary import RepositoryFailure, RunSummary
from gavin.models.tasks import ValidState


# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[ValidState, str] = {
    ValidState.STANDARD: "green",
    ValidState.NON_STANDARD: "bold red",
    ValidState.UNPARSEABLE: "yellow",
    ValidState.NOT_APPLICABLE: "dim",
}

_STATE_LABELS: dict[ValidState, str] = {
    ValidState.STANDARD: "[green]STANDARD[/green]",
    ValidState.NON_STANDARD: "[bold red]NON-STANDARD[/bold red]",
    ValidState.UNPARSEABLE: "[yellow]UNPARSEABLE[/yellow]",
    ValidState.NOT_APPLICABLE: "[dim]NOT APPLICABLE[/dim]",
}


def _version(value: str | None) -> str:
    return value if value else "[dim]-[/dim]"


class InspectionRenderer:
    """Renders inspection results as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Run summary
    # ------------------------------------------------------------------

    def render_summary(self, summary: RunSummary) -> Panel:
        """Render a run summary as a Panel with per-state counts."""
        counts = Table(show_header=True, header_style="bold cyan", expand=False)
        counts.add_column("State", min_width=16)
        counts.add_column("References", justify="right")
        for state in ValidState:
            counts.add_row(_STATE_LABELS[state], str(summary.count(state)))

        parts: list[str] = [
            f"[bold]Repositories:[/bold] {len(summary.repositories_succeeded)} ok"
            f" / {len(summary.repositories_failed)} failed",
            f"[bold]Files:[/bold] {summary.files_parsed} parsed,"
            f" {summary.files_with_parse_errors} unparseable,"
            f" {summary.files_unchanged} unchanged",
            f"[bold]Records:[/bold] {summary.records_written} written",
        ]
        if summary.records_failed:
            parts.append(f"[bold red]Records failed:[/bold red] {summary.records_failed}")
        parts.append(
            f"[bold]Rewrites:[/bold] {summary.rewrites_applied} applied,"
            f" {summary.rewrites_skipped} skipped"
        )
        if summary.reconcile_conflicts:
            parts.append(f"[yellow][bold]Conflicts:[/bold] {summary.reconcile_conflicts}[/yellow]")

        renderables: list = [counts, Text(""), Text.from_markup("  |  ".join(parts))]
        if summary.repositories_failed:
            renderables.extend([Text(""), self.render_failures(summary.repositories_failed)])

        flags = []
        if summary.dry_run:
            flags.append("dry run")
        if summary.cancelled:
            flags.append("cancelled")
        title = "[bold]Gavin Inspection[/bold]"
        if flags:
            title += f" [yellow]({', '.join(flags)})[/yellow]"

        return Panel(
            Group(*renderables),
            title=title,
            subtitle=f"Run {summary.run_id}",
            border_style="red" if summary.cancelled else "blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def render_records(self, records: Sequence[InspectionRecord]) -> Table:
        """Render inspection records, one row per reference."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Repository", min_width=16)
        table.add_column("File", min_width=20)
        table.add_column("Line", justify="right", width=6)
        table.add_column("Action", min_width=12)
        table.add_column("Declared")
        table.add_column("Required")
        table.add_column("State", justify="center", min_width=14)
        table.add_column("Inspected", style="dim")

        for record in records:
            table.add_row(
                record.repository,
                record.file_path,
                str(record.line),
                f"[{_STATE_STYLES[record.valid_state]}]{record.action_type}"
                f"[/{_STATE_STYLES[record.valid_state]}]",
                _version(record.declared_version),
                _version(record.required_version),
                _STATE_LABELS[record.valid_state],
                record.inspected_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    def render_usage(self, usage: Sequence[TaskUsage]) -> Table:
        """Render action type / version usage across repositories."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Action", min_width=12)
        table.add_column("Version")
        table.add_column("Repositories", justify="right")
        table.add_column("Files", justify="right")
        table.add_column("Used in")

        for entry in usage:
            table.add_row(
                entry.action_type,
                _version(entry.declared_version),
                str(len(entry.repositories)),
                str(entry.occurrences),
                ", ".join(sorted(entry.repositories)),
            )
        return table

    def render_policy(self, policy: ValidationPolicy) -> Table:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Action")
        table.add_column("Standard version")
        for action_type in sorted(policy.applicable):
            table.add_row(action_type, policy.standard_versions[action_type])
        return table

    def render_repositories(self, repositories: Sequence[Repository]) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Repository")
        table.add_column("Branch", width=14)
        table.add_column("URL", style="dim")
        for repository in repositories:
            table.add_row(repository.full_name, repository.default_branch, repository.url)
        return table

    def render_failures(self, failures: Sequence[RepositoryFailure]) -> Table:
        table = Table(show_header=True, header_style="bold red", expand=True)
        table.add_column("Repository")
        table.add_column("Kind", width=18)
        table.add_column("Message")
        for failure in failures:
            table.add_row(failure.repository, failure.kind, escape(failure.message) or "-")
        return table

    def render_search(self, report: SearchReport) -> Table:
        """Render search hits, one row per matching line."""
        table = Table(
            show_header=True,
            header_style="bold cyan",
            expand=True,
            title=f"Lines containing {escape(repr(report.query))}",
        )
        table.add_column("Repository", min_width=16)
        table.add_column("File", min_width=20)
        table.add_column("Line", justify="right", width=6)
        table.add_column("Text")
        for result in report.results:
            for match in result.matches:
                table.add_row(result.repository, result.path, str(match.line), escape(match.text))
        return table

    def render_pipeline_listing(self, listing: PipelineListing) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Repository", min_width=16)
        table.add_column("Files", justify="right", width=6)
        table.add_column("Pipeline files")
        for repository, paths in listing.files.items():
            table.add_row(repository, str(len(paths)), "\n".join(paths))
        return table

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_summary(self, summary: RunSummary) -> None:
        self.console.print(self.render_summary(summary))

    def print_history_verification(self, repository: str, path: str, valid: bool) -> None:
        """Print a record hash chain verification result."""
        if valid:
            self.console.print(f"[green]Record history for {repository}:{path} is valid.[/green]")
        else:
            self.console.print(
                f"[bold red]Record history for {repository}:{path} is BROKEN![/bold red]"
            )
