"""``gavin records``, ``gavin usage`` and ``gavin history``: read the store.

All three are read-only projections over the Inspection Store.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape

from gavin.cli.commands._shared import DB_HELP, console, open_store
from gavin.core.inspection_store import HistoryIntegrityError
from gavin.models.records import InspectionQuery
from gavin.models.tasks import ValidState
from gavin.monitor.renderer import InspectionRenderer


def records_cmd(
    state: ValidState = typer.Option(None, "--state", "-s", help="Only records in this state."),
    repo: str = typer.Option(None, "--repo", "-r", help="Only this repository (org/name)."),
    action: str = typer.Option(None, "--action", "-a", help="Only this action type."),
    all_history: bool = typer.Option(
        False, "--all-history", help="Include superseded records, not just the current state."
    ),
    limit: int = typer.Option(None, "--limit", min=1, help="Maximum number of rows."),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """List inspection records."""
    store = open_store(db_path)
    records = store.query(
        InspectionQuery(
            valid_state=state,
            repository=repo,
            action_type=action,
            latest_only=not all_history,
            limit=limit,
        )
    )
    if not records:
        console.print("[dim]No matching records.[/dim]")
        return
    console.print(InspectionRenderer(console=console).render_records(records))
    console.print(f"[dim]{len(records)} record(s)[/dim]")


def usage_cmd(
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """Show which versions of each action are in use, and where."""
    store = open_store(db_path)
    usage = store.usage()
    if not usage:
        console.print("[dim]No tasks recorded yet. Run: gavin inspect[/dim]")
        return
    console.print(InspectionRenderer(console=console).render_usage(usage))


def history_cmd(
    repository: str = typer.Argument(..., help="Repository as org/name."),
    path: str = typer.Argument(..., help="Pipeline file path within the repository."),
    verify: bool = typer.Option(
        True, "--verify/--no-verify", help="Verify the record hash chains."
    ),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    """Show every record ever written for one pipeline file."""
    store = open_store(db_path)
    records = store.history(repository, path)
    if not records:
        console.print(f"[bold red]No records for[/bold red] {repository}:{path}")
        raise typer.Exit(code=1)

    renderer = InspectionRenderer(console=console)
    console.print(renderer.render_records(records))
    if verify:
        try:
            valid = store.verify_history(repository, path)
        except HistoryIntegrityError as exc:
            console.print(f"[bold red]{escape(str(exc))}[/bold red]")
            valid = False
        renderer.print_history_verification(repository, path, valid)
        if not valid:
            raise typer.Exit(code=1)
