"""``gavin search`` and ``gavin pipelines``: look at pipeline files directly.

Neither command classifies references or writes to the store; both fetch
the same files an inspection would.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.markup import escape

from gavin.cli.commands._shared import (
    CONFIG_HELP,
    DB_HELP,
    console,
    load_config,
    open_store,
    resolve_repositories,
)
from gavin.cli.commands.inspect import build_source
from gavin.config import configure_logging, settings
from gavin.core.search import list_pipeline_files, search_repositories
from gavin.monitor.renderer import InspectionRenderer


def search_cmd(
    query: str = typer.Argument(..., help="Text to look for in pipeline files."),
    urls: list[str] = typer.Argument(
        None,
        help="Repository URLs to search.  Defaults to the configured repositories.",
    ),
    config_path: Path = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
    ignore_case: bool = typer.Option(
        False, "--ignore-case", "-i", help="Match regardless of letter case."
    ),
    concurrency: int = typer.Option(
        None, "--concurrency", "-n", min=1, help="Maximum simultaneous repository retrievals."
    ),
) -> None:
    """Search pipeline files for a line of text."""
    configure_logging(settings.log_level)
    if not query:
        console.print("[bold red]The search text must not be empty.[/bold red]")
        raise typer.Exit(code=2)

    config = load_config(config_path)
    repositories = resolve_repositories(urls, config, open_store(db_path))

    try:
        report = asyncio.run(
            search_repositories(
                build_source(),
                repositories,
                query,
                path_globs=config.pipeline_globs,
                concurrency_limit=concurrency or config.concurrency_limit,
                ignore_case=ignore_case,
            )
        )
    except KeyboardInterrupt:
        console.print("[bold red]Interrupted.[/bold red]")
        raise typer.Exit(code=130)

    renderer = InspectionRenderer(console=console)
    if report.results:
        console.print(renderer.render_search(report))
    else:
        console.print(f"[dim]No matches for {escape(repr(query))}.[/dim]")
    console.print(
        f"[dim]{report.match_count} match(es) in {len(report.results)} of "
        f"{report.files_searched} file(s)[/dim]"
    )
    if report.failures:
        console.print(renderer.render_failures(report.failures))


def pipelines_cmd(
    urls: list[str] = typer.Argument(
        None,
        help="Repository URLs to list.  Defaults to the configured repositories.",
    ),
    config_path: Path = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
    concurrency: int = typer.Option(
        None, "--concurrency", "-n", min=1, help="Maximum simultaneous repository retrievals."
    ),
) -> None:
    """List the pipeline files each repository contains."""
    configure_logging(settings.log_level)
    config = load_config(config_path)
    repositories = resolve_repositories(urls, config, open_store(db_path))

    try:
        listing = asyncio.run(
            list_pipeline_files(
                build_source(),
                repositories,
                path_globs=config.pipeline_globs,
                concurrency_limit=concurrency or config.concurrency_limit,
            )
        )
    except KeyboardInterrupt:
        console.print("[bold red]Interrupted.[/bold red]")
        raise typer.Exit(code=130)

    renderer = InspectionRenderer(console=console)
    if listing.files:
        console.print(renderer.render_pipeline_listing(listing))
    if listing.failures:
        console.print(renderer.render_failures(listing.failures))
