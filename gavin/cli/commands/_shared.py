"""Helpers shared by the CLI commands: store and config resolution."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from gavin.config import ConfigError, InspectionConfig, load_inspection_config, settings
from gavin.core.inspection_store import InspectionStore, StoreError
from gavin.models.repository import Repository

console = Console()

DB_HELP = "Path to the inspection SQLite database (default: GAVIN_DB_PATH)."
CONFIG_HELP = "Path to the inspection YAML file (default: GAVIN_CONFIG_PATH)."


def open_store(db_path: Path | None) -> InspectionStore:
    """Open the store or exit with code 2."""
    path = db_path or settings.db_path
    try:
        return InspectionStore(path, retry_delays=settings.store_retry_delays)
    except StoreError as exc:
        console.print(f"[bold red]Cannot open store:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc


def load_config(config_path: Path | None) -> InspectionConfig:
    """Load the inspection file or exit with code 2."""
    try:
        return load_inspection_config(config_path or settings.config_path)
    except ConfigError as exc:
        console.print(f"[bold red]Invalid configuration:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc


def resolve_repositories(
    urls: list[str] | None, config: InspectionConfig, store: InspectionStore
) -> list[Repository]:
    """Repositories from *urls*, else the config file, else the registry.

    Exits with code 2 on an invalid URL or when there is nothing to do.
    """
    if urls:
        try:
            repositories = [Repository.from_url(url) for url in urls]
        except ValueError as exc:
            console.print(f"[bold red]Invalid repository URL:[/bold red] {escape(str(exc))}")
            raise typer.Exit(code=2) from exc
    else:
        repositories = config.repository_list() or store.list_repositories()
    if not repositories:
        console.print("[bold red]No repositories given.[/bold red]")
        console.print("[dim]Pass URLs, list them in the config file, or use: gavin repos add[/dim]")
        raise typer.Exit(code=2)
    return repositories
