"""``gavin inspect [URL...]``: inspect repositories against the policy.

Repositories come from the command line, else from the inspection file,
else from the store's repository registry.  With ``--remediate``
non-standard versions are rewritten and staged for an external commit step
unless the run is a dry run.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from gavin.cli.commands._shared import (
    CONFIG_HELP,
    DB_HELP,
    console,
    load_config,
    open_store,
    resolve_repositories,
)
from gavin.config import configure_logging, settings
from gavin.core.engine import InspectionEngine
from gavin.core.sources import GitSparseSource, RepositorySource
from gavin.core.writeback import StagingDirectoryWriteBack
from gavin.models.tasks import ValidState
from gavin.monitor.renderer import InspectionRenderer


def build_source() -> RepositorySource:
    """Repository source configured from process settings."""
    return GitSparseSource(
        username=settings.git_username,
        token=settings.git_token_value,
        checkout_root=settings.checkout_root,
        timeout=settings.git_timeout_seconds,
    )


def inspect_cmd(
    urls: list[str] = typer.Argument(
        None,
        help="Repository URLs to inspect.  Defaults to the configured repositories.",
    ),
    config_path: Path = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
    remediate: bool = typer.Option(
        False, "--remediate", help="Rewrite non-standard versions to the standard."
    ),
    dry_run: bool = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="Compute rewrites without staging them (default: dryRun from the config file).",
    ),
    concurrency: int = typer.Option(
        None, "--concurrency", "-n", min=1, help="Maximum simultaneous repository retrievals."
    ),
    stage_dir: Path = typer.Option(
        Path(".gavin/staged"), "--stage-dir", help="Where rewritten files are staged."
    ),
    full: bool = typer.Option(
        False, "--full", help="Record every file, including unchanged ones."
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit 1 if any repository failed or any reference is non-standard.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Inspect pipeline task versions across repositories."""
    configure_logging("DEBUG" if verbose else settings.log_level)

    config = load_config(config_path)
    store = open_store(db_path)

    repositories = resolve_repositories(urls, config, store)

    policy = config.policy()
    if not policy.applicable:
        console.print("[yellow]No standard versions configured; every reference is not applicable.[/yellow]")

    engine = InspectionEngine(
        build_source(),
        store,
        policy,
        concurrency_limit=concurrency or config.concurrency_limit,
        path_globs=config.pipeline_globs,
        write_back=StagingDirectoryWriteBack(stage_dir),
        dry_run=config.dry_run if dry_run is None else dry_run,
    )

    try:
        summary = asyncio.run(engine.run(repositories, remediate=remediate, full=full))
    except KeyboardInterrupt:
        console.print("[bold red]Interrupted.[/bold red] Partial results were recorded.")
        raise typer.Exit(code=130)

    renderer = InspectionRenderer(console=console)
    console.print()
    renderer.print_summary(summary)

    if strict and (summary.repositories_failed or summary.count(ValidState.NON_STANDARD)):
        raise typer.Exit(code=1)
