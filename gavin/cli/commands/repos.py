"""``gavin repos`` and ``gavin policy``: manage what gets inspected."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.markup import escape

from gavin.cli.commands._shared import CONFIG_HELP, DB_HELP, console, load_config, open_store
from gavin.cli.commands.inspect import build_source
from gavin.core.sources import RetrievalError
from gavin.models.repository import Repository
from gavin.monitor.renderer import InspectionRenderer

repos_app = typer.Typer(
    name="repos",
    help="Manage the repository registry.",
    no_args_is_help=True,
)


def read_url_file(path: Path) -> list[str]:
    """Read clone URLs, one per line; blank lines and ``#`` comments are skipped."""
    urls = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)
    return urls


def split_urls(values: list[str]) -> list[str]:
    """Split comma-separated arguments and drop duplicates, keeping order."""
    urls: list[str] = []
    for value in values:
        for url in value.split(","):
            url = url.strip()
            if url and url not in urls:
                urls.append(url)
    return urls


async def _check_all(source, repositories: list[Repository]) -> list[RetrievalError | None]:
    async def _check(repository: Repository) -> RetrievalError | None:
        try:
            await source.check_reachable(repository)
        except RetrievalError as exc:
            return exc
        return None

    return await asyncio.gather(*(_check(repository) for repository in repositories))


@repos_app.command(name="add", help="Register one or more repositories for inspection.")
def add_cmd(
    urls: list[str] = typer.Argument(
        None, help="Clone URLs.  One argument may hold several, separated by commas."
    ),
    from_file: Path = typer.Option(
        None,
        "--from-file",
        "-f",
        exists=True,
        dir_okay=False,
        help="Read clone URLs from a file, one per line.",
    ),
    branch: str = typer.Option("main", "--branch", "-b", help="Branch to inspect."),
    check: bool = typer.Option(
        False, "--check", help="Verify each remote is reachable before registering it."
    ),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    values = list(urls or [])
    if from_file is not None:
        values.extend(read_url_file(from_file))
    urls = split_urls(values)
    if not urls:
        console.print("[bold red]No repository URLs given.[/bold red]")
        raise typer.Exit(code=2)

    try:
        repositories = [Repository.from_url(url, branch) for url in urls]
    except ValueError as exc:
        console.print(f"[bold red]Invalid repository URL:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc

    unreachable = 0
    if check:
        errors = asyncio.run(_check_all(build_source(), repositories))
        reachable = []
        for repository, error in zip(repositories, errors):
            if error is None:
                reachable.append(repository)
                continue
            unreachable += 1
            console.print(
                f"[bold red]Cannot reach {repository.full_name}[/bold red] ({error.kind.value})"
            )
        repositories = reachable

    store = open_store(db_path)
    for repository in repositories:
        store.add_repository(repository)
        console.print(f"[green]Registered[/green] {repository.full_name} ({repository.default_branch})")

    if unreachable:
        console.print(f"[yellow]{unreachable} repository(ies) not registered.[/yellow]")
        raise typer.Exit(code=1)


@repos_app.command(name="remove", help="Remove a repository from the registry.")
def remove_cmd(
    url: str = typer.Argument(..., help="Clone URL the repository was added with."),
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    store = open_store(db_path)
    if not store.remove_repository(url):
        console.print(f"[bold red]Not registered:[/bold red] {url}")
        raise typer.Exit(code=1)
    console.print(f"[green]Removed[/green] {url}")


@repos_app.command(name="list", help="List registered repositories.")
def list_cmd(
    db_path: Path = typer.Option(None, "--db", help=DB_HELP),
) -> None:
    repositories = open_store(db_path).list_repositories()
    if not repositories:
        console.print("[dim]No repositories registered.[/dim]")
        return
    console.print(InspectionRenderer(console=console).render_repositories(repositories))


def policy_cmd(
    config_path: Path = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
) -> None:
    """Show the standard version configured for each action type."""
    policy = load_config(config_path).policy()
    if not policy.applicable:
        console.print("[dim]No standard versions configured.[/dim]")
        return
    console.print(InspectionRenderer(console=console).render_policy(policy))
