"""Main Typer application: imports and registers all CLI commands.

Entry point: ``gavin`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from gavin.cli.commands.inspect import inspect_cmd
from gavin.cli.commands.records import history_cmd, records_cmd, usage_cmd
from gavin.cli.commands.repos import policy_cmd, repos_app
from gavin.cli.commands.search import pipelines_cmd, search_cmd

app = typer.Typer(
    name="gavin",
    help="Gavin: audit and standardise pipeline task versions across repositories.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="inspect", help="Inspect repositories against the standard versions.")(inspect_cmd)
app.command(name="records", help="List inspection records.")(records_cmd)
app.command(name="usage", help="Show task version usage across repositories.")(usage_cmd)
app.command(name="history", help="Show and verify the record history of one file.")(history_cmd)
app.command(name="policy", help="Show the configured standard versions.")(policy_cmd)
app.command(name="search", help="Search pipeline files for a line of text.")(search_cmd)
app.command(name="pipelines", help="List the pipeline files of each repository.")(pipelines_cmd)
app.add_typer(repos_app, name="repos")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
