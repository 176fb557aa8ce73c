"""Gavin CLI: Typer-based command-line interface.

Provides the ``gavin`` command with subcommands for running inspections,
reading records and usage, verifying history, and managing the repository
registry.

All output uses Rich for formatted terminal display.
"""
