"""Command-line interface for heapscope (Click-based)."""

from __future__ import annotations

import click

from ._options import OrderedGroup
from .attach import attach
from .run import run


@click.group(cls=OrderedGroup, help="Heap profiling for long-running pipelines")
def cli() -> None:
    """Top-level CLI group."""


cli.add_command(run, "run")
cli.add_command(attach, "attach")


def main() -> None:
    """CLI entry point for console scripts."""
    cli()


__all__ = ["cli", "main"]
