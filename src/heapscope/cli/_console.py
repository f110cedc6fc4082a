"""Console output helpers shared by CLI commands."""

from __future__ import annotations

import click


def info(message: str) -> None:
    click.echo(message)


def success(message: str) -> None:
    click.secho(message, fg="green")


def warning(message: str) -> None:
    click.secho(message, fg="yellow", err=True)


def error(message: str) -> None:
    click.secho(message, fg="red", err=True)


__all__ = ["error", "info", "success", "warning"]
