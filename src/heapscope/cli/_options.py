"""Options and helpers shared by the profiling commands."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import click

from heapscope.core.errors import ProfilingError
from heapscope.core.types import DEFAULT_SAMPLE_INTERVAL_MS, CycleReport, ProfilingConfig
from heapscope.execution import SessionCoordinator

from ._console import error, info, success, warning

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class OrderedGroup(click.Group):
    """Click group that lists commands in registration order."""

    def list_commands(self, ctx):  # type: ignore[override]
        return list(self.commands)


def profiling_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the profiling configuration options to a command."""
    options = [
        click.option("--heap-profile", is_flag=True, help="Record a sampling heap profile"),
        click.option("--allocation-tracking", is_flag=True, help="Track every allocation"),
        click.option("--heap-snapshot", is_flag=True, help="Capture a heap snapshot at completion"),
        click.option("--check-peak-memory", is_flag=True, help="Report peak resident memory"),
        click.option(
            "--check-peak-memory-interval-ms",
            type=click.IntRange(min=1),
            default=DEFAULT_SAMPLE_INTERVAL_MS,
            show_default=True,
            help="Milliseconds between memory samples",
        ),
        click.option(
            "--output-path",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Sampling profile path",
        ),
        click.option(
            "--allocation-output-path",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Allocation summary path",
        ),
        click.option(
            "--snapshot-output-path",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Heap snapshot path",
        ),
        click.option(
            "--output-dir",
            type=click.Path(file_okay=False, path_type=Path),
            help="Directory for artifacts without an explicit path",
        ),
        click.option(
            "--command-timeout",
            type=click.FloatRange(min=0, min_open=True),
            help="Seconds to wait for each inspector command (default: no limit)",
        ),
        click.option(
            "--log-level",
            type=click.Choice(_LOG_LEVELS, case_sensitive=False),
            default="INFO",
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


class _EchoHandler(logging.Handler):
    """Send log records to stderr through click so redirected streams are honoured."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(level: str) -> None:
    logger = logging.getLogger("heapscope")
    for handler in list(logger.handlers):
        if isinstance(handler, _EchoHandler):
            logger.removeHandler(handler)
    handler = _EchoHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level.upper())


def build_config(options: Mapping[str, Any]) -> ProfilingConfig:
    try:
        return ProfilingConfig.from_options(options)
    except ProfilingError as exc:
        raise click.BadParameter(str(exc)) from exc


def report_cycle(report: Optional[CycleReport]) -> None:
    if report is None:
        return
    for path in report.artifacts:
        success(f"Wrote {path}")
    for failure in report.failures:
        target = failure.kind.value if failure.kind is not None else "session"
        warning(f"{target} {failure.phase} failed: {failure.error}")
    if report.peak_memory_mb is not None:
        info(f"Peak memory usage: {report.peak_memory_mb:.2f} MB")


def execute(pipeline: Any, coordinator: SessionCoordinator) -> int:
    """Bind ``coordinator`` to ``pipeline``, run it once and print the cycle report."""
    coordinator.apply(pipeline)
    try:
        code = asyncio.run(pipeline.run())
    except ProfilingError as exc:
        report_cycle(coordinator.last_report)
        error("Profiling failed")
        raise click.ClickException(str(exc)) from exc
    report_cycle(coordinator.last_report)
    return code


__all__ = [
    "OrderedGroup",
    "build_config",
    "configure_logging",
    "execute",
    "profiling_options",
    "report_cycle",
]
