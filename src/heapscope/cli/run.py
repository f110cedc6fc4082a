"""Profile a Python script in-process."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence

import click

from heapscope.execution import ScriptPipeline, SessionCoordinator

from ._options import build_config, configure_logging, execute, profiling_options


@click.command(
    help="Run a Python script under heap profiling.",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@profiling_options
@click.argument("script", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("script_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(
    ctx: click.Context,
    script: Path,
    script_args: Sequence[str],
    output_dir: Optional[Path],
    log_level: str,
    **options: Any,
) -> None:
    """Execute ``script`` between the profiling hooks."""
    configure_logging(log_level)
    config = build_config(options)
    pipeline = ScriptPipeline(script, script_args, output_path=output_dir)
    code = execute(pipeline, SessionCoordinator(config))
    if code:
        ctx.exit(code)


__all__ = ["run"]
