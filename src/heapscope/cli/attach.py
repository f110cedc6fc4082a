"""Profile a remote inspector target for a fixed window."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from typing import Any, Optional

import click

from heapscope.core.errors import ProfilingError
from heapscope.execution import (
    SessionCoordinator,
    WindowPipeline,
    ensure_transport_available,
    resolve_transport,
)
from heapscope.inspector import DEFAULT_TARGET

from ._options import build_config, configure_logging, execute, profiling_options


@click.command(help="Attach to a runtime started with --inspect and profile it for a window.")
@profiling_options
@click.option(
    "--target",
    default=DEFAULT_TARGET,
    show_default=True,
    help="Inspector host:port or ws:// debugger URL",
)
@click.option(
    "--duration",
    type=click.FloatRange(min=0),
    required=True,
    help="Seconds to keep the instrumentation running",
)
def attach(
    target: str,
    duration: float,
    output_dir: Optional[Path],
    log_level: str,
    **options: Any,
) -> None:
    configure_logging(log_level)
    if options.get("check_peak_memory"):
        raise click.UsageError("--check-peak-memory samples this process and is only supported by 'run'")
    config = build_config(options)
    if not config.enabled_modes:
        raise click.UsageError("Enable at least one of --heap-profile, --allocation-tracking, --heap-snapshot")

    params = {"target": target}
    try:
        ensure_transport_available("remote", params)
    except ProfilingError as exc:
        raise click.ClickException(f"{exc} (no inspector reachable at {target})") from exc

    coordinator = SessionCoordinator(
        config,
        transport_factory=partial(resolve_transport, "remote", params),
    )
    execute(WindowPipeline(duration, output_path=output_dir), coordinator)


__all__ = ["attach"]
