"""Profiling session coordination across a pipeline's lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, List, Optional

from ..core.errors import ProfilingError, ProtocolError, StorageError
from ..core.hooks import Pipeline
from ..core.transport import InspectorTransport
from ..core.types import CycleReport, ModeFailure, ModeKind, ProfilingConfig
from .modes import InstrumentationMode, create_mode
from .resolution import resolve_transport
from .sampler import MemoryPeakSampler, MemoryReader
from .session import ProtocolSession
from .writer import ArtifactWriter

logger = logging.getLogger(__name__)

TAP_NAME = "heapscope"
DEFAULT_TRANSPORT = "local"

TransportFactory = Callable[[], InspectorTransport]


@dataclass
class _Cycle:
    session: Optional[ProtocolSession] = None
    modes: List[InstrumentationMode] = field(default_factory=list)
    sampler: Optional[MemoryPeakSampler] = None


class SessionCoordinator:
    """Run heap instrumentation between a pipeline's before-run and after-completion hooks.

    One coordinator serves every run of the pipeline it is applied to. Each
    run gets a fresh ``ProtocolSession``, fresh modes and a fresh peak
    sampler, all discarded when the run's after-completion hook finishes.
    """

    def __init__(
        self,
        config: Optional[ProfilingConfig] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        writer: Optional[ArtifactWriter] = None,
        memory_reader: Optional[MemoryReader] = None,
    ) -> None:
        self.config = config or ProfilingConfig()
        self._transport_factory = transport_factory or partial(resolve_transport, DEFAULT_TRANSPORT)
        self._writer = writer or ArtifactWriter()
        self._memory_reader = memory_reader
        self._cycle: Optional[_Cycle] = None
        self.last_report: Optional[CycleReport] = None

    @property
    def active(self) -> bool:
        return self._cycle is not None

    def apply(self, pipeline: Pipeline) -> None:
        """Resolve unset output paths against the pipeline and tap its hooks."""
        self.config = self.config.resolve_paths(getattr(pipeline, "output_path", None))
        pipeline.hooks.before_run.tap(TAP_NAME, self.on_before_run)
        pipeline.hooks.after_completion.tap(TAP_NAME, self.on_after_completion)

    async def on_before_run(self, *_: Any) -> None:
        if self._cycle is not None:
            raise ProtocolError("A profiling cycle is already running")
        config = self.config
        if not config.is_active:
            return

        cycle = _Cycle()
        kinds = ModeKind.ordered(config.enabled_modes)
        if kinds:
            session = ProtocolSession(
                self._transport_factory(), command_timeout=config.command_timeout
            )
            cycle.session = session
            try:
                await session.open()
                await session.enable()
                for kind in kinds:
                    mode = create_mode(kind, session, config.output_path_for(kind))
                    await mode.start()
                    cycle.modes.append(mode)
                    logger.debug("Started %s", kind.value)
            except BaseException:
                await self._rollback(cycle)
                raise

        if config.check_peak_memory:
            sampler = MemoryPeakSampler(self._memory_reader)
            sampler.start(config.peak_memory_sample_interval_ms)
            cycle.sampler = sampler

        self._cycle = cycle

    async def on_after_completion(self, *_: Any) -> None:
        cycle, self._cycle = self._cycle, None
        if cycle is None:
            return

        report = CycleReport()
        storage_errors: List[StorageError] = []
        try:
            for mode in cycle.modes:
                try:
                    path = await mode.collect(self._writer)
                except StorageError as exc:
                    logger.error("Writing %s artifact failed: %s", mode.kind.value, exc)
                    report.failures.append(ModeFailure(mode.kind, "write", str(exc)))
                    storage_errors.append(exc)
                except Exception as exc:
                    # One mode failing to stop must not keep the others running.
                    logger.error(
                        "Stopping %s failed: %s",
                        mode.kind.value,
                        exc,
                        exc_info=not isinstance(exc, ProtocolError),
                    )
                    report.failures.append(ModeFailure(mode.kind, "stop", str(exc) or repr(exc)))
                else:
                    if path is not None:
                        report.artifacts.append(path)
                        logger.info("Wrote %s to %s", mode.kind.value, path)
        finally:
            try:
                if cycle.session is not None:
                    await self._close_session(cycle.session, report)
            finally:
                if cycle.sampler is not None:
                    cycle.sampler.dispose()
                    report.peak_memory_bytes = cycle.sampler.peak()
                    logger.info("Peak memory usage: %.2f MB", report.peak_memory_bytes / 1024 / 1024)
                self.last_report = report

        if storage_errors:
            raise storage_errors[0]

    async def _close_session(self, session: ProtocolSession, report: CycleReport) -> None:
        try:
            if session.enabled:
                await session.disable()
                report.disabled = True
        except ProtocolError as exc:
            logger.error("Disabling the heap profiler failed: %s", exc)
            report.failures.append(ModeFailure(None, "disable", str(exc)))
        finally:
            await session.close()

    async def _rollback(self, cycle: _Cycle) -> None:
        for mode in reversed(cycle.modes):
            try:
                await mode.abort()
            except Exception as exc:
                logger.warning("Aborting %s failed: %s", mode.kind.value, exc)
        session = cycle.session
        if session is None:
            return
        try:
            if session.enabled:
                await session.disable()
        except ProfilingError as exc:
            logger.warning("Disabling the heap profiler failed: %s", exc)
        finally:
            await session.close()


__all__ = ["DEFAULT_TRANSPORT", "SessionCoordinator", "TAP_NAME"]
