"""Host pipelines that fire before-run and after-completion hooks."""

from __future__ import annotations

import asyncio
import runpy
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from ..core.hooks import PipelineHooks
from ..core.types import PathLike


def _exit_code(code: Any) -> int:
    if code is None:
        return 0
    if isinstance(code, int):
        return code
    print(code, file=sys.stderr)
    return 1


def _as_path(path: Optional[PathLike]) -> Optional[Path]:
    return Path(path) if path is not None else None


class ScriptPipeline:
    """Run a Python script in this process as a profiled pipeline.

    The script executes on a worker thread so the event loop stays free for
    the peak sampler and inspector traffic. ``run`` may be called repeatedly.
    After-completion fires whenever before-run was entered, even if one of
    its taps failed.
    """

    def __init__(
        self,
        script: PathLike,
        args: Sequence[str] = (),
        *,
        output_path: Optional[PathLike] = None,
    ) -> None:
        self.script = Path(script)
        self.args = list(args)
        self.output_path = _as_path(output_path)
        self.hooks = PipelineHooks()

    async def run(self) -> int:
        try:
            await self.hooks.before_run.call(self)
            code = await asyncio.to_thread(self._execute)
        finally:
            await self.hooks.after_completion.call(self)
        return code

    def _execute(self) -> int:
        saved_argv = sys.argv
        saved_path = list(sys.path)
        sys.argv = [str(self.script), *self.args]
        sys.path.insert(0, str(self.script.resolve().parent))
        try:
            runpy.run_path(str(self.script), run_name="__main__")
        except SystemExit as exc:
            return _exit_code(exc.code)
        finally:
            sys.argv = saved_argv
            sys.path[:] = saved_path
        return 0


class WindowPipeline:
    """A fixed-length observation window, used when profiling a remote target."""

    def __init__(self, duration: float, *, output_path: Optional[PathLike] = None) -> None:
        self.duration = max(duration, 0.0)
        self.output_path = _as_path(output_path)
        self.hooks = PipelineHooks()

    async def run(self) -> int:
        try:
            await self.hooks.before_run.call(self)
            await asyncio.sleep(self.duration)
        finally:
            await self.hooks.after_completion.call(self)
        return 0


__all__ = ["ScriptPipeline", "WindowPipeline"]
