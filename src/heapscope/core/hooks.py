"""Lifecycle hook contract consumed from the host pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Tuple

from .types import PathLike

HookCallback = Callable[..., Awaitable[Any]]


class AsyncSeriesHook:
    """Named extension point whose async taps run one after another."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._taps: List[Tuple[str, HookCallback]] = []

    def tap(self, name: str, callback: HookCallback) -> None:
        self._taps.append((name, callback))

    @property
    def taps(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._taps)

    async def call(self, *args: Any) -> None:
        for _, callback in list(self._taps):
            await callback(*args)


@dataclass
class PipelineHooks:
    before_run: AsyncSeriesHook = field(default_factory=lambda: AsyncSeriesHook("before_run"))
    after_completion: AsyncSeriesHook = field(
        default_factory=lambda: AsyncSeriesHook("after_completion")
    )


class Pipeline(Protocol):
    """What a coordinator needs from the pipeline it is applied to."""

    hooks: PipelineHooks
    output_path: Optional[PathLike]


__all__ = ["AsyncSeriesHook", "HookCallback", "Pipeline", "PipelineHooks"]
