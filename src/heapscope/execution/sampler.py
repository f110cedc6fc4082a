"""Periodic peak-memory sampler."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import psutil

logger = logging.getLogger(__name__)

MemoryReader = Callable[[], int]


def resident_memory_bytes() -> int:
    """Current resident set size of this process."""
    return int(psutil.Process().memory_info().rss)


class MemoryPeakSampler:
    """Poll a memory reading on a repeating timer and keep the maximum.

    The timer is an asyncio task owned by this sampler. Pending event-loop
    tasks never keep the interpreter alive, and :meth:`dispose` cancels the
    task so no further tick can run.
    """

    def __init__(self, reader: Optional[MemoryReader] = None) -> None:
        self._reader = reader or resident_memory_bytes
        self._peak = 0
        self._samples = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._disposed = False

    @property
    def samples(self) -> int:
        return self._samples

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_ms: int) -> None:
        if self._disposed or self.running:
            return
        interval = max(int(interval_ms), 1) / 1000.0
        self._task = asyncio.get_running_loop().create_task(
            self._run(interval), name="heapscope-peak-sampler"
        )

    async def _run(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sample()

    def sample(self) -> None:
        """Take one reading; failed readings are skipped."""
        if self._disposed:
            return
        try:
            value = int(self._reader())
        except Exception:
            logger.debug("Memory reading failed", exc_info=True)
            return
        self._samples += 1
        if value > self._peak:
            self._peak = value

    def peak(self) -> int:
        return self._peak

    def dispose(self) -> None:
        self._disposed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()


__all__ = ["MemoryPeakSampler", "MemoryReader", "resident_memory_bytes"]
