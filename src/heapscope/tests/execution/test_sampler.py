from __future__ import annotations

import asyncio

import pytest

from heapscope.execution.sampler import MemoryPeakSampler, resident_memory_bytes


def _reader(values):
    readings = iter(values)
    return lambda: next(readings)


class TestMemoryPeakSampler:
    def test_peak_is_maximum_of_readings(self) -> None:
        sampler = MemoryPeakSampler(_reader([5, 9, 3, 12, 7]))
        for _ in range(5):
            sampler.sample()
        sampler.dispose()
        assert sampler.peak() == 12
        assert sampler.samples == 5

    def test_peak_without_samples_is_zero(self) -> None:
        assert MemoryPeakSampler(lambda: 100).peak() == 0

    def test_zero_readings(self) -> None:
        sampler = MemoryPeakSampler(lambda: 0)
        sampler.sample()
        sampler.sample()
        assert sampler.peak() == 0

    def test_failed_reading_is_skipped(self) -> None:
        values = iter([10, None, 20])

        def reader() -> int:
            value = next(values)
            if value is None:
                raise OSError("gone")
            return value

        sampler = MemoryPeakSampler(reader)
        for _ in range(3):
            sampler.sample()
        assert sampler.peak() == 20
        assert sampler.samples == 2

    @pytest.mark.asyncio
    async def test_timer_samples_until_disposed(self) -> None:
        sampler = MemoryPeakSampler(lambda: 42)
        sampler.start(5)
        assert sampler.running
        await asyncio.sleep(0.05)
        sampler.dispose()
        taken = sampler.samples
        await asyncio.sleep(0.03)

        assert taken > 0
        assert sampler.samples == taken
        assert not sampler.running
        assert sampler.peak() == 42

    @pytest.mark.asyncio
    async def test_disposed_sampler_does_not_restart(self) -> None:
        sampler = MemoryPeakSampler(lambda: 1)
        sampler.dispose()
        sampler.start(5)
        assert not sampler.running


def test_resident_memory_is_positive() -> None:
    assert resident_memory_bytes() > 0
