from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from heapscope.core.errors import ProtocolError
from heapscope.core.types import ModeKind, ModeState
from heapscope.execution.modes import (
    AllocationTrackingMode,
    HeapSnapshotMode,
    SamplingProfileMode,
    create_mode,
)
from heapscope.execution.session import ProtocolSession
from heapscope.execution.writer import ArtifactWriter


async def _session(transport) -> ProtocolSession:
    session = ProtocolSession(transport)
    await session.open()
    await session.enable()
    return session


class TestSamplingProfileMode:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, transport) -> None:
        mode = SamplingProfileMode(await _session(transport), "profile.heapprofile")
        await mode.start()
        assert mode.state is ModeState.ACTIVE
        artifact = await mode.stop()

        assert transport.methods[1:] == ["HeapProfiler.startSampling", "HeapProfiler.stopSampling"]
        assert mode.state is ModeState.COMPLETED
        assert artifact is not None
        assert artifact.path == Path("profile.heapprofile")
        assert artifact.payload == transport.results["HeapProfiler.stopSampling"]["profile"]

    @pytest.mark.asyncio
    async def test_missing_profile_fails(self, transport) -> None:
        transport.results["HeapProfiler.stopSampling"] = {}
        mode = SamplingProfileMode(await _session(transport), "p.heapprofile")
        await mode.start()
        with pytest.raises(ProtocolError, match="no profile"):
            await mode.stop()
        assert mode.state is ModeState.FAILED

    @pytest.mark.asyncio
    async def test_failed_start(self, transport) -> None:
        transport.fail("HeapProfiler.startSampling")
        mode = SamplingProfileMode(await _session(transport), "p.heapprofile")
        with pytest.raises(ProtocolError):
            await mode.start()
        assert mode.state is ModeState.FAILED
        with pytest.raises(ProtocolError, match="cannot stop"):
            await mode.stop()

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, transport) -> None:
        mode = SamplingProfileMode(await _session(transport), "p.heapprofile")
        await mode.start()
        with pytest.raises(ProtocolError, match="cannot start"):
            await mode.start()

    @pytest.mark.asyncio
    async def test_collect_writes_artifact(self, transport) -> None:
        writer = AsyncMock(spec=ArtifactWriter)
        writer.write.return_value = "p.heapprofile"
        mode = SamplingProfileMode(await _session(transport), "p.heapprofile")
        await mode.start()

        assert await mode.collect(writer) == "p.heapprofile"
        writer.write.assert_awaited_once()


class TestAllocationTrackingMode:
    @pytest.mark.asyncio
    async def test_summary_from_events(self, transport) -> None:
        transport.events["HeapProfiler.stopTrackingHeapObjects"] = [
            ("HeapProfiler.lastSeenObjectId", {"lastSeenObjectId": 41, "timestamp": 1.0}),
            ("HeapProfiler.heapStatsUpdate", {"statsUpdate": [0, 3, 300, 1, 2, 50]}),
            ("HeapProfiler.heapStatsUpdate", {"statsUpdate": [1, 4, 64]}),
        ]
        mode = AllocationTrackingMode(await _session(transport), "alloc.json")
        await mode.start()
        artifact = await mode.stop()

        assert transport.calls[1] == ("HeapProfiler.startTrackingHeapObjects", {"trackAllocations": True})
        assert transport.calls[2] == ("HeapProfiler.stopTrackingHeapObjects", {"reportProgress": False})
        summary = artifact.payload
        assert summary["totalCount"] == 7
        assert summary["totalSize"] == 364
        assert summary["lastSeenObjectId"] == 41
        assert summary["fragments"] == [
            {"index": 0, "count": 3, "size": 300},
            {"index": 1, "count": 4, "size": 64},
        ]
        json.dumps(summary)

    @pytest.mark.asyncio
    async def test_listeners_removed_after_stop_failure(self, transport) -> None:
        transport.fail("HeapProfiler.stopTrackingHeapObjects")
        mode = AllocationTrackingMode(await _session(transport), "alloc.json")
        await mode.start()
        with pytest.raises(ProtocolError):
            await mode.stop()
        assert transport._listeners["HeapProfiler.heapStatsUpdate"] == []
        assert transport._listeners["HeapProfiler.lastSeenObjectId"] == []


class TestHeapSnapshotMode:
    @pytest.mark.asyncio
    async def test_collect_streams_chunks(self, transport, tmp_path) -> None:
        transport.events["HeapProfiler.takeHeapSnapshot"] = [
            ("HeapProfiler.addHeapSnapshotChunk", {"chunk": '{"snapshot":'}),
            ("HeapProfiler.addHeapSnapshotChunk", {"chunk": "{}}"}),
        ]
        path = tmp_path / "v8.heapsnapshot"
        mode = HeapSnapshotMode(await _session(transport), path)
        await mode.start()

        assert transport.methods == ["HeapProfiler.enable"]
        assert await mode.collect(ArtifactWriter()) == path
        assert mode.state is ModeState.COMPLETED
        with open(path, encoding="utf-8") as handle:
            assert json.load(handle) == {"snapshot": {}}

    @pytest.mark.asyncio
    async def test_chunk_without_payload_fails_cleanly(self, transport, tmp_path) -> None:
        transport.events["HeapProfiler.takeHeapSnapshot"] = [
            ("HeapProfiler.addHeapSnapshotChunk", {"chunk": "{"}),
            ("HeapProfiler.addHeapSnapshotChunk", {}),
        ]
        mode = HeapSnapshotMode(await _session(transport), tmp_path / "v8.heapsnapshot")
        await mode.start()

        with pytest.raises(ProtocolError, match="no 'chunk' payload"):
            await mode.collect(ArtifactWriter())
        assert mode.state is ModeState.FAILED
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_stop_is_not_supported(self, transport) -> None:
        mode = HeapSnapshotMode(await _session(transport), "v8.heapsnapshot")
        await mode.start()
        with pytest.raises(ProtocolError):
            await mode.stop()


def test_create_mode_uses_registry(transport) -> None:
    session = ProtocolSession(transport)
    mode = create_mode(ModeKind.ALLOCATION_TRACKING, session, "alloc.json")
    assert isinstance(mode, AllocationTrackingMode)
    assert mode.output_path == Path("alloc.json")
    assert mode.state is ModeState.IDLE
