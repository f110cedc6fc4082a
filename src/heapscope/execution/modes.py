"""Instrumentation modes driven over a shared ``ProtocolSession``."""

from __future__ import annotations

from contextlib import aclosing
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..core.errors import ProtocolError
from ..core.registry import ModeRegistry
from ..core.types import Artifact, ModeKind, ModeState, PathLike
from .session import ProtocolSession
from .writer import ArtifactWriter

START_SAMPLING = "HeapProfiler.startSampling"
STOP_SAMPLING = "HeapProfiler.stopSampling"
START_TRACKING = "HeapProfiler.startTrackingHeapObjects"
STOP_TRACKING = "HeapProfiler.stopTrackingHeapObjects"
TAKE_SNAPSHOT = "HeapProfiler.takeHeapSnapshot"

SNAPSHOT_CHUNK = "HeapProfiler.addHeapSnapshotChunk"
HEAP_STATS_UPDATE = "HeapProfiler.heapStatsUpdate"
LAST_SEEN_OBJECT_ID = "HeapProfiler.lastSeenObjectId"


class InstrumentationMode:
    """One instrumentation mode for one profiling cycle.

    ``Idle -> Starting -> Active -> Stopping -> Completed | Failed``. A mode
    never enables or disables the session it is handed.
    """

    kind: ModeKind

    def __init__(self, session: ProtocolSession, output_path: PathLike) -> None:
        self._session = session
        self.output_path = Path(output_path)
        self.state = ModeState.IDLE

    async def start(self) -> None:
        if self.state is not ModeState.IDLE:
            raise ProtocolError(f"{self.kind.value} cannot start from state {self.state.value}")
        self.state = ModeState.STARTING
        try:
            await self._start()
        except BaseException:
            self.state = ModeState.FAILED
            raise
        self.state = ModeState.ACTIVE

    async def stop(self) -> Optional[Artifact]:
        """Stop the mode and return its payload, if it produces one."""
        self._begin_stop()
        try:
            payload = await self._stop()
        except BaseException:
            self.state = ModeState.FAILED
            raise
        self.state = ModeState.COMPLETED
        if payload is None:
            return None
        return Artifact(kind=self.kind, path=self.output_path, payload=payload)

    async def collect(self, writer: ArtifactWriter) -> Optional[Path]:
        """Stop the mode and persist its artifact; returns the written path."""
        artifact = await self.stop()
        if artifact is None:
            return None
        return await writer.write(artifact.path, artifact.payload)

    async def abort(self) -> None:
        """Stop an active mode without producing an artifact."""
        if self.state is not ModeState.ACTIVE:
            return
        self.state = ModeState.STOPPING
        try:
            await self._stop()
        finally:
            self.state = ModeState.FAILED

    def _begin_stop(self) -> None:
        if self.state is not ModeState.ACTIVE:
            raise ProtocolError(f"{self.kind.value} cannot stop from state {self.state.value}")
        self.state = ModeState.STOPPING

    async def _start(self) -> None:
        return None

    async def _stop(self) -> Any:
        return None


@ModeRegistry.register(ModeKind.SAMPLING_PROFILE.value)
class SamplingProfileMode(InstrumentationMode):
    kind = ModeKind.SAMPLING_PROFILE

    async def _start(self) -> None:
        await self._session.send(START_SAMPLING)

    async def _stop(self) -> Any:
        result = await self._session.send(STOP_SAMPLING)
        profile = result.get("profile")
        if profile is None:
            raise ProtocolError("stopSampling returned no profile", method=STOP_SAMPLING)
        return profile


@ModeRegistry.register(ModeKind.ALLOCATION_TRACKING.value)
class AllocationTrackingMode(InstrumentationMode):
    """Exhaustive allocation tracking.

    The stop reply carries no payload; the summary written to
    ``output_path`` is assembled from the ``heapStatsUpdate`` and
    ``lastSeenObjectId`` events received while tracking.
    """

    kind = ModeKind.ALLOCATION_TRACKING

    def __init__(self, session: ProtocolSession, output_path: PathLike) -> None:
        super().__init__(session, output_path)
        self._fragments: Dict[int, Dict[str, int]] = {}
        self._object_ids: List[Dict[str, Any]] = []
        self._subscribed = False

    def _on_stats(self, params: Mapping[str, Any]) -> None:
        update = list(params.get("statsUpdate") or ())
        for offset in range(0, len(update) - 2, 3):
            index, count, size = update[offset : offset + 3]
            self._fragments[int(index)] = {"count": int(count), "size": int(size)}

    def _on_last_seen(self, params: Mapping[str, Any]) -> None:
        self._object_ids.append(
            {
                "lastSeenObjectId": params.get("lastSeenObjectId"),
                "timestamp": params.get("timestamp"),
            }
        )

    def _subscribe(self) -> None:
        self._session.subscribe(HEAP_STATS_UPDATE, self._on_stats)
        self._session.subscribe(LAST_SEEN_OBJECT_ID, self._on_last_seen)
        self._subscribed = True

    def _unsubscribe(self) -> None:
        if self._subscribed:
            self._session.unsubscribe(HEAP_STATS_UPDATE, self._on_stats)
            self._session.unsubscribe(LAST_SEEN_OBJECT_ID, self._on_last_seen)
            self._subscribed = False

    async def _start(self) -> None:
        self._subscribe()
        try:
            await self._session.send(START_TRACKING, {"trackAllocations": True})
        except BaseException:
            self._unsubscribe()
            raise

    async def _stop(self) -> Any:
        try:
            await self._session.send(STOP_TRACKING, {"reportProgress": False})
        finally:
            self._unsubscribe()
        return self.summary()

    def summary(self) -> Dict[str, Any]:
        fragments = [
            {"index": index, **stats} for index, stats in sorted(self._fragments.items())
        ]
        last_seen = self._object_ids[-1]["lastSeenObjectId"] if self._object_ids else None
        return {
            "trackAllocations": True,
            "totalCount": sum(item["count"] for item in fragments),
            "totalSize": sum(item["size"] for item in fragments),
            "lastSeenObjectId": last_seen,
            "fragments": fragments,
            "objectIdSamples": list(self._object_ids),
        }


@ModeRegistry.register(ModeKind.HEAP_SNAPSHOT.value)
class HeapSnapshotMode(InstrumentationMode):
    """One-shot snapshot capture, streamed chunk by chunk to ``output_path``."""

    kind = ModeKind.HEAP_SNAPSHOT

    async def collect(self, writer: ArtifactWriter) -> Optional[Path]:
        self._begin_stop()
        try:
            chunks = self._session.stream(
                TAKE_SNAPSHOT, SNAPSHOT_CHUNK, "chunk", {"reportProgress": False}
            )
            async with aclosing(chunks):
                path = await writer.write_stream(self.output_path, chunks)
        except BaseException:
            self.state = ModeState.FAILED
            raise
        self.state = ModeState.COMPLETED
        return path

    async def stop(self) -> Optional[Artifact]:
        raise ProtocolError("Heap snapshots are written incrementally; use collect()")


def create_mode(
    kind: ModeKind, session: ProtocolSession, output_path: PathLike
) -> InstrumentationMode:
    return ModeRegistry.create(kind.value, session, output_path)


__all__ = [
    "AllocationTrackingMode",
    "HeapSnapshotMode",
    "InstrumentationMode",
    "SamplingProfileMode",
    "create_mode",
]
