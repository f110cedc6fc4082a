"""In-process heap profiler transport backed by ``tracemalloc`` and ``gc``.

Answers the HeapProfiler commands for the current interpreter so that a
pipeline running in the same process can be profiled without an external
inspector. Replies and events mirror the shapes a V8 inspector produces:
sampling profiles are call trees of ``callFrame`` nodes, heap snapshots use
the ``meta``/``nodes``/``edges``/``strings`` layout.
"""

from __future__ import annotations

import asyncio
import gc
import itertools
import json
import logging
import sys
import time
import tracemalloc
import types
from array import array
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from ..core.errors import ProtocolError
from ..core.registry import TransportRegistry
from ..core.transport import InspectorTransport

logger = logging.getLogger(__name__)

DEFAULT_SAMPLING_INTERVAL = 32768
DEFAULT_TRACEBACK_LIMIT = 25
DEFAULT_CHUNK_SIZE = 64 * 1024

_SERVER_ERROR = -32000
_METHOD_NOT_FOUND = -32601

_NODE_FIELDS = ["type", "name", "id", "self_size", "edge_count"]
_NODE_TYPES = ["object", "code"]
_EDGE_FIELDS = ["type", "name_or_index", "to_node"]
_EDGE_TYPES = ["element"]
_CODE_TYPES = (types.FunctionType, types.CodeType, types.BuiltinFunctionType, types.MethodType)

_TRACE_FILTERS = (
    tracemalloc.Filter(False, tracemalloc.__file__),
    tracemalloc.Filter(False, "<frozen importlib._bootstrap>"),
    tracemalloc.Filter(False, "<frozen importlib._bootstrap_external>"),
    tracemalloc.Filter(False, "<unknown>"),
)

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@TransportRegistry.register("local")
class LocalInspectorTransport(InspectorTransport):
    transport_id = "local"
    transport_name = "In-process tracemalloc"

    def __init__(
        self,
        *,
        traceback_limit: int = DEFAULT_TRACEBACK_LIMIT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        super().__init__()
        self._traceback_limit = max(1, traceback_limit)
        self._chunk_size = max(1, chunk_size)
        self._connected = False
        self._enabled = False
        self._sampling = False
        self._sampling_interval = DEFAULT_SAMPLING_INTERVAL
        self._tracking = False
        self._started_tracing = False
        self._stats_fragment = 0
        self._last_seen_object_id = 0
        self._handlers: Dict[str, Handler] = {
            "HeapProfiler.enable": self._enable,
            "HeapProfiler.disable": self._disable,
            "HeapProfiler.startSampling": self._start_sampling,
            "HeapProfiler.stopSampling": self._stop_sampling,
            "HeapProfiler.startTrackingHeapObjects": self._start_tracking,
            "HeapProfiler.stopTrackingHeapObjects": self._stop_tracking,
            "HeapProfiler.takeHeapSnapshot": self._take_snapshot,
        }

    @classmethod
    def is_available(cls) -> bool:
        return True

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        if self._enabled:
            await self._disable({})
        self._connected = False

    async def send(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        if not self._connected:
            raise ProtocolError("Session is not connected", method=method, code=_SERVER_ERROR)
        handler = self._handlers.get(method)
        if handler is None:
            raise ProtocolError(f"'{method}' wasn't found", method=method, code=_METHOD_NOT_FOUND)
        return await handler(dict(params or {}))

    # -- domain ---------------------------------------------------------

    async def _enable(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._enabled = True
        return {}

    async def _disable(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._sampling = False
        self._tracking = False
        self._enabled = False
        self._release_tracing()
        return {}

    def _require_enabled(self, method: str) -> None:
        if not self._enabled:
            raise ProtocolError("Heap profiler is not enabled", method=method, code=_SERVER_ERROR)

    def _ensure_tracing(self, nframes: int) -> None:
        if not tracemalloc.is_tracing():
            tracemalloc.start(nframes)
            self._started_tracing = True
            logger.debug("Started tracemalloc with %d frames", nframes)

    def _release_tracing(self) -> None:
        if self._sampling or self._tracking or not self._started_tracing:
            return
        tracemalloc.stop()
        self._started_tracing = False

    def _snapshot(self) -> tracemalloc.Snapshot:
        return tracemalloc.take_snapshot().filter_traces(_TRACE_FILTERS)

    # -- sampling -------------------------------------------------------

    async def _start_sampling(self, params: Dict[str, Any]) -> Dict[str, Any]:
        method = "HeapProfiler.startSampling"
        self._require_enabled(method)
        if self._sampling:
            raise ProtocolError("Sampling profiler is already started", method=method, code=_SERVER_ERROR)
        interval = params.get("samplingInterval", DEFAULT_SAMPLING_INTERVAL)
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            raise ProtocolError("Invalid sampling interval", method=method, code=_SERVER_ERROR)
        self._ensure_tracing(self._traceback_limit)
        self._sampling_interval = int(interval)
        self._sampling = True
        return {}

    async def _stop_sampling(self, params: Dict[str, Any]) -> Dict[str, Any]:
        method = "HeapProfiler.stopSampling"
        if not self._sampling:
            raise ProtocolError("Sampling profiler is not started", method=method, code=_SERVER_ERROR)
        profile = build_sampling_profile(self._snapshot())
        self._sampling = False
        self._release_tracing()
        return {"profile": profile}

    # -- allocation tracking --------------------------------------------

    async def _start_tracking(self, params: Dict[str, Any]) -> Dict[str, Any]:
        method = "HeapProfiler.startTrackingHeapObjects"
        self._require_enabled(method)
        if self._tracking:
            raise ProtocolError("Heap object tracking is already started", method=method, code=_SERVER_ERROR)
        nframes = self._traceback_limit if params.get("trackAllocations") else 1
        self._ensure_tracing(nframes)
        self._tracking = True
        return {}

    async def _stop_tracking(self, params: Dict[str, Any]) -> Dict[str, Any]:
        method = "HeapProfiler.stopTrackingHeapObjects"
        if not self._tracking:
            raise ProtocolError("Heap object tracking is not started", method=method, code=_SERVER_ERROR)
        count = 0
        size = 0
        for stat in self._snapshot().statistics("filename"):
            count += stat.count
            size += stat.size
        self._last_seen_object_id += count
        self._emit(
            "HeapProfiler.lastSeenObjectId",
            {"lastSeenObjectId": self._last_seen_object_id, "timestamp": time.time() * 1000.0},
        )
        self._emit("HeapProfiler.heapStatsUpdate", {"statsUpdate": [self._stats_fragment, count, size]})
        self._stats_fragment += 1
        self._tracking = False
        self._release_tracing()
        return {}

    # -- snapshots ------------------------------------------------------

    async def _take_snapshot(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._require_enabled("HeapProfiler.takeHeapSnapshot")
        objects = gc.get_objects()
        pending: List[str] = []
        pending_size = 0
        for piece in iter_heap_snapshot(objects):
            pending.append(piece)
            pending_size += len(piece)
            if pending_size >= self._chunk_size:
                self._emit("HeapProfiler.addHeapSnapshotChunk", {"chunk": "".join(pending)})
                pending = []
                pending_size = 0
                await asyncio.sleep(0)
        if pending:
            self._emit("HeapProfiler.addHeapSnapshotChunk", {"chunk": "".join(pending)})
            await asyncio.sleep(0)
        if params.get("reportProgress"):
            total = len(objects)
            self._emit(
                "HeapProfiler.reportHeapSnapshotProgress",
                {"done": total, "total": total, "finished": True},
            )
        return {}


class _CallTree:
    """Accumulates tracemalloc tracebacks into a V8-style call tree."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.root = self._node("(root)", "", -1)
        self._children: Dict[int, Dict[Tuple[str, int], Dict[str, Any]]] = {}

    def _node(self, function_name: str, url: str, line: int) -> Dict[str, Any]:
        return {
            "callFrame": {
                "functionName": function_name,
                "scriptId": "0",
                "url": url,
                "lineNumber": line,
                "columnNumber": 0,
            },
            "selfSize": 0,
            "id": next(self._ids),
            "children": [],
        }

    def insert(self, traceback: tracemalloc.Traceback, size: int) -> int:
        node = self.root
        # tracemalloc orders frames oldest first, matching root-to-leaf.
        for frame in traceback:
            key = (frame.filename, frame.lineno)
            children = self._children.setdefault(node["id"], {})
            child = children.get(key)
            if child is None:
                child = self._node("", frame.filename, frame.lineno - 1)
                children[key] = child
                node["children"].append(child)
            node = child
        node["selfSize"] += size
        return node["id"]


def build_sampling_profile(snapshot: tracemalloc.Snapshot) -> Dict[str, Any]:
    """Convert a tracemalloc snapshot to a ``SamplingHeapProfile`` mapping."""
    tree = _CallTree()
    samples: List[Dict[str, Any]] = []
    for ordinal, stat in enumerate(snapshot.statistics("traceback"), start=1):
        node_id = tree.insert(stat.traceback, stat.size)
        samples.append({"size": stat.size, "nodeId": node_id, "ordinal": ordinal})
    return {"head": tree.root, "samples": samples}


def _node_name(obj: Any) -> str:
    if isinstance(obj, (types.FunctionType, type, types.ModuleType)):
        return str(obj.__name__)
    return type(obj).__name__


def _self_size(obj: Any) -> int:
    try:
        return sys.getsizeof(obj, 0)
    except TypeError:
        return 0


def iter_heap_snapshot(objects: List[Any]) -> Iterator[str]:
    """Yield the JSON text of a heap snapshot of ``objects`` piece by piece.

    Edges are resolved up front so node edge counts and the edge table agree
    even if objects mutate while the text is being consumed.
    """
    index = {id(obj): position for position, obj in enumerate(objects)}
    edge_counts = array("q")
    edge_targets = array("q")
    for obj in objects:
        count = 0
        for referent in gc.get_referents(obj):
            position = index.get(id(referent))
            if position is not None:
                edge_targets.append(position)
                count += 1
        edge_counts.append(count)

    strings: List[str] = []
    string_ids: Dict[str, int] = {}

    def intern(value: str) -> int:
        existing = string_ids.get(value)
        if existing is None:
            existing = string_ids[value] = len(strings)
            strings.append(value)
        return existing

    meta = {
        "node_fields": _NODE_FIELDS,
        "node_types": [_NODE_TYPES, "string", "number", "number", "number"],
        "edge_fields": _EDGE_FIELDS,
        "edge_types": [_EDGE_TYPES, "string_or_number", "node"],
    }
    yield (
        '{"snapshot":{"meta":'
        + json.dumps(meta)
        + f',"node_count":{len(objects)},"edge_count":{len(edge_targets)}}},'
        + '"nodes":['
    )
    for position, obj in enumerate(objects):
        node_type = 1 if isinstance(obj, _CODE_TYPES) else 0
        separator = "," if position else ""
        yield (
            f"{separator}{node_type},{intern(_node_name(obj))},{position * 2 + 1},"
            f"{_self_size(obj)},{edge_counts[position]}"
        )
    yield '],"edges":['
    field_count = len(_NODE_FIELDS)
    cursor = 0
    for count in edge_counts:
        for element in range(count):
            separator = "," if cursor else ""
            yield f"{separator}0,{element},{edge_targets[cursor] * field_count}"
            cursor += 1
    yield '],"strings":' + json.dumps(strings) + "}"


__all__ = [
    "DEFAULT_SAMPLING_INTERVAL",
    "LocalInspectorTransport",
    "build_sampling_profile",
    "iter_heap_snapshot",
]
