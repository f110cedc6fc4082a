from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest

from heapscope.core.errors import ProtocolError
from heapscope.core.transport import InspectorTransport


class RecordingTransport(InspectorTransport):
    """In-memory transport that records commands and replays scripted replies."""

    transport_id = "recording"
    transport_name = "Recording transport"

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.results: Dict[str, Dict[str, Any]] = {
            "HeapProfiler.stopSampling": {"profile": {"head": {"id": 1, "children": []}, "samples": []}},
        }
        self.failures: Dict[str, Exception] = {}
        self.events: Dict[str, List[Tuple[str, Dict[str, Any]]]] = {}
        self.delays: Dict[str, float] = {}
        self.connected = False
        self.connect_count = 0
        self.close_count = 0

    @classmethod
    def is_available(cls) -> bool:
        return True

    async def connect(self) -> None:
        self.connected = True
        self.connect_count += 1

    async def close(self) -> None:
        self.connected = False
        self.close_count += 1

    async def send(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        self.calls.append((method, dict(params or {})))
        for event, event_params in self.events.get(method, ()):
            self._emit(event, event_params)
            await asyncio.sleep(0)
        if method in self.delays:
            await asyncio.sleep(self.delays[method])
        if method in self.failures:
            raise self.failures[method]
        return dict(self.results.get(method, {}))

    @property
    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]

    def fail(self, method: str, message: str = "boom") -> None:
        self.failures[method] = ProtocolError(message, method=method, code=-32000)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
